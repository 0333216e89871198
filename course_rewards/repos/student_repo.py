from __future__ import annotations

from dataclasses import replace
from typing import Protocol
from uuid import UUID

from course_rewards.models.student import Student


class StudentRepo(Protocol):
    async def get(self, student_id: UUID) -> Student | None: ...
    async def add(self, student: Student) -> None: ...
    async def set_wallet(self, student_id: UUID, address: str) -> Student | None: ...


class InMemoryStudentRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Student] = {}

    async def get(self, student_id: UUID) -> Student | None:
        return self._by_id.get(student_id)

    async def add(self, student: Student) -> None:
        if student.id in self._by_id:
            raise ValueError("student already exists")
        self._by_id[student.id] = student

    async def set_wallet(self, student_id: UUID, address: str) -> Student | None:
        s = self._by_id.get(student_id)
        if s is None:
            return None

        updated = replace(s, wallet_address=address)
        self._by_id[student_id] = updated
        return updated
