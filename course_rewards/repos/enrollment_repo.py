from __future__ import annotations

from dataclasses import replace
from typing import Protocol
from uuid import UUID

from course_rewards.core.errors import AlreadyEnrolledError
from course_rewards.models.enrollment import Enrollment

_Key = tuple[UUID, UUID]


class EnrollmentRepo(Protocol):
    async def get(self, student_id: UUID, course_id: UUID) -> Enrollment | None: ...
    async def add(self, enrollment: Enrollment) -> None: ...
    async def add_lesson(
        self, student_id: UUID, course_id: UUID, lesson_id: str, time_spent: int
    ) -> Enrollment | None: ...
    async def mark_completed(
        self, student_id: UUID, course_id: UUID, completed_at: int
    ) -> Enrollment | None: ...
    async def list_for_student(self, student_id: UUID) -> list[Enrollment]: ...


class InMemoryEnrollmentRepo:
    """Dict-backed store.

    Each method runs without awaiting, so under a single event loop every
    call is atomic with respect to other coroutines.
    """

    def __init__(self) -> None:
        self._store: dict[_Key, Enrollment] = {}

    async def get(self, student_id: UUID, course_id: UUID) -> Enrollment | None:
        return self._store.get((student_id, course_id))

    async def add(self, enrollment: Enrollment) -> None:
        key = (enrollment.student_id, enrollment.course_id)
        if key in self._store:
            raise AlreadyEnrolledError(f"{enrollment.student_id}:{enrollment.course_id}")
        self._store[key] = enrollment

    async def add_lesson(
        self, student_id: UUID, course_id: UUID, lesson_id: str, time_spent: int
    ) -> Enrollment | None:
        """Add lesson_id to the completed set. Returns None if not enrolled;
        returns the enrollment unchanged when the lesson was already there."""
        e = self._store.get((student_id, course_id))
        if e is None:
            return None
        if lesson_id in e.completed_lessons:
            return e

        updated = replace(
            e,
            completed_lessons=e.completed_lessons | {lesson_id},
            total_time_spent=e.total_time_spent + time_spent,
        )
        self._store[(student_id, course_id)] = updated
        return updated

    async def mark_completed(
        self, student_id: UUID, course_id: UUID, completed_at: int
    ) -> Enrollment | None:
        """Move active -> completed. Returns the updated enrollment, or None
        if it doesn't exist or was already completed."""
        e = self._store.get((student_id, course_id))
        if e is None or e.status != "active":
            return None

        updated = replace(e, status="completed", completed_at=completed_at)
        self._store[(student_id, course_id)] = updated
        return updated

    async def list_for_student(self, student_id: UUID) -> list[Enrollment]:
        return [e for (sid, _), e in self._store.items() if sid == student_id]
