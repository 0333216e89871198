from __future__ import annotations

import dataclasses
from collections.abc import Iterable
from typing import Any, Protocol
from uuid import UUID

from course_rewards.core.errors import DuplicateAwardAttempt
from course_rewards.models.reward import RewardRecord

_Key = tuple[UUID, UUID]


class RewardRepo(Protocol):
    async def get(self, student_id: UUID, course_id: UUID) -> RewardRecord | None: ...
    async def add(self, record: RewardRecord) -> None: ...
    async def transition(
        self,
        student_id: UUID,
        course_id: UUID,
        *,
        expected: Iterable[str],
        **changes: Any,
    ) -> RewardRecord | None: ...
    async def list_for_student(self, student_id: UUID) -> list[RewardRecord]: ...
    async def list_by_status(self, statuses: Iterable[str]) -> list[RewardRecord]: ...


class InMemoryRewardRepo:
    def __init__(self) -> None:
        self._store: dict[_Key, RewardRecord] = {}

    async def get(self, student_id: UUID, course_id: UUID) -> RewardRecord | None:
        return self._store.get((student_id, course_id))

    async def add(self, record: RewardRecord) -> None:
        """Create-if-absent. Raises DuplicateAwardAttempt when the pair
        already has a record, like the unique constraint does in Postgres."""
        key = (record.student_id, record.course_id)
        if key in self._store:
            raise DuplicateAwardAttempt(f"{record.student_id}:{record.course_id}")
        self._store[key] = record

    async def transition(
        self,
        student_id: UUID,
        course_id: UUID,
        *,
        expected: Iterable[str],
        **changes: Any,
    ) -> RewardRecord | None:
        """Compare-and-set. Applies ``changes`` only if the current status is
        in ``expected``; returns the updated record, or None if the record is
        missing or another writer moved it first."""
        record = self._store.get((student_id, course_id))
        if record is None or record.status not in set(expected):
            return None
        updated = dataclasses.replace(record, **changes)
        self._store[(student_id, course_id)] = updated
        return updated

    async def list_for_student(self, student_id: UUID) -> list[RewardRecord]:
        return [r for r in self._store.values() if r.student_id == student_id]

    async def list_by_status(self, statuses: Iterable[str]) -> list[RewardRecord]:
        wanted = set(statuses)
        return [r for r in self._store.values() if r.status in wanted]
