"""PostgreSQL implementation of RewardRepo."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from course_rewards.core.errors import DuplicateAwardAttempt
from course_rewards.db.tables import RewardRecordRow
from course_rewards.models.reward import RewardRecord


class PgRewardRepo:
    """Satisfies the RewardRepo Protocol using PostgreSQL.

    The uq_reward_student_course constraint is what makes ``add`` a
    create-if-absent: the second writer's INSERT fails and surfaces as
    DuplicateAwardAttempt.
    """

    def __init__(self, sessions: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = sessions

    async def get(self, student_id: UUID, course_id: UUID) -> RewardRecord | None:
        stmt = select(RewardRecordRow).where(
            RewardRecordRow.student_id == student_id,
            RewardRecordRow.course_id == course_id,
        )
        async with self._sessions() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return None if row is None else _row_to_record(row)

    async def add(self, record: RewardRecord) -> None:
        row = RewardRecordRow(
            id=record.id,
            student_id=record.student_id,
            course_id=record.course_id,
            amount=record.amount,
            status=record.status,
            transaction_ref=record.transaction_ref,
            block_number=record.block_number,
            error_kind=record.error_kind,
            error_message=record.error_message,
            attempts=record.attempts,
            created_at=record.created_at,
            updated_at=record.updated_at,
        )
        async with self._sessions() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise DuplicateAwardAttempt(
                    f"{record.student_id}:{record.course_id}"
                ) from None

    async def transition(
        self,
        student_id: UUID,
        course_id: UUID,
        *,
        expected: Iterable[str],
        **changes: Any,
    ) -> RewardRecord | None:
        stmt = (
            update(RewardRecordRow)
            .where(RewardRecordRow.student_id == student_id)
            .where(RewardRecordRow.course_id == course_id)
            .where(RewardRecordRow.status.in_(list(expected)))
            .values(**changes)
            .returning(RewardRecordRow)
        )
        async with self._sessions() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            await session.commit()
            return None if row is None else _row_to_record(row)

    async def list_for_student(self, student_id: UUID) -> list[RewardRecord]:
        stmt = select(RewardRecordRow).where(RewardRecordRow.student_id == student_id)
        async with self._sessions() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_row_to_record(r) for r in rows]

    async def list_by_status(self, statuses: Iterable[str]) -> list[RewardRecord]:
        stmt = select(RewardRecordRow).where(RewardRecordRow.status.in_(list(statuses)))
        async with self._sessions() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_row_to_record(r) for r in rows]


def _row_to_record(row: RewardRecordRow) -> RewardRecord:
    return RewardRecord(
        id=row.id,
        student_id=row.student_id,
        course_id=row.course_id,
        amount=row.amount,
        status=row.status,  # type: ignore[arg-type]
        created_at=row.created_at,
        updated_at=row.updated_at,
        transaction_ref=row.transaction_ref,
        block_number=row.block_number,
        error_kind=row.error_kind,
        error_message=row.error_message,
        attempts=row.attempts,
    )
