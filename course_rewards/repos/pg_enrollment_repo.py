"""PostgreSQL implementation of EnrollmentRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from course_rewards.core.errors import AlreadyEnrolledError
from course_rewards.db.tables import EnrollmentRow
from course_rewards.models.enrollment import Enrollment


class PgEnrollmentRepo:
    """Satisfies the EnrollmentRepo Protocol using PostgreSQL.

    Lesson appends and the active -> completed transition are single
    conditional UPDATEs, so concurrent completions of the same enrollment
    serialize on the row lock instead of racing in Python.
    """

    def __init__(self, sessions: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = sessions

    async def get(self, student_id: UUID, course_id: UUID) -> Enrollment | None:
        async with self._sessions() as session:
            row = await session.get(EnrollmentRow, (student_id, course_id))
            return None if row is None else _row_to_enrollment(row)

    async def add(self, enrollment: Enrollment) -> None:
        row = EnrollmentRow(
            student_id=enrollment.student_id,
            course_id=enrollment.course_id,
            completed_lessons=sorted(enrollment.completed_lessons),
            status=enrollment.status,
            enrolled_at=enrollment.enrolled_at,
            completed_at=enrollment.completed_at,
            total_time_spent=enrollment.total_time_spent,
        )
        async with self._sessions() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise AlreadyEnrolledError(
                    f"{enrollment.student_id}:{enrollment.course_id}"
                ) from None

    async def add_lesson(
        self, student_id: UUID, course_id: UUID, lesson_id: str, time_spent: int
    ) -> Enrollment | None:
        stmt = (
            update(EnrollmentRow)
            .where(EnrollmentRow.student_id == student_id)
            .where(EnrollmentRow.course_id == course_id)
            .where(~EnrollmentRow.completed_lessons.contains([lesson_id]))
            .values(
                completed_lessons=func.array_append(
                    EnrollmentRow.completed_lessons, lesson_id
                ),
                total_time_spent=EnrollmentRow.total_time_spent + time_spent,
            )
        )
        async with self._sessions() as session:
            await session.execute(stmt)
            await session.commit()
        # rowcount 0 means either "not enrolled" or "already had the lesson";
        # the read tells them apart.
        return await self.get(student_id, course_id)

    async def mark_completed(
        self, student_id: UUID, course_id: UUID, completed_at: int
    ) -> Enrollment | None:
        stmt = (
            update(EnrollmentRow)
            .where(EnrollmentRow.student_id == student_id)
            .where(EnrollmentRow.course_id == course_id)
            .where(EnrollmentRow.status == "active")
            .values(status="completed", completed_at=completed_at)
            .returning(EnrollmentRow)
        )
        async with self._sessions() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            await session.commit()
            return None if row is None else _row_to_enrollment(row)

    async def list_for_student(self, student_id: UUID) -> list[Enrollment]:
        stmt = select(EnrollmentRow).where(EnrollmentRow.student_id == student_id)
        async with self._sessions() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_row_to_enrollment(r) for r in rows]


def _row_to_enrollment(row: EnrollmentRow) -> Enrollment:
    return Enrollment(
        student_id=row.student_id,
        course_id=row.course_id,
        enrolled_at=row.enrolled_at,
        completed_lessons=frozenset(row.completed_lessons or ()),
        status=row.status,
        completed_at=row.completed_at,
        total_time_spent=row.total_time_spent,
    )
