"""PostgreSQL implementations of CourseRepo and StudentRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from course_rewards.db.tables import CourseRow, StudentRow
from course_rewards.models.course import Course
from course_rewards.models.student import Student


class PgCourseRepo:
    """Satisfies the CourseRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, sessions: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = sessions

    async def get(self, course_id: UUID) -> Course | None:
        async with self._sessions() as session:
            row = await session.get(CourseRow, course_id)
            return None if row is None else _row_to_course(row)

    async def get_by_slug(self, slug: str) -> Course | None:
        stmt = select(CourseRow).where(CourseRow.slug == slug)
        async with self._sessions() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return None if row is None else _row_to_course(row)

    async def add(self, course: Course) -> None:
        row = CourseRow(
            id=course.id,
            slug=course.slug,
            title=course.title,
            token_reward=course.token_reward,
            lesson_ids=list(course.lesson_ids),
            status=course.status,
        )
        async with self._sessions() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise ValueError("slug already exists") from None

    async def list_all(self) -> list[Course]:
        async with self._sessions() as session:
            rows = (await session.execute(select(CourseRow))).scalars().all()
            return [_row_to_course(r) for r in rows]


class PgStudentRepo:
    """Satisfies the StudentRepo Protocol using PostgreSQL via SQLAlchemy."""

    def __init__(self, sessions: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = sessions

    async def get(self, student_id: UUID) -> Student | None:
        async with self._sessions() as session:
            row = await session.get(StudentRow, student_id)
            return None if row is None else _row_to_student(row)

    async def add(self, student: Student) -> None:
        row = StudentRow(
            id=student.id, name=student.name, wallet_address=student.wallet_address
        )
        async with self._sessions() as session:
            session.add(row)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise ValueError("student already exists") from None

    async def set_wallet(self, student_id: UUID, address: str) -> Student | None:
        stmt = (
            update(StudentRow)
            .where(StudentRow.id == student_id)
            .values(wallet_address=address)
        )
        async with self._sessions() as session:
            result = await session.execute(stmt)
            await session.commit()
        if result.rowcount == 0:
            return None
        return await self.get(student_id)


def _row_to_course(row: CourseRow) -> Course:
    return Course(
        id=row.id,
        slug=row.slug,
        title=row.title,
        token_reward=row.token_reward,
        lesson_ids=tuple(row.lesson_ids) if row.lesson_ids else (),
        status=row.status,
    )


def _row_to_student(row: StudentRow) -> Student:
    return Student(id=row.id, name=row.name or "", wallet_address=row.wallet_address)
