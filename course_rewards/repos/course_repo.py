from __future__ import annotations

from typing import Protocol
from uuid import UUID

from course_rewards.models.course import Course


class CourseRepo(Protocol):
    async def get(self, course_id: UUID) -> Course | None: ...
    async def get_by_slug(self, slug: str) -> Course | None: ...
    async def add(self, course: Course) -> None: ...
    async def list_all(self) -> list[Course]: ...


class InMemoryCourseRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Course] = {}
        self._by_slug: dict[str, Course] = {}

    async def get(self, course_id: UUID) -> Course | None:
        return self._by_id.get(course_id)

    async def get_by_slug(self, slug: str) -> Course | None:
        return self._by_slug.get(slug)

    async def add(self, course: Course) -> None:
        if course.slug in self._by_slug:
            raise ValueError("slug already exists")
        self._by_id[course.id] = course
        self._by_slug[course.slug] = course

    async def list_all(self) -> list[Course]:
        return list(self._by_id.values())
