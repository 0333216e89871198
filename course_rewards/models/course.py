from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class Course:
    id: UUID
    slug: str
    title: str
    token_reward: int
    lesson_ids: tuple[str, ...] = ()
    status: str = "published"  # draft|published|retired

    @staticmethod
    def new(
        *,
        slug: str,
        title: str,
        token_reward: int,
        lesson_ids: tuple[str, ...] | list[str] = (),
        status: str = "published",
    ) -> Course:
        lessons = tuple(lesson_ids)
        if len(set(lessons)) != len(lessons):
            raise ValueError("lesson ids must be unique within a course")
        if token_reward < 0:
            raise ValueError("token_reward must be non-negative")
        return Course(
            id=uuid4(),
            slug=slug,
            title=title,
            token_reward=token_reward,
            lesson_ids=lessons,
            status=status,
        )

    @property
    def chain_course_id(self) -> int:
        """uint256 course id used by the token contract."""
        return self.id.int

    def has_lesson(self, lesson_id: str) -> bool:
        return lesson_id in self.lesson_ids
