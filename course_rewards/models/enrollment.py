from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from course_rewards.models.course import Course


@dataclass(frozen=True, slots=True)
class Enrollment:
    """Binding of one student to one course with its completion progress.

    ``status`` is the per-enrollment state machine: ``active`` until the
    completed set covers every lesson of the course, then ``completed``
    for good.
    """

    student_id: UUID
    course_id: UUID
    enrolled_at: int
    completed_lessons: frozenset[str] = frozenset()
    status: str = "active"  # active|completed
    completed_at: int | None = None
    total_time_spent: int = 0

    @property
    def is_complete(self) -> bool:
        return self.status == "completed"

    def covers(self, course: Course) -> bool:
        return self.completed_lessons.issuperset(course.lesson_ids)


@dataclass(frozen=True, slots=True)
class Progress:
    completed_count: int
    total_count: int
    percent: int
    is_complete: bool

    @staticmethod
    def of(enrollment: Enrollment, course: Course) -> Progress:
        total = len(course.lesson_ids)
        done = len(enrollment.completed_lessons)
        percent = 100 if total == 0 else round(done / total * 100)
        return Progress(
            completed_count=done,
            total_count=total,
            percent=percent,
            is_complete=enrollment.is_complete,
        )


@dataclass(frozen=True, slots=True)
class CompletionResult:
    enrollment: Enrollment
    just_completed: bool
