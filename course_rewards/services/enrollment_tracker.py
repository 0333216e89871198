"""Enrollment Tracker: lesson completions and the active → completed transition.

The tracker's one job that matters downstream is ``just_completed``.  It
is True for exactly one call per enrollment, the one whose compare-and-set
moved the enrollment from ``active`` to ``completed``, and that call alone
triggers a reward.  Replaying a lesson, completing lessons in a different
order, or racing two requests for the last lesson cannot produce a second
True.
"""

from __future__ import annotations

import logging
from uuid import UUID

from course_rewards.core.clock import now_ts
from course_rewards.core.errors import (
    NotEnrolledError,
    UnknownCourseError,
    UnknownLessonError,
    UnknownStudentError,
)
from course_rewards.core.metrics import LESSON_COMPLETIONS
from course_rewards.models.course import Course
from course_rewards.models.enrollment import CompletionResult, Enrollment, Progress
from course_rewards.repos.course_repo import CourseRepo
from course_rewards.repos.enrollment_repo import EnrollmentRepo
from course_rewards.repos.student_repo import StudentRepo

logger = logging.getLogger(__name__)


class EnrollmentTracker:
    def __init__(
        self,
        courses: CourseRepo,
        students: StudentRepo,
        enrollments: EnrollmentRepo,
    ) -> None:
        self._courses = courses
        self._students = students
        self._enrollments = enrollments

    async def _course(self, course_id: UUID) -> Course:
        course = await self._courses.get(course_id)
        if course is None:
            raise UnknownCourseError(str(course_id))
        return course

    async def enroll(self, student_id: UUID, course_id: UUID) -> CompletionResult:
        """Create the enrollment.

        A course with no lessons is complete the moment the student joins,
        so this returns ``just_completed=True`` for it and the caller awards
        the reward on enrollment.
        """
        course = await self._course(course_id)
        if await self._students.get(student_id) is None:
            raise UnknownStudentError(str(student_id))

        now = now_ts()
        enrollment = Enrollment(student_id=student_id, course_id=course_id, enrolled_at=now)
        await self._enrollments.add(enrollment)
        logger.info(
            "Enrolled student in course",
            extra={"student_id": str(student_id), "course_id": str(course_id)},
        )

        if course.lesson_ids:
            return CompletionResult(enrollment, just_completed=False)

        completed = await self._enrollments.mark_completed(student_id, course_id, now)
        return CompletionResult(completed or enrollment, just_completed=completed is not None)

    async def complete_lesson(
        self,
        student_id: UUID,
        course_id: UUID,
        lesson_id: str,
        time_spent: int = 0,
    ) -> CompletionResult:
        enrollment = await self._enrollments.get(student_id, course_id)
        if enrollment is None:
            raise NotEnrolledError(f"{student_id}:{course_id}")

        course = await self._course(course_id)
        if not course.has_lesson(lesson_id):
            raise UnknownLessonError(lesson_id)

        if enrollment.is_complete:
            LESSON_COMPLETIONS.labels(outcome="duplicate").inc()
            return CompletionResult(enrollment, just_completed=False)

        already_done = lesson_id in enrollment.completed_lessons
        updated = await self._enrollments.add_lesson(
            student_id, course_id, lesson_id, max(time_spent, 0)
        )
        if updated is None:
            raise NotEnrolledError(f"{student_id}:{course_id}")
        LESSON_COMPLETIONS.labels(outcome="duplicate" if already_done else "recorded").inc()

        if not updated.covers(course):
            return CompletionResult(updated, just_completed=False)

        completed = await self._enrollments.mark_completed(student_id, course_id, now_ts())
        if completed is None:
            # Another request for this enrollment won the transition.
            current = await self._enrollments.get(student_id, course_id)
            return CompletionResult(current or updated, just_completed=False)

        LESSON_COMPLETIONS.labels(outcome="course_completed").inc()
        logger.info(
            "Course completed",
            extra={"student_id": str(student_id), "course_id": str(course_id)},
        )
        return CompletionResult(completed, just_completed=True)

    async def get_progress(self, student_id: UUID, course_id: UUID) -> Progress:
        enrollment = await self._enrollments.get(student_id, course_id)
        if enrollment is None:
            raise NotEnrolledError(f"{student_id}:{course_id}")
        return Progress.of(enrollment, await self._course(course_id))

    async def get_enrollment(self, student_id: UUID, course_id: UUID) -> Enrollment | None:
        return await self._enrollments.get(student_id, course_id)

    async def list_enrollments(self, student_id: UUID) -> list[Enrollment]:
        return await self._enrollments.list_for_student(student_id)
