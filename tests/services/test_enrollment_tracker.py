"""EnrollmentTracker: idempotent lessons and a single active → completed transition."""

from __future__ import annotations

import asyncio
import itertools
import uuid

import pytest

from course_rewards.core.errors import (
    AlreadyEnrolledError,
    NotEnrolledError,
    UnknownCourseError,
    UnknownLessonError,
    UnknownStudentError,
)
from course_rewards.models.enrollment import Enrollment
from course_rewards.repos.enrollment_repo import InMemoryEnrollmentRepo
from tests.conftest import LESSONS, make_services, seed_course, seed_student


class _YieldingEnrollmentRepo(InMemoryEnrollmentRepo):
    """Yields to the event loop before every read, so concurrent callers
    interleave the way they would against a real database."""

    async def get(self, student_id, course_id) -> Enrollment | None:
        await asyncio.sleep(0)
        return await super().get(student_id, course_id)

    async def add_lesson(self, student_id, course_id, lesson_id, time_spent):
        await asyncio.sleep(0)
        return await super().add_lesson(student_id, course_id, lesson_id, time_spent)


async def _enrolled(services, lessons=LESSONS):
    course = await seed_course(services, lessons=lessons)
    student = await seed_student(services)
    await services.tracker.enroll(student.id, course.id)
    return student, course


def test_enroll_creates_active_enrollment() -> None:
    async def scenario():
        services = make_services()
        course = await seed_course(services)
        student = await seed_student(services)
        result = await services.tracker.enroll(student.id, course.id)
        return result

    result = asyncio.run(scenario())
    assert result.just_completed is False
    assert result.enrollment.status == "active"
    assert result.enrollment.completed_lessons == frozenset()


def test_enroll_twice_raises() -> None:
    async def scenario():
        services = make_services()
        student, course = await _enrolled(services)
        await services.tracker.enroll(student.id, course.id)

    with pytest.raises(AlreadyEnrolledError):
        asyncio.run(scenario())


def test_enroll_unknown_course_or_student() -> None:
    async def unknown_course():
        services = make_services()
        student = await seed_student(services)
        await services.tracker.enroll(student.id, uuid.uuid4())

    async def unknown_student():
        services = make_services()
        course = await seed_course(services)
        await services.tracker.enroll(uuid.uuid4(), course.id)

    with pytest.raises(UnknownCourseError):
        asyncio.run(unknown_course())
    with pytest.raises(UnknownStudentError):
        asyncio.run(unknown_student())


def test_zero_lesson_course_completes_on_enroll() -> None:
    async def scenario():
        services = make_services()
        course = await seed_course(services, lessons=())
        student = await seed_student(services)
        return await services.tracker.enroll(student.id, course.id)

    result = asyncio.run(scenario())
    assert result.just_completed is True
    assert result.enrollment.status == "completed"
    assert result.enrollment.completed_at is not None


def test_complete_lesson_without_enrollment_raises_not_enrolled() -> None:
    async def scenario():
        services = make_services()
        course = await seed_course(services)
        student = await seed_student(services)
        await services.tracker.complete_lesson(student.id, course.id, "intro")

    with pytest.raises(NotEnrolledError):
        asyncio.run(scenario())


def test_complete_unknown_lesson_raises() -> None:
    async def scenario():
        services = make_services()
        student, course = await _enrolled(services)
        await services.tracker.complete_lesson(student.id, course.id, "not-a-lesson")

    with pytest.raises(UnknownLessonError):
        asyncio.run(scenario())


def test_repeated_lesson_is_idempotent() -> None:
    async def scenario():
        services = make_services()
        student, course = await _enrolled(services)
        first = await services.tracker.complete_lesson(student.id, course.id, "intro", 60)
        second = await services.tracker.complete_lesson(student.id, course.id, "intro", 60)
        return first, second

    first, second = asyncio.run(scenario())
    assert first.enrollment.completed_lessons == {"intro"}
    assert second.enrollment.completed_lessons == {"intro"}
    assert second.enrollment.total_time_spent == 60
    assert first.just_completed is False
    assert second.just_completed is False


@pytest.mark.parametrize("order", list(itertools.permutations(LESSONS)))
def test_any_order_completes_exactly_once(order: tuple[str, ...]) -> None:
    async def scenario():
        services = make_services()
        student, course = await _enrolled(services)
        flags = []
        for lesson in order:
            flags.append((await services.tracker.complete_lesson(student.id, course.id, lesson)).just_completed)
        # Replays after completion never report completion again.
        for lesson in order:
            flags.append((await services.tracker.complete_lesson(student.id, course.id, lesson)).just_completed)
        return flags

    flags = asyncio.run(scenario())
    assert flags.count(True) == 1
    assert flags[len(LESSONS) - 1] is True


def test_concurrent_last_lesson_completes_once() -> None:
    async def scenario():
        services = make_services(enrollments=_YieldingEnrollmentRepo())
        student, course = await _enrolled(services)
        await services.tracker.complete_lesson(student.id, course.id, "intro")
        await services.tracker.complete_lesson(student.id, course.id, "variables")
        results = await asyncio.gather(
            *[services.tracker.complete_lesson(student.id, course.id, "loops") for _ in range(5)]
        )
        return [r.just_completed for r in results]

    flags = asyncio.run(scenario())
    assert flags.count(True) == 1


def test_progress_reports_percent() -> None:
    async def scenario():
        services = make_services()
        student, course = await _enrolled(services)
        await services.tracker.complete_lesson(student.id, course.id, "intro")
        return await services.tracker.get_progress(student.id, course.id)

    progress = asyncio.run(scenario())
    assert progress.completed_count == 1
    assert progress.total_count == 3
    assert progress.percent == 33
    assert progress.is_complete is False


def test_list_enrollments_for_student() -> None:
    async def scenario():
        services = make_services()
        student = await seed_student(services)
        a = await seed_course(services, slug="course-a")
        b = await seed_course(services, slug="course-b")
        await services.tracker.enroll(student.id, a.id)
        await services.tracker.enroll(student.id, b.id)
        return {e.course_id for e in await services.tracker.list_enrollments(student.id)}, {a.id, b.id}

    listed, expected = asyncio.run(scenario())
    assert listed == expected
