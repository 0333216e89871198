"""Enrollment, lesson completion and cached progress endpoints.

Lesson completion sequence:
  Client -> POST /v1/students/{id}/enrollments/{course_id}/lessons/{lesson_id}/complete
  -> EnrollmentTracker records the lesson (idempotent)
  -> if this call completed the course: RewardLedger.award_if_eligible
  -> invalidate the cached progress summary
  -> 200 {just_completed, tokens_earned, ...}

GET .../progress is a read-through cache over the enrollment store.
"""

from __future__ import annotations

import json
from uuid import UUID

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from course_rewards.api.dependencies import ServicesDep
from course_rewards.core.errors import (
    AlreadyEnrolledError,
    NotEnrolledError,
    UnknownCourseError,
    UnknownLessonError,
    UnknownStudentError,
)
from course_rewards.models.enrollment import Enrollment
from course_rewards.services.cache import progress_cache_key
from course_rewards.services.course_completion import CompletionOutcome, LessonCompletion

router = APIRouter(prefix="/v1/students", tags=["progress"])

# Dashboards poll this; 5 minutes bounds staleness if an invalidation is missed.
_PROGRESS_CACHE_TTL = 300


class LessonCompleteIn(BaseModel):
    time_spent: int = Field(default=0, ge=0)  # seconds


class EnrollmentOut(BaseModel):
    student_id: str
    course_id: str
    status: str
    enrolled_at: int
    completed_at: int | None
    completed_lessons: list[str]
    total_time_spent: int


class CompletionOut(BaseModel):
    enrollment: EnrollmentOut
    just_completed: bool
    tokens_earned: int
    reward_status: str | None
    reward_error: str | None


class ProgressOut(BaseModel):
    student_id: str
    course_id: str
    completed_count: int
    total_count: int
    percent: int
    is_complete: bool


def _enrollment_out(enrollment: Enrollment) -> EnrollmentOut:
    return EnrollmentOut(
        student_id=str(enrollment.student_id),
        course_id=str(enrollment.course_id),
        status=enrollment.status,
        enrolled_at=enrollment.enrolled_at,
        completed_at=enrollment.completed_at,
        completed_lessons=sorted(enrollment.completed_lessons),
        total_time_spent=enrollment.total_time_spent,
    )


def _completion_out(outcome: CompletionOutcome) -> CompletionOut:
    return CompletionOut(
        enrollment=_enrollment_out(outcome.enrollment),
        just_completed=outcome.just_completed,
        tokens_earned=outcome.tokens_earned,
        reward_status=outcome.reward.status if outcome.reward else None,
        reward_error=outcome.reward_error,
    )


@router.post(
    "/{student_id}/enrollments/{course_id}",
    response_model=CompletionOut,
    status_code=status.HTTP_201_CREATED,
)
async def enroll(student_id: UUID, course_id: UUID, services: ServicesDep) -> CompletionOut:
    try:
        outcome = await services.completions.enroll(student_id, course_id)
    except UnknownCourseError:
        raise HTTPException(status_code=404, detail="course not found") from None
    except UnknownStudentError:
        raise HTTPException(status_code=404, detail="student not found") from None
    except AlreadyEnrolledError:
        raise HTTPException(status_code=409, detail="already enrolled") from None
    return _completion_out(outcome)


@router.get("/{student_id}/enrollments", response_model=list[EnrollmentOut])
async def list_enrollments(student_id: UUID, services: ServicesDep) -> list[EnrollmentOut]:
    enrollments = await services.tracker.list_enrollments(student_id)
    return [_enrollment_out(e) for e in sorted(enrollments, key=lambda e: e.enrolled_at)]


@router.post(
    "/{student_id}/enrollments/{course_id}/lessons/{lesson_id}/complete",
    response_model=CompletionOut,
)
async def complete_lesson(
    student_id: UUID,
    course_id: UUID,
    lesson_id: str,
    services: ServicesDep,
    body: LessonCompleteIn | None = None,
) -> CompletionOut:
    event = LessonCompletion(
        student_id=student_id,
        course_id=course_id,
        lesson_id=lesson_id,
        time_spent=body.time_spent if body else 0,
    )
    try:
        outcome = await services.completions.complete_lesson(event)
    except NotEnrolledError:
        raise HTTPException(status_code=404, detail="not enrolled in this course") from None
    except UnknownCourseError:
        raise HTTPException(status_code=404, detail="course not found") from None
    except UnknownLessonError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"lesson {lesson_id!r} is not part of this course",
        ) from None

    await services.cache.delete(progress_cache_key(student_id, course_id))
    return _completion_out(outcome)


@router.get("/{student_id}/enrollments/{course_id}/progress", response_model=ProgressOut)
async def get_progress(student_id: UUID, course_id: UUID, services: ServicesDep) -> ProgressOut:
    cache_key = progress_cache_key(student_id, course_id)
    cached = await services.cache.get(cache_key)
    if cached is not None:
        return ProgressOut(**json.loads(cached))

    try:
        progress = await services.tracker.get_progress(student_id, course_id)
    except NotEnrolledError:
        raise HTTPException(status_code=404, detail="not enrolled in this course") from None
    except UnknownCourseError:
        raise HTTPException(status_code=404, detail="course not found") from None

    out = ProgressOut(
        student_id=str(student_id),
        course_id=str(course_id),
        completed_count=progress.completed_count,
        total_count=progress.total_count,
        percent=progress.percent,
        is_complete=progress.is_complete,
    )
    await services.cache.set(cache_key, out.model_dump_json(), _PROGRESS_CACHE_TTL)
    return out
