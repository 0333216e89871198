"""Course catalog endpoints.

A course's ``token_reward`` is what a student earns for completing it.
The amount is copied onto the RewardRecord at award time, so editing a
course never changes rewards already issued.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from course_rewards.api.dependencies import ServicesDep
from course_rewards.core.config import SETTINGS
from course_rewards.models.course import Course

router = APIRouter(prefix="/v1/courses", tags=["courses"])


class CourseIn(BaseModel):
    slug: str = Field(min_length=1, max_length=100)
    title: str = Field(min_length=1, max_length=200)
    lesson_ids: list[str] = []
    token_reward: int | None = Field(default=None, ge=0)


class CourseOut(BaseModel):
    id: str
    slug: str
    title: str
    status: str
    token_reward: int
    lesson_ids: list[str]


def _course_out(course: Course) -> CourseOut:
    return CourseOut(
        id=str(course.id),
        slug=course.slug,
        title=course.title,
        status=course.status,
        token_reward=course.token_reward,
        lesson_ids=list(course.lesson_ids),
    )


@router.post("", response_model=CourseOut, status_code=status.HTTP_201_CREATED)
async def create_course(body: CourseIn, services: ServicesDep) -> CourseOut:
    reward = body.token_reward
    if reward is None:
        reward = SETTINGS.default_token_reward
    try:
        course = Course.new(
            slug=body.slug,
            title=body.title,
            token_reward=reward,
            lesson_ids=body.lesson_ids,
        )
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e)
        ) from None

    try:
        await services.courses.add(course)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="slug already exists"
        ) from None
    return _course_out(course)


@router.get("", response_model=list[CourseOut])
async def list_courses(services: ServicesDep) -> list[CourseOut]:
    return [_course_out(c) for c in await services.courses.list_all()]


@router.get("/{course_id}", response_model=CourseOut)
async def get_course(course_id: UUID, services: ServicesDep) -> CourseOut:
    course = await services.courses.get(course_id)
    if course is None:
        raise HTTPException(status_code=404, detail="course not found")
    return _course_out(course)
