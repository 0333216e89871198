from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from course_rewards.api.dependencies import get_services
from course_rewards.chain.contract import InMemoryTokenContract
from course_rewards.core.config import RewardMode, Settings
from course_rewards.main import app
from course_rewards.models.course import Course
from course_rewards.models.student import Student
from course_rewards.services.cache import cache_service
from course_rewards.services.container import Services, build_services
from course_rewards.services.task_queue import task_queue

# Ensure repo root is on sys.path so `import course_rewards` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

WALLET = "0x" + "ab" * 20
OTHER_WALLET = "0x" + "cd" * 20
LESSONS = ("intro", "variables", "loops")


def make_settings(reward_mode: RewardMode = "off-chain-only", **overrides) -> Settings:
    values = {
        "app_env": "test",
        "log_level": "info",
        "log_json": False,
        "port": 8000,
        "database_url": None,
        "redis_url": None,
        "reward_mode": reward_mode,
        "chain_confirmation_timeout": 5,
    }
    values.update(overrides)
    return Settings(**values)  # type: ignore[arg-type]


def make_services(
    reward_mode: RewardMode = "off-chain-only",
    contract: InMemoryTokenContract | None = None,
    **kwargs,
) -> Services:
    return build_services(
        make_settings(reward_mode),
        contract=contract or InMemoryTokenContract(),
        **kwargs,
    )


async def seed_course(
    services: Services,
    *,
    lessons: tuple[str, ...] = LESSONS,
    token_reward: int = 100,
    slug: str = "python-basics",
) -> Course:
    course = Course.new(
        slug=slug, title=slug.replace("-", " ").title(), token_reward=token_reward, lesson_ids=lessons
    )
    await services.courses.add(course)
    return course


async def seed_student(services: Services, *, wallet: str | None = WALLET) -> Student:
    student = Student.new(name="Ada", wallet_address=wallet)
    await services.students.add(student)
    return student


@pytest.fixture(autouse=True)
def reset_cache() -> None:
    """Clear the module-level cache between tests."""
    if hasattr(cache_service, "_store"):
        cache_service._store.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    """Clear task queues between tests."""
    if hasattr(task_queue, "_queues"):
        task_queue._queues.clear()  # type: ignore[union-attr]


@pytest.fixture
def services() -> Services:
    """Fresh in-memory services in off-chain mode."""
    return make_services()


@pytest.fixture
def client(services: Services) -> Iterator[TestClient]:
    app.dependency_overrides[get_services] = lambda: services
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ---- API helpers: create fixtures through the HTTP surface ----


def create_course(
    client: TestClient, *, lessons: tuple[str, ...] = LESSONS, token_reward: int = 100
) -> str:
    resp = client.post(
        "/v1/courses",
        json={
            "slug": "python-basics",
            "title": "Python Basics",
            "lesson_ids": list(lessons),
            "token_reward": token_reward,
        },
    )
    assert resp.status_code == 201
    return resp.json()["id"]


def create_student(client: TestClient, *, wallet: str | None = WALLET) -> str:
    resp = client.post("/v1/students", json={"name": "Ada", "wallet_address": wallet})
    assert resp.status_code == 201
    return resp.json()["id"]


def complete_course(client: TestClient, student_id: str, course_id: str) -> dict:
    """Enroll and complete every lesson; returns the last completion body."""
    resp = client.post(f"/v1/students/{student_id}/enrollments/{course_id}")
    assert resp.status_code == 201
    body = resp.json()
    for lesson in LESSONS:
        resp = client.post(
            f"/v1/students/{student_id}/enrollments/{course_id}/lessons/{lesson}/complete"
        )
        assert resp.status_code == 200
        body = resp.json()
    return body
