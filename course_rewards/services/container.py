"""Wiring: which repositories, contract and settlement runner a process uses.

Same selection rule as the rest of the service: Postgres repositories
when DATABASE_URL is set, a queued runner when REDIS_URL is set, the
real chain when CHAIN_RPC_URL is set; in-memory stand-ins otherwise.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from course_rewards.chain.contract import InMemoryTokenContract, TokenContract
from course_rewards.chain.session import open_chain_session
from course_rewards.core.config import Settings
from course_rewards.db.engine import async_session_factory
from course_rewards.db.redis import redis_pool
from course_rewards.repos.course_repo import CourseRepo, InMemoryCourseRepo
from course_rewards.repos.enrollment_repo import EnrollmentRepo, InMemoryEnrollmentRepo
from course_rewards.repos.reward_repo import InMemoryRewardRepo, RewardRepo
from course_rewards.repos.student_repo import InMemoryStudentRepo, StudentRepo
from course_rewards.services.cache import CacheService, InMemoryCacheService, cache_service
from course_rewards.services.chain_reconciler import ChainReconciler
from course_rewards.services.course_completion import CourseCompletionService
from course_rewards.services.enrollment_tracker import EnrollmentTracker
from course_rewards.services.reward_ledger import RewardLedger
from course_rewards.services.settlement import (
    InlineSettlementRunner,
    QueuedSettlementRunner,
    SettlementRunner,
)
from course_rewards.services.task_queue import task_queue

logger = logging.getLogger(__name__)

# Shutdown waits this long for inline settlements before leaving them to the sweep.
DRAIN_TIMEOUT_SECONDS = 10.0


@dataclass
class Services:
    courses: CourseRepo
    students: StudentRepo
    enrollments: EnrollmentRepo
    rewards: RewardRepo
    contract: TokenContract
    cache: CacheService
    reconciler: ChainReconciler
    runner: SettlementRunner
    ledger: RewardLedger
    tracker: EnrollmentTracker
    completions: CourseCompletionService


def build_services(
    settings: Settings,
    *,
    contract: TokenContract | None = None,
    courses: CourseRepo | None = None,
    students: StudentRepo | None = None,
    enrollments: EnrollmentRepo | None = None,
    rewards: RewardRepo | None = None,
    cache: CacheService | None = None,
    runner: SettlementRunner | None = None,
) -> Services:
    """Assemble the services.  Anything not passed in is in-memory, and
    the runner defaults to an InlineSettlementRunner."""
    courses = courses or InMemoryCourseRepo()
    students = students or InMemoryStudentRepo()
    enrollments = enrollments or InMemoryEnrollmentRepo()
    rewards = rewards or InMemoryRewardRepo()
    contract = contract or InMemoryTokenContract(default_reward=settings.default_token_reward)

    reconciler = ChainReconciler(
        contract,
        rewards,
        students,
        courses,
        confirmation_timeout=settings.chain_confirmation_timeout,
    )
    runner = runner or InlineSettlementRunner(reconciler)
    ledger = RewardLedger(
        rewards, courses, students, enrollments, runner, mode=settings.reward_mode
    )
    tracker = EnrollmentTracker(courses, students, enrollments)
    return Services(
        courses=courses,
        students=students,
        enrollments=enrollments,
        rewards=rewards,
        contract=contract,
        cache=cache or InMemoryCacheService(),
        reconciler=reconciler,
        runner=runner,
        ledger=ledger,
        tracker=tracker,
        completions=CourseCompletionService(tracker, ledger),
    )


@asynccontextmanager
async def open_services(settings: Settings) -> AsyncIterator[Services]:
    """Process-scoped services for the API lifespan and the worker."""
    repos: dict = {}
    if async_session_factory is not None:
        # Imported here so in-memory runs never touch the Postgres dialect.
        from course_rewards.repos.pg_catalog_repo import PgCourseRepo, PgStudentRepo
        from course_rewards.repos.pg_enrollment_repo import PgEnrollmentRepo
        from course_rewards.repos.pg_reward_repo import PgRewardRepo

        repos = {
            "courses": PgCourseRepo(async_session_factory),
            "students": PgStudentRepo(async_session_factory),
            "enrollments": PgEnrollmentRepo(async_session_factory),
            "rewards": PgRewardRepo(async_session_factory),
        }

    async with open_chain_session(settings) as contract:
        runner = QueuedSettlementRunner(task_queue) if redis_pool is not None else None
        services = build_services(
            settings, contract=contract, cache=cache_service, runner=runner, **repos
        )
        logger.info(
            "Services ready: mode=%s, store=%s, settlement=%s",
            settings.reward_mode,
            "postgres" if repos else "memory",
            type(services.runner).__name__,
        )
        try:
            yield services
        finally:
            if isinstance(services.runner, InlineSettlementRunner):
                await services.runner.drain(DRAIN_TIMEOUT_SECONDS)
