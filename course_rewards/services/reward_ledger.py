"""Reward Ledger: exactly one RewardRecord per (student, course).

Idempotency rests on two store primitives:

- ``RewardRepo.add`` is create-if-absent.  Two concurrent awards for the
  same pair both try to insert; one wins, the other gets
  DuplicateAwardAttempt and returns the winner's record.
- ``RewardRepo.transition`` is compare-and-set on status, so only one
  caller can move a record out of ``failed`` on retry, and nothing can
  move it out of a terminal status.

Off-chain mode credits the record inside the request.  On-chain mode
leaves it ``pending`` and hands it to the SettlementRunner; the
ChainReconciler takes it from there.
"""

from __future__ import annotations

import logging
from uuid import UUID

from course_rewards.core.config import RewardMode
from course_rewards.core.clock import now_ts
from course_rewards.core.errors import (
    DuplicateAwardAttempt,
    InvalidAddressError,
    RetryNotAllowedError,
    UnknownCourseError,
    UnknownStudentError,
)
from course_rewards.core.metrics import REWARD_TRANSITIONS
from course_rewards.models.reward import (
    UNSETTLED_STATUSES,
    RewardRecord,
    TokenBalance,
)
from course_rewards.repos.course_repo import CourseRepo
from course_rewards.repos.enrollment_repo import EnrollmentRepo
from course_rewards.repos.reward_repo import RewardRepo
from course_rewards.repos.student_repo import StudentRepo
from course_rewards.services.settlement import SettlementRunner

logger = logging.getLogger(__name__)


class RewardLedger:
    def __init__(
        self,
        rewards: RewardRepo,
        courses: CourseRepo,
        students: StudentRepo,
        enrollments: EnrollmentRepo,
        runner: SettlementRunner,
        *,
        mode: RewardMode = "off-chain-only",
    ) -> None:
        self._rewards = rewards
        self._courses = courses
        self._students = students
        self._enrollments = enrollments
        self._runner = runner
        self.mode = mode

    async def _require_wallet(self, student_id: UUID) -> None:
        student = await self._students.get(student_id)
        if student is None:
            raise UnknownStudentError(str(student_id))
        if not student.has_wallet:
            raise InvalidAddressError(
                f"student {student_id} has no wallet address; link one before claiming"
            )

    async def _issue(self, record: RewardRecord) -> RewardRecord:
        if self.mode == "off-chain-only":
            credited = await self._rewards.transition(
                record.student_id,
                record.course_id,
                expected={"pending"},
                status="off-chain-credited",
                updated_at=now_ts(),
            )
            if credited is None:
                return await self._rewards.get(record.student_id, record.course_id) or record
            REWARD_TRANSITIONS.labels(status=credited.status).inc()
            logger.info(
                "Reward credited off-chain",
                extra={
                    "student_id": str(record.student_id),
                    "course_id": str(record.course_id),
                    "reward_status": credited.status,
                },
            )
            return credited

        await self._runner.schedule(record.student_id, record.course_id, record.amount)
        return record

    async def award_if_eligible(self, student_id: UUID, course_id: UUID) -> RewardRecord | None:
        """Create and issue the reward for a completed enrollment.

        Returns the existing record unchanged if the pair was already
        awarded (whatever its status), and None if the enrollment is not
        completed.  In on-chain mode raises InvalidAddressError before
        creating anything when the student has no wallet.
        """
        existing = await self._rewards.get(student_id, course_id)
        if existing is not None:
            return existing

        course = await self._courses.get(course_id)
        if course is None:
            raise UnknownCourseError(str(course_id))
        enrollment = await self._enrollments.get(student_id, course_id)
        if enrollment is None or not enrollment.is_complete:
            return None
        if self.mode == "on-chain":
            await self._require_wallet(student_id)

        record = RewardRecord.new(
            student_id=student_id,
            course_id=course_id,
            amount=course.token_reward,
            now=now_ts(),
        )
        try:
            await self._rewards.add(record)
        except DuplicateAwardAttempt:
            winner = await self._rewards.get(student_id, course_id)
            if winner is None:
                raise
            logger.info(
                "Concurrent award already recorded",
                extra={"student_id": str(student_id), "course_id": str(course_id)},
            )
            return winner

        REWARD_TRANSITIONS.labels(status="pending").inc()
        logger.info(
            "Reward of %d tokens recorded",
            record.amount,
            extra={
                "student_id": str(student_id),
                "course_id": str(course_id),
                "reward_status": record.status,
            },
        )
        return await self._issue(record)

    async def retry_award(self, student_id: UUID, course_id: UUID) -> RewardRecord:
        record = await self._rewards.get(student_id, course_id)
        if record is None:
            raise RetryNotAllowedError("no reward has been recorded for this course")
        if record.status != "failed":
            raise RetryNotAllowedError(f"reward is {record.status}, only failed rewards can be retried")
        if self.mode == "on-chain":
            await self._require_wallet(student_id)

        reset = await self._rewards.transition(
            student_id,
            course_id,
            expected={"failed"},
            status="pending",
            error_kind=None,
            error_message=None,
            updated_at=now_ts(),
        )
        if reset is None:
            raise RetryNotAllowedError("reward is already being retried")
        REWARD_TRANSITIONS.labels(status="pending").inc()
        logger.info(
            "Retrying reward after %s",
            record.error_kind,
            extra={
                "student_id": str(student_id),
                "course_id": str(course_id),
                "tx_hash": record.transaction_ref,
            },
        )
        return await self._issue(reset)

    async def get_reward_status(self, student_id: UUID, course_id: UUID) -> RewardRecord | None:
        return await self._rewards.get(student_id, course_id)

    async def list_rewards(self, student_id: UUID) -> list[RewardRecord]:
        records = await self._rewards.list_for_student(student_id)
        return sorted(records, key=lambda r: r.created_at)

    async def list_unsettled(self) -> list[RewardRecord]:
        return await self._rewards.list_by_status(UNSETTLED_STATUSES)

    async def get_balance(self, student_id: UUID) -> TokenBalance:
        """Tokens earned per the ledger.  ``earned`` counts settled rewards
        only; ``unsettled`` is what is still pending, in flight or failed."""
        earned = unsettled = rewarded = 0
        for record in await self._rewards.list_for_student(student_id):
            if record.is_terminal:
                earned += record.amount
                rewarded += 1
            else:
                unsettled += record.amount
        return TokenBalance(
            student_id=student_id,
            earned=earned,
            unsettled=unsettled,
            rewarded_courses=rewarded,
        )
