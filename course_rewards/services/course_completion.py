"""Lesson completion → reward, the one entry point the API calls.

The tracker decides whether this call completed the course; only then is
the ledger asked to award.  A student without a linked wallet in on-chain
mode still gets the lesson recorded and the course completed.  The
outcome carries ``reward_error="invalid_address"`` and the reward can be
claimed once a wallet is linked.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from course_rewards.core.errors import InvalidAddressError
from course_rewards.models.enrollment import CompletionResult, Enrollment
from course_rewards.models.reward import RewardRecord
from course_rewards.services.enrollment_tracker import EnrollmentTracker
from course_rewards.services.reward_ledger import RewardLedger


@dataclass(frozen=True, slots=True)
class LessonCompletion:
    student_id: UUID
    course_id: UUID
    lesson_id: str
    time_spent: int = 0


@dataclass(frozen=True, slots=True)
class CompletionOutcome:
    enrollment: Enrollment
    just_completed: bool
    reward: RewardRecord | None = None
    reward_error: str | None = None

    @property
    def tokens_earned(self) -> int:
        if not self.just_completed or self.reward is None:
            return 0
        return self.reward.amount


class CourseCompletionService:
    def __init__(self, tracker: EnrollmentTracker, ledger: RewardLedger) -> None:
        self._tracker = tracker
        self._ledger = ledger

    async def _award(self, result: CompletionResult) -> CompletionOutcome:
        if not result.just_completed:
            return CompletionOutcome(result.enrollment, just_completed=False)
        enrollment = result.enrollment
        try:
            reward = await self._ledger.award_if_eligible(
                enrollment.student_id, enrollment.course_id
            )
        except InvalidAddressError:
            return CompletionOutcome(
                enrollment, just_completed=True, reward_error="invalid_address"
            )
        return CompletionOutcome(enrollment, just_completed=True, reward=reward)

    async def enroll(self, student_id: UUID, course_id: UUID) -> CompletionOutcome:
        return await self._award(await self._tracker.enroll(student_id, course_id))

    async def complete_lesson(self, event: LessonCompletion) -> CompletionOutcome:
        result = await self._tracker.complete_lesson(
            event.student_id, event.course_id, event.lesson_id, event.time_spent
        )
        return await self._award(result)

    async def claim(self, student_id: UUID, course_id: UUID) -> RewardRecord | None:
        """Award a completed course that has no reward yet (e.g. the wallet
        was linked after completion).  Idempotent."""
        return await self._ledger.award_if_eligible(student_id, course_id)
