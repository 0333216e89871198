from __future__ import annotations

from dataclasses import dataclass
from typing import Literal
from uuid import UUID, uuid4

RewardStatus = Literal[
    "pending",
    "off-chain-credited",
    "on-chain-submitted",
    "on-chain-confirmed",
    "failed",
]

# No transition leaves these; a second award is never issued.
TERMINAL_STATUSES: frozenset[str] = frozenset({"off-chain-credited", "on-chain-confirmed"})
UNSETTLED_STATUSES: frozenset[str] = frozenset(
    {"pending", "on-chain-submitted", "failed"}
)


@dataclass(frozen=True, slots=True)
class RewardRecord:
    """Authoritative off-chain record that a (student, course) pair was rewarded.

    Exactly one exists per pair; it is mutated in place through status
    transitions and never deleted.
    """

    id: UUID
    student_id: UUID
    course_id: UUID
    amount: int
    status: RewardStatus
    created_at: int
    updated_at: int
    transaction_ref: str | None = None
    block_number: int | None = None
    error_kind: str | None = None  # chain_unavailable|chain_rejected
    error_message: str | None = None
    attempts: int = 0

    @staticmethod
    def new(
        *, student_id: UUID, course_id: UUID, amount: int, now: int
    ) -> RewardRecord:
        return RewardRecord(
            id=uuid4(),
            student_id=student_id,
            course_id=course_id,
            amount=amount,
            status="pending",
            created_at=now,
            updated_at=now,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass(frozen=True, slots=True)
class TokenBalance:
    student_id: UUID
    earned: int
    unsettled: int
    rewarded_courses: int
