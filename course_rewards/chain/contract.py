"""Token contract port and the in-process simulated contract.

The service consumes three operations of the deployed course token:

    awardTokens(address student, uint256 courseId) returns (bool)
    hasCourseCompleted(address student, uint256 courseId) view returns (bool)
    getCompletedCourses(address student) view returns (uint256[])

``TokenContract`` is that surface, plus waiting for a receipt.  Adapters
raise ChainUnavailableError / ChainRejectedError and nothing else for
chain-side failures; the ChainReconciler turns those into RewardRecord
status.

InMemoryTokenContract behaves like the deployed contract (one award per
student and course, the same revert strings, a CourseCompleted event per
award) and separates broadcast from mining, so a transaction can be sent
and still be unconfirmed.  It is what the service runs against when no
CHAIN_RPC_URL is configured.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from course_rewards.core.errors import ChainRejectedError, ChainUnavailableError
from course_rewards.models.student import is_valid_address

ALREADY_COMPLETED = "Course already completed"
INVALID_STUDENT = "Invalid student address"


@dataclass(frozen=True, slots=True)
class TxReceipt:
    tx_hash: str
    block_number: int
    succeeded: bool


@dataclass(frozen=True, slots=True)
class CourseCompletedEvent:
    student: str
    course_id: int
    reward: int
    block_number: int


@runtime_checkable
class TokenContract(Protocol):
    async def has_course_completed(self, student: str, course_id: int) -> bool: ...
    async def get_completed_courses(self, student: str) -> list[int]: ...
    async def award_tokens(self, student: str, course_id: int) -> str: ...
    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> TxReceipt: ...


class InMemoryTokenContract:
    """Simulated course token.

    auto_mine=True mines a broadcast transaction as soon as someone waits
    for its receipt.  With auto_mine=False transactions stay in the mempool
    until ``mine()`` is called, and waiting for them times out.
    """

    def __init__(self, *, default_reward: int = 100, auto_mine: bool = True) -> None:
        self.default_reward = default_reward
        self.auto_mine = auto_mine
        self.course_rewards: dict[int, int] = {}
        self.balances: dict[str, int] = {}
        self.events: list[CourseCompletedEvent] = []
        self.broadcast_count = 0
        self._completed: dict[str, list[int]] = {}
        self._mempool: dict[str, tuple[str, int]] = {}
        self._receipts: dict[str, TxReceipt] = {}
        self._block_number = 0

    async def has_course_completed(self, student: str, course_id: int) -> bool:
        return course_id in self._completed.get(student.lower(), [])

    async def get_completed_courses(self, student: str) -> list[int]:
        return list(self._completed.get(student.lower(), []))

    async def award_tokens(self, student: str, course_id: int) -> str:
        # Gas estimation runs the call against current state, so these
        # reverts surface before anything is broadcast.
        if not is_valid_address(student):
            raise ChainRejectedError(INVALID_STUDENT)
        if await self.has_course_completed(student, course_id):
            raise ChainRejectedError(ALREADY_COMPLETED)

        tx_hash = "0x" + secrets.token_hex(32)
        self._mempool[tx_hash] = (student.lower(), course_id)
        self.broadcast_count += 1
        return tx_hash

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> TxReceipt:
        if tx_hash in self._mempool and self.auto_mine:
            self.mine()
        receipt = self._receipts.get(tx_hash)
        if receipt is None:
            raise ChainUnavailableError(
                f"Transaction {tx_hash} is not in the chain after {timeout} seconds"
            )
        return receipt

    def mine(self) -> int:
        """Include every pending transaction in a new block."""
        self._block_number += 1
        for tx_hash, (student, course_id) in list(self._mempool.items()):
            del self._mempool[tx_hash]
            completed = self._completed.setdefault(student, [])
            if course_id in completed:
                # Two awards raced into the same block; the second reverts.
                self._receipts[tx_hash] = TxReceipt(tx_hash, self._block_number, False)
                continue
            reward = self.course_rewards.get(course_id, self.default_reward)
            completed.append(course_id)
            self.balances[student] = self.balances.get(student, 0) + reward
            self.events.append(
                CourseCompletedEvent(student, course_id, reward, self._block_number)
            )
            self._receipts[tx_hash] = TxReceipt(tx_hash, self._block_number, True)
        return self._block_number

    def balance_of(self, student: str) -> int:
        return self.balances.get(student.lower(), 0)
