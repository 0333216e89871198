"""Chain Reconciler: drives a pending RewardRecord through the token contract.

    pending ──awardTokens──▶ on-chain-submitted ──receipt ok──▶ on-chain-confirmed
       │                             │
       └──────────── failed ◀────────┘ (reverted / unreachable / timed out)

Every status change is a compare-and-set on the RewardRecord, so a
settlement that lost a race to a sweep or a retry stops quietly instead
of overwriting the winner.

Before broadcasting, the reconciler asks the contract whether it already
holds the completion.  That read turns a crashed-and-restarted settlement,
or a retry of a transaction that was mined after we stopped waiting, into
a confirmation instead of a "Course already completed" revert.  If the
contract rejects anyway, the same read runs once more and decides.

Chain failures never propagate out of ``submit_award``: they end up as
``error_kind``/``error_message`` on a ``failed`` record, which
``RewardLedger.retry_award`` can pick up.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Awaitable, Iterable
from typing import TypeVar
from uuid import UUID

from course_rewards.chain.contract import TokenContract
from course_rewards.core.clock import now_ts
from course_rewards.core.errors import (
    ChainError,
    ChainRejectedError,
    ChainUnavailableError,
    InvalidAddressError,
    UnknownCourseError,
    UnknownStudentError,
)
from course_rewards.core.metrics import (
    CHAIN_CALLS,
    CHAIN_CONFIRMATION_SECONDS,
    REWARD_TRANSITIONS,
)
from course_rewards.models.reward import UNSETTLED_STATUSES, RewardRecord
from course_rewards.repos.course_repo import CourseRepo
from course_rewards.repos.reward_repo import RewardRepo
from course_rewards.repos.student_repo import StudentRepo

logger = logging.getLogger(__name__)

T = TypeVar("T")

# How long a sweep waits on an old transaction before leaving it for the next sweep.
SWEEP_RECEIPT_TIMEOUT = 5.0


def _log_extra(student_id: UUID, course_id: UUID, **fields: object) -> dict:
    return {"student_id": str(student_id), "course_id": str(course_id), **fields}


class ChainReconciler:
    def __init__(
        self,
        contract: TokenContract,
        rewards: RewardRepo,
        students: StudentRepo,
        courses: CourseRepo,
        *,
        confirmation_timeout: float = 120,
        stale_pending_after: int = 600,
    ) -> None:
        self._contract = contract
        self._rewards = rewards
        self._students = students
        self._courses = courses
        self._confirmation_timeout = confirmation_timeout
        self._stale_pending_after = stale_pending_after

    # -- helpers ---------------------------------------------------------

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            result = await awaitable
        except ChainRejectedError:
            CHAIN_CALLS.labels(operation=operation, result="rejected").inc()
            raise
        except Exception:
            CHAIN_CALLS.labels(operation=operation, result="unavailable").inc()
            raise
        CHAIN_CALLS.labels(operation=operation, result="ok").inc()
        return result

    async def _chain_key(self, student_id: UUID, course_id: UUID) -> tuple[str, int]:
        student = await self._students.get(student_id)
        if student is None:
            raise UnknownStudentError(str(student_id))
        if not student.has_wallet:
            raise InvalidAddressError(str(student_id))
        course = await self._courses.get(course_id)
        if course is None:
            raise UnknownCourseError(str(course_id))
        return student.wallet_address, course.chain_course_id  # type: ignore[return-value]

    async def _transition(
        self,
        record: RewardRecord,
        *,
        expected: Iterable[str],
        **changes: object,
    ) -> RewardRecord:
        updated = await self._rewards.transition(
            record.student_id,
            record.course_id,
            expected=expected,
            updated_at=now_ts(),
            **changes,
        )
        if updated is None:
            # Someone else moved the record first; theirs stands.
            current = await self._rewards.get(record.student_id, record.course_id)
            logger.info(
                "Reward settlement superseded",
                extra=_log_extra(
                    record.student_id,
                    record.course_id,
                    reward_status=current.status if current else None,
                ),
            )
            return current or record
        REWARD_TRANSITIONS.labels(status=updated.status).inc()
        return updated

    async def _confirm(
        self,
        record: RewardRecord,
        *,
        expected: Iterable[str],
        block_number: int | None = None,
    ) -> RewardRecord:
        changes: dict[str, object] = {
            "status": "on-chain-confirmed",
            "error_kind": None,
            "error_message": None,
        }
        if block_number is not None:
            changes["block_number"] = block_number
        confirmed = await self._transition(record, expected=expected, **changes)
        logger.info(
            "Reward confirmed on chain",
            extra=_log_extra(
                record.student_id,
                record.course_id,
                reward_status=confirmed.status,
                tx_hash=confirmed.transaction_ref,
            ),
        )
        return confirmed

    async def _fail(
        self,
        record: RewardRecord,
        exc: Exception,
        *,
        expected: Iterable[str],
    ) -> RewardRecord:
        if isinstance(exc, ChainError):
            kind = exc.kind
            logger.warning(
                "Reward settlement failed: %s",
                exc,
                extra=_log_extra(record.student_id, record.course_id, tx_hash=record.transaction_ref),
            )
        else:
            kind = "chain_unavailable"
            logger.exception(
                "Reward settlement crashed",
                extra=_log_extra(record.student_id, record.course_id, tx_hash=record.transaction_ref),
            )
        return await self._transition(
            record,
            expected=expected,
            status="failed",
            error_kind=kind,
            error_message=str(exc) or type(exc).__name__,
        )

    async def _already_on_chain(self, address: str, chain_course_id: int) -> bool:
        """Re-read after a rejection.  A failed read counts as 'no'."""
        try:
            return await self._call(
                "hasCourseCompleted",
                self._contract.has_course_completed(address, chain_course_id),
            )
        except Exception:
            return False

    # -- operations ------------------------------------------------------

    async def submit_award(
        self, student_id: UUID, course_id: UUID, amount: int
    ) -> RewardRecord | None:
        """Settle one pending record.  Returns the record as it was left.

        Does nothing if the record is no longer ``pending`` (another
        worker or a sweep got there first).
        """
        record = await self._rewards.get(student_id, course_id)
        if record is None or record.status != "pending":
            return record

        try:
            address, chain_course_id = await self._chain_key(student_id, course_id)
        except (InvalidAddressError, UnknownStudentError, UnknownCourseError) as exc:
            return await self._fail(
                record, ChainRejectedError(f"{type(exc).__name__}: {exc}"), expected={"pending"}
            )

        logger.info(
            "Submitting award of %d tokens",
            amount,
            extra=_log_extra(student_id, course_id, reward_status=record.status),
        )

        try:
            if await self._call(
                "hasCourseCompleted",
                self._contract.has_course_completed(address, chain_course_id),
            ):
                return await self._confirm(record, expected={"pending"})
            tx_hash = await self._call(
                "awardTokens", self._contract.award_tokens(address, chain_course_id)
            )
        except ChainRejectedError as exc:
            if await self._already_on_chain(address, chain_course_id):
                return await self._confirm(record, expected={"pending"})
            return await self._fail(record, exc, expected={"pending"})
        except Exception as exc:
            return await self._fail(record, exc, expected={"pending"})

        submitted = await self._transition(
            record,
            expected={"pending"},
            status="on-chain-submitted",
            transaction_ref=tx_hash,
            attempts=record.attempts + 1,
        )
        if submitted.status != "on-chain-submitted" or submitted.transaction_ref != tx_hash:
            return submitted
        logger.info(
            "awardTokens submitted",
            extra=_log_extra(student_id, course_id, reward_status=submitted.status, tx_hash=tx_hash),
        )

        started = time.perf_counter()
        try:
            receipt = await self._call(
                "waitForReceipt",
                self._contract.wait_for_receipt(tx_hash, self._confirmation_timeout),
            )
        except Exception as exc:
            return await self._fail(submitted, exc, expected={"on-chain-submitted"})
        CHAIN_CONFIRMATION_SECONDS.observe(time.perf_counter() - started)

        if receipt.succeeded:
            return await self._confirm(
                submitted, expected={"on-chain-submitted"}, block_number=receipt.block_number
            )
        if await self._already_on_chain(address, chain_course_id):
            return await self._confirm(submitted, expected={"on-chain-submitted"})
        return await self._fail(
            submitted,
            ChainRejectedError(f"transaction {tx_hash} reverted"),
            expected={"on-chain-submitted"},
        )

    async def read_award_status(self, student_id: UUID, course_id: UUID) -> bool:
        """Ask the contract directly.  Chain errors propagate to the caller."""
        address, chain_course_id = await self._chain_key(student_id, course_id)
        return await self._call(
            "hasCourseCompleted", self._contract.has_course_completed(address, chain_course_id)
        )

    async def read_completed_courses(self, student_id: UUID) -> list[int]:
        student = await self._students.get(student_id)
        if student is None:
            raise UnknownStudentError(str(student_id))
        if not student.has_wallet:
            raise InvalidAddressError(str(student_id))
        return await self._call(
            "getCompletedCourses",
            self._contract.get_completed_courses(student.wallet_address),  # type: ignore[arg-type]
        )

    async def reconcile(self, record: RewardRecord) -> RewardRecord:
        """Bring one unsettled record in line with the chain.

        Confirms it if the contract holds the completion; resolves a
        ``on-chain-submitted`` record from its receipt.  A ``pending``
        record nobody has settled for ``stale_pending_after`` seconds (its
        queued task was lost) is marked failed so it can be retried.
        Anything still undecided is left for the next sweep.
        """
        if record.is_terminal:
            return record
        try:
            address, chain_course_id = await self._chain_key(record.student_id, record.course_id)
        except (InvalidAddressError, UnknownStudentError, UnknownCourseError):
            return record

        try:
            if await self._call(
                "hasCourseCompleted",
                self._contract.has_course_completed(address, chain_course_id),
            ):
                return await self._confirm(record, expected=UNSETTLED_STATUSES)
            if record.status == "on-chain-submitted" and record.transaction_ref:
                receipt = await self._call(
                    "waitForReceipt",
                    self._contract.wait_for_receipt(record.transaction_ref, SWEEP_RECEIPT_TIMEOUT),
                )
                if receipt.succeeded:
                    return await self._confirm(
                        record,
                        expected={"on-chain-submitted"},
                        block_number=receipt.block_number,
                    )
                return await self._fail(
                    record,
                    ChainRejectedError(f"transaction {record.transaction_ref} reverted"),
                    expected={"on-chain-submitted"},
                )
            if (
                record.status == "pending"
                and now_ts() - record.updated_at >= self._stale_pending_after
            ):
                return await self._fail(
                    record,
                    ChainUnavailableError("settlement never ran"),
                    expected={"pending"},
                )
        except ChainError as exc:
            logger.info(
                "Reconciliation deferred: %s",
                exc,
                extra=_log_extra(record.student_id, record.course_id, reward_status=record.status),
            )
        return record

    async def sweep(self, records: Iterable[RewardRecord]) -> int:
        """Reconcile each record; returns how many reached a terminal status."""
        settled = 0
        for record in records:
            if (await self.reconcile(record)).is_terminal:
                settled += 1
        return settled
