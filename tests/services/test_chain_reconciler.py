"""ChainReconciler: pre-check, submission, receipt handling and sweeps."""

from __future__ import annotations

import asyncio
import time

import pytest
from prometheus_client import REGISTRY

from course_rewards.chain.contract import InMemoryTokenContract, TxReceipt
from course_rewards.core.errors import ChainUnavailableError, InvalidAddressError
from course_rewards.models.reward import RewardRecord
from tests.conftest import WALLET, make_services, seed_course, seed_student


def _get_sample(name: str, labels: dict | None = None) -> float:
    value = REGISTRY.get_sample_value(name, labels=labels or {})
    return value if value is not None else 0.0


class _StaleReadContract(InMemoryTokenContract):
    """The next `stale_reads` hasCourseCompleted answers are stale (a lagging RPC node)."""

    def __init__(self) -> None:
        super().__init__()
        self.stale_reads = 0

    async def has_course_completed(self, student: str, course_id: int) -> bool:
        if self.stale_reads:
            self.stale_reads -= 1
            return False
        return await super().has_course_completed(student, course_id)


class _RevertingContract(InMemoryTokenContract):
    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> TxReceipt:
        self._mempool.pop(tx_hash, None)
        return TxReceipt(tx_hash=tx_hash, block_number=7, succeeded=False)


class _UnreachableReadContract(InMemoryTokenContract):
    async def has_course_completed(self, student: str, course_id: int) -> bool:
        raise ChainUnavailableError("connection refused")


class _BrokenContract(InMemoryTokenContract):
    async def award_tokens(self, student: str, course_id: int) -> str:
        raise RuntimeError("signer crashed")


async def _pending(services, *, wallet=WALLET, updated_at=None):
    course = await seed_course(services, lessons=())
    student = await seed_student(services, wallet=wallet)
    now = updated_at if updated_at is not None else int(time.time())
    record = RewardRecord.new(student_id=student.id, course_id=course.id, amount=100, now=now)
    await services.rewards.add(record)
    return student, course, record


def test_submit_award_confirms_with_block_number() -> None:
    contract = InMemoryTokenContract()
    before = _get_sample("chain_calls_total", {"operation": "awardTokens", "result": "ok"})

    async def scenario():
        services = make_services("on-chain", contract=contract)
        student, course, _ = await _pending(services)
        return await services.reconciler.submit_award(student.id, course.id, 100)

    record = asyncio.run(scenario())
    assert record.status == "on-chain-confirmed"
    assert record.block_number == 1
    assert record.attempts == 1
    assert contract.balance_of(WALLET) == 100
    after = _get_sample("chain_calls_total", {"operation": "awardTokens", "result": "ok"})
    assert after - before == 1


def test_precheck_skips_broadcast_when_chain_already_has_award() -> None:
    contract = InMemoryTokenContract()

    async def scenario():
        services = make_services("on-chain", contract=contract)
        student, course, _ = await _pending(services)
        await contract.award_tokens(WALLET, course.chain_course_id)
        contract.mine()
        return await services.reconciler.submit_award(student.id, course.id, 100)

    record = asyncio.run(scenario())
    assert record.status == "on-chain-confirmed"
    assert contract.broadcast_count == 1
    assert contract.balance_of(WALLET) == 100


def test_already_completed_rejection_resolves_to_confirmed() -> None:
    contract = _StaleReadContract()

    async def scenario():
        services = make_services("on-chain", contract=contract)
        student, course, _ = await _pending(services)
        await contract.award_tokens(WALLET, course.chain_course_id)
        contract.mine()
        contract.stale_reads = 1
        return await services.reconciler.submit_award(student.id, course.id, 100)

    record = asyncio.run(scenario())
    assert record.status == "on-chain-confirmed"
    assert record.error_kind is None


def test_reverted_receipt_marks_failed_rejected() -> None:
    async def scenario():
        services = make_services("on-chain", contract=_RevertingContract())
        student, course, _ = await _pending(services)
        return await services.reconciler.submit_award(student.id, course.id, 100)

    record = asyncio.run(scenario())
    assert record.status == "failed"
    assert record.error_kind == "chain_rejected"
    assert "reverted" in record.error_message
    assert record.transaction_ref is not None


def test_unconfirmed_transaction_marks_failed_unavailable() -> None:
    async def scenario():
        services = make_services("on-chain", contract=InMemoryTokenContract(auto_mine=False))
        student, course, _ = await _pending(services)
        return await services.reconciler.submit_award(student.id, course.id, 100)

    record = asyncio.run(scenario())
    assert record.status == "failed"
    assert record.error_kind == "chain_unavailable"


def test_unexpected_adapter_error_is_recorded_not_raised() -> None:
    async def scenario():
        services = make_services("on-chain", contract=_BrokenContract())
        student, course, _ = await _pending(services)
        return await services.reconciler.submit_award(student.id, course.id, 100)

    record = asyncio.run(scenario())
    assert record.status == "failed"
    assert record.error_kind == "chain_unavailable"
    assert record.error_message == "signer crashed"


def test_unreachable_precheck_marks_failed_without_broadcast() -> None:
    contract = _UnreachableReadContract()

    async def scenario():
        services = make_services("on-chain", contract=contract)
        student, course, _ = await _pending(services)
        return await services.reconciler.submit_award(student.id, course.id, 100)

    record = asyncio.run(scenario())
    assert record.status == "failed"
    assert record.error_kind == "chain_unavailable"
    assert contract.broadcast_count == 0


def test_missing_wallet_marks_failed_rejected() -> None:
    contract = InMemoryTokenContract()

    async def scenario():
        services = make_services("on-chain", contract=contract)
        student, course, _ = await _pending(services, wallet=None)
        return await services.reconciler.submit_award(student.id, course.id, 100)

    record = asyncio.run(scenario())
    assert record.status == "failed"
    assert record.error_kind == "chain_rejected"
    assert contract.broadcast_count == 0


def test_submit_award_ignores_non_pending_record() -> None:
    contract = InMemoryTokenContract()

    async def scenario():
        services = make_services("on-chain", contract=contract)
        student, course, _ = await _pending(services)
        await services.rewards.transition(
            student.id, course.id, expected={"pending"}, status="off-chain-credited"
        )
        return await services.reconciler.submit_award(student.id, course.id, 100)

    record = asyncio.run(scenario())
    assert record.status == "off-chain-credited"
    assert contract.broadcast_count == 0


def test_read_award_status_and_completed_courses() -> None:
    contract = InMemoryTokenContract()

    async def scenario():
        services = make_services("on-chain", contract=contract)
        student, course, _ = await _pending(services)
        before = await services.reconciler.read_award_status(student.id, course.id)
        await services.reconciler.submit_award(student.id, course.id, 100)
        after = await services.reconciler.read_award_status(student.id, course.id)
        courses = await services.reconciler.read_completed_courses(student.id)
        return before, after, courses, course

    before, after, courses, course = asyncio.run(scenario())
    assert before is False
    assert after is True
    assert courses == [course.chain_course_id]


def test_read_award_status_requires_wallet() -> None:
    async def scenario():
        services = make_services("on-chain")
        student, course, _ = await _pending(services, wallet=None)
        await services.reconciler.read_award_status(student.id, course.id)

    with pytest.raises(InvalidAddressError):
        asyncio.run(scenario())


# ---- reconciliation sweeps ----


def test_reconcile_confirms_failed_record_found_on_chain() -> None:
    contract = InMemoryTokenContract(auto_mine=False)

    async def scenario():
        services = make_services("on-chain", contract=contract)
        student, course, _ = await _pending(services)
        failed = await services.reconciler.submit_award(student.id, course.id, 100)
        contract.mine()
        return failed, await services.reconciler.reconcile(failed)

    failed, reconciled = asyncio.run(scenario())
    assert failed.status == "failed"
    assert reconciled.status == "on-chain-confirmed"


def test_reconcile_resolves_submitted_record_from_receipt() -> None:
    contract = InMemoryTokenContract()

    async def scenario():
        services = make_services("on-chain", contract=contract)
        student, course, record = await _pending(services)
        # Simulate a worker that broadcast and then died before the receipt.
        tx_hash = await contract.award_tokens(WALLET, course.chain_course_id)
        submitted = await services.rewards.transition(
            student.id,
            course.id,
            expected={"pending"},
            status="on-chain-submitted",
            transaction_ref=tx_hash,
            attempts=1,
        )
        return await services.reconciler.reconcile(submitted)

    record = asyncio.run(scenario())
    assert record.status == "on-chain-confirmed"
    assert record.block_number == 1


def test_reconcile_leaves_undecided_record_alone() -> None:
    async def scenario():
        services = make_services("on-chain", contract=InMemoryTokenContract(auto_mine=False))
        _, _, record = await _pending(services)
        return record, await services.reconciler.reconcile(record)

    original, reconciled = asyncio.run(scenario())
    assert reconciled == original


def test_reconcile_fails_stale_pending_record() -> None:
    async def scenario():
        services = make_services("on-chain")
        _, _, record = await _pending(services, updated_at=int(time.time()) - 3600)
        return await services.reconciler.reconcile(record)

    record = asyncio.run(scenario())
    assert record.status == "failed"
    assert record.error_kind == "chain_unavailable"


def test_sweep_counts_settled_records() -> None:
    contract = InMemoryTokenContract(auto_mine=False)

    async def scenario():
        services = make_services("on-chain", contract=contract)
        student, course, _ = await _pending(services)
        await services.reconciler.submit_award(student.id, course.id, 100)
        contract.mine()
        unsettled = await services.ledger.list_unsettled()
        return len(unsettled), await services.reconciler.sweep(unsettled)

    examined, settled = asyncio.run(scenario())
    assert examined == 1
    assert settled == 1
