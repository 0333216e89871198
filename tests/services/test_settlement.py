"""Settlement runners: in-process tasks and the Redis-style queue."""

from __future__ import annotations

import asyncio
import time

import pytest
from prometheus_client import REGISTRY

from course_rewards.chain.contract import InMemoryTokenContract, TxReceipt
from course_rewards.core.errors import ChainUnavailableError
from course_rewards.models.reward import RewardRecord
from course_rewards.repos.reward_repo import InMemoryRewardRepo
from course_rewards.services.settlement import QueuedSettlementRunner
from course_rewards.services.task_queue import SETTLEMENT_QUEUE, InMemoryTaskQueue
from course_rewards.worker import process_next
from tests.conftest import make_services, seed_course, seed_student


class _SlowContract(InMemoryTokenContract):
    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> TxReceipt:
        await asyncio.sleep(0.2)
        return await super().wait_for_receipt(tx_hash, timeout)


class _FlakyContract(InMemoryTokenContract):
    """The first awardTokens call finds the node down."""

    def __init__(self) -> None:
        super().__init__()
        self.award_calls = 0

    async def award_tokens(self, student: str, course_id: int) -> str:
        self.award_calls += 1
        if self.award_calls == 1:
            raise ChainUnavailableError("connection refused")
        return await super().award_tokens(student, course_id)


class _SlowCommitRewardRepo(InMemoryRewardRepo):
    """Keeps the settlement task alive briefly after it records a failure,
    like a Postgres session closing after its commit."""

    async def transition(self, student_id, course_id, *, expected, **changes):
        updated = await super().transition(
            student_id, course_id, expected=expected, **changes
        )
        if updated is not None and updated.status == "failed":
            await asyncio.sleep(0.05)
        return updated


def _in_flight() -> float:
    return REGISTRY.get_sample_value("reward_settlements_in_flight") or 0.0


async def _pending(services):
    course = await seed_course(services, lessons=())
    student = await seed_student(services)
    record = RewardRecord.new(
        student_id=student.id, course_id=course.id, amount=100, now=int(time.time())
    )
    await services.rewards.add(record)
    return student, course


def test_wait_timeout_does_not_cancel_settlement() -> None:
    contract = _SlowContract()

    async def scenario():
        services = make_services("on-chain", contract=contract)
        student, course = await _pending(services)
        await services.runner.schedule(student.id, course.id, 100)
        with pytest.raises(TimeoutError):
            await services.runner.wait(student.id, course.id, timeout=0.01)
        await services.runner.drain(timeout=5)
        return await services.ledger.get_reward_status(student.id, course.id)

    record = asyncio.run(scenario())
    assert record.status == "on-chain-confirmed"
    assert contract.broadcast_count == 1


def test_cancelled_waiter_does_not_cancel_settlement() -> None:
    contract = _SlowContract()

    async def scenario():
        services = make_services("on-chain", contract=contract)
        student, course = await _pending(services)
        await services.runner.schedule(student.id, course.id, 100)
        waiter = asyncio.create_task(services.runner.wait(student.id, course.id))
        await asyncio.sleep(0.05)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter
        await services.runner.drain(timeout=5)
        return await services.ledger.get_reward_status(student.id, course.id)

    record = asyncio.run(scenario())
    assert record.status == "on-chain-confirmed"


def test_schedule_while_in_flight_runs_once() -> None:
    contract = _SlowContract()

    async def scenario():
        services = make_services("on-chain", contract=contract)
        student, course = await _pending(services)
        await services.runner.schedule(student.id, course.id, 100)
        await services.runner.schedule(student.id, course.id, 100)
        in_flight = services.runner.in_flight(student.id, course.id)
        await services.runner.drain(timeout=5)
        return in_flight, services.runner.in_flight(student.id, course.id)

    during, after = asyncio.run(scenario())
    assert during is True
    assert after is False
    assert contract.broadcast_count == 1


def test_wait_with_nothing_in_flight_returns_none() -> None:
    async def scenario():
        services = make_services("on-chain")
        student, course = await _pending(services)
        return await services.runner.wait(student.id, course.id, timeout=1)

    assert asyncio.run(scenario()) is None


def test_in_flight_gauge_returns_to_baseline() -> None:
    before = _in_flight()

    async def scenario():
        services = make_services("on-chain", contract=_SlowContract())
        student, course = await _pending(services)
        await services.runner.schedule(student.id, course.id, 100)
        during = _in_flight()
        await services.runner.drain(timeout=5)
        await asyncio.sleep(0)
        return during

    during = asyncio.run(scenario())
    assert during - before == 1
    assert _in_flight() == before


def test_queued_runner_hands_settlement_to_worker() -> None:
    queue = InMemoryTaskQueue()
    contract = InMemoryTokenContract()

    async def scenario():
        services = make_services(
            "on-chain", contract=contract, runner=QueuedSettlementRunner(queue)
        )
        student, course = await _pending(services)
        await services.runner.schedule(student.id, course.id, 100)
        queued = await queue.queue_length(SETTLEMENT_QUEUE)
        still_pending = await services.ledger.get_reward_status(student.id, course.id)

        handled = await process_next(services, queue, SETTLEMENT_QUEUE)
        idle = await process_next(services, queue, SETTLEMENT_QUEUE)
        settled = await services.ledger.get_reward_status(student.id, course.id)
        return queued, still_pending, handled, idle, settled

    queued, still_pending, handled, idle, settled = asyncio.run(scenario())
    assert queued == 1
    assert still_pending.status == "pending"
    assert handled is True
    assert idle is False
    assert settled.status == "on-chain-confirmed"
    assert contract.broadcast_count == 1


def test_retry_while_failed_settlement_is_finishing_still_settles() -> None:
    contract = _FlakyContract()

    async def scenario():
        services = make_services(
            "on-chain", contract=contract, rewards=_SlowCommitRewardRepo()
        )
        course = await seed_course(services, lessons=())
        student = await seed_student(services)
        await services.completions.enroll(student.id, course.id)

        for _ in range(100):
            record = await services.ledger.get_reward_status(student.id, course.id)
            if record.status == "failed":
                break
            await asyncio.sleep(0.005)
        first_still_running = services.runner.in_flight(student.id, course.id)

        retried = await services.ledger.retry_award(student.id, course.id)
        await services.runner.drain(timeout=5)
        final = await services.ledger.get_reward_status(student.id, course.id)
        return record, first_still_running, retried, final

    failed, first_still_running, retried, final = asyncio.run(scenario())
    assert failed.status == "failed"
    assert first_still_running is True
    assert retried.status == "pending"
    assert final.status == "on-chain-confirmed"
    assert contract.award_calls == 2
    assert contract.broadcast_count == 1
