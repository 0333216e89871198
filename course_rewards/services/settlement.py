"""Where on-chain settlement runs.

The ledger hands a freshly created (or retried) pending record to a
SettlementRunner and returns to the caller immediately.  Two runners:

  InlineSettlementRunner:  asyncio task in this process.  Used when
                           REDIS_URL is unset (dev, tests, single node).
  QueuedSettlementRunner:  enqueue a ``reward_settlement`` task; the
                           worker process runs it.

A caller that wants the outcome can ``wait`` on an inline settlement.
Cancelling that wait, or timing out, never cancels the settlement itself:
once awardTokens is broadcast the transaction exists whether or not
anyone is still listening, and the record has to follow it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, runtime_checkable
from uuid import UUID

from course_rewards.core.metrics import QUEUE_DEPTH, SETTLEMENTS_IN_FLIGHT
from course_rewards.models.reward import RewardRecord
from course_rewards.services.chain_reconciler import ChainReconciler
from course_rewards.services.task_queue import SETTLEMENT_QUEUE, TaskQueue

logger = logging.getLogger(__name__)

_Key = tuple[UUID, UUID]


@runtime_checkable
class SettlementRunner(Protocol):
    async def schedule(self, student_id: UUID, course_id: UUID, amount: int) -> None: ...


class InlineSettlementRunner:
    def __init__(self, reconciler: ChainReconciler) -> None:
        self._reconciler = reconciler
        # Latest settlement per pair; ``wait`` follows this one.
        self._tasks: dict[_Key, asyncio.Task[RewardRecord | None]] = {}
        # Strong references: the event loop only keeps weak ones to tasks.
        self._running: set[asyncio.Task[RewardRecord | None]] = set()

    async def schedule(self, student_id: UUID, course_id: UUID, amount: int) -> None:
        """Start a settlement for the pair.

        Never dropped: a retry scheduled while an earlier settlement is still
        finishing runs after it.  The later one finds the record no longer
        pending and returns, or settles the record the earlier one failed.
        """
        key = (student_id, course_id)
        previous = self._tasks.get(key)
        if previous is not None and previous.done():
            previous = None

        task = asyncio.create_task(
            self._settle(previous, student_id, course_id, amount),
            name=f"settle-reward:{student_id}:{course_id}",
        )
        self._tasks[key] = task
        self._running.add(task)
        SETTLEMENTS_IN_FLIGHT.inc()
        task.add_done_callback(lambda t, key=key: self._forget(key, t))

    async def _settle(
        self,
        previous: asyncio.Task | None,
        student_id: UUID,
        course_id: UUID,
        amount: int,
    ) -> RewardRecord | None:
        if previous is not None:
            # Returns once it is done, whatever its outcome.
            await asyncio.wait([previous])
        return await self._reconciler.submit_award(student_id, course_id, amount)

    def _forget(self, key: _Key, task: asyncio.Task) -> None:
        SETTLEMENTS_IN_FLIGHT.dec()
        self._running.discard(task)
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if task.cancelled():
            logger.warning(
                "Settlement cancelled before it finished",
                extra={"student_id": str(key[0]), "course_id": str(key[1])},
            )
        elif task.exception() is not None:
            logger.error(
                "Settlement task raised",
                exc_info=task.exception(),
                extra={"student_id": str(key[0]), "course_id": str(key[1])},
            )

    def in_flight(self, student_id: UUID, course_id: UUID) -> bool:
        task = self._tasks.get((student_id, course_id))
        return task is not None and not task.done()

    async def wait(
        self, student_id: UUID, course_id: UUID, timeout: float | None = None
    ) -> RewardRecord | None:
        """Wait for an in-flight settlement.

        Returns None if nothing is in flight for the pair.  Raises
        TimeoutError if ``timeout`` passes first; the settlement keeps going.
        """
        task = self._tasks.get((student_id, course_id))
        if task is None:
            return None
        return await asyncio.wait_for(asyncio.shield(task), timeout)

    async def drain(self, timeout: float | None = None) -> None:
        """Let in-flight settlements finish, e.g. on shutdown."""
        pending = [t for t in self._running if not t.done()]
        if not pending:
            return
        logger.info("Draining %d in-flight settlement(s)", len(pending))
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        if still_running:
            # Records stay on-chain-submitted/pending; the reconciliation
            # sweep resolves them after restart.
            logger.warning("%d settlement(s) still running at shutdown", len(still_running))
            for task in still_running:
                task.cancel()


class QueuedSettlementRunner:
    def __init__(self, queue: TaskQueue) -> None:
        self._queue = queue

    async def schedule(self, student_id: UUID, course_id: UUID, amount: int) -> None:
        task = await self._queue.enqueue(
            SETTLEMENT_QUEUE,
            {
                "student_id": str(student_id),
                "course_id": str(course_id),
                "amount": amount,
            },
        )
        QUEUE_DEPTH.labels(queue_name=SETTLEMENT_QUEUE).set(
            await self._queue.queue_length(SETTLEMENT_QUEUE)
        )
        logger.info(
            "Settlement queued as task %s",
            task.id,
            extra={"student_id": str(student_id), "course_id": str(course_id)},
        )
