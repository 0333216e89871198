"""Background worker process for on-chain reward settlement.

RUN:  python -m course_rewards.worker

Only needed when REDIS_URL is set; without it the API settles rewards
in-process.  Same image as the API, different command:

  api:    uvicorn course_rewards.main:app --host 0.0.0.0 --port 8000
  worker: python -m course_rewards.worker

Queues:
  reward_settlement      {student_id, course_id, amount} → ChainReconciler.submit_award
  reward_reconciliation  {}                              → sweep every unsettled record

Besides queued sweeps the worker runs one on its own every
RECONCILE_INTERVAL_SECONDS, which is what eventually resolves records
whose settlement task was lost.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Coroutine
from typing import Any
from uuid import UUID

from course_rewards.core.config import SETTINGS
from course_rewards.core.logging import setup_logging
from course_rewards.core.metrics import QUEUE_DEPTH
from course_rewards.db.engine import lifespan_db
from course_rewards.db.redis import lifespan_redis, redis_pool
from course_rewards.middleware.request_context import bind_request_id
from course_rewards.services.container import Services, open_services
from course_rewards.services.task_queue import (
    RECONCILIATION_QUEUE,
    SETTLEMENT_QUEUE,
    TaskQueue,
    task_queue,
)

TaskHandler = Callable[[Services, dict], Coroutine[Any, Any, None]]

logger = logging.getLogger("worker")

RECONCILE_INTERVAL_SECONDS = 300

HANDLERS: dict[str, TaskHandler] = {}


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func):
        HANDLERS[queue] = func
        return func

    return decorator


@register_handler(SETTLEMENT_QUEUE)
async def handle_reward_settlement(services: Services, payload: dict) -> None:
    record = await services.reconciler.submit_award(
        UUID(payload["student_id"]),
        UUID(payload["course_id"]),
        int(payload["amount"]),
    )
    logger.info(
        "Settlement finished: %s",
        record.status if record else "no record",
        extra={"student_id": payload["student_id"], "course_id": payload["course_id"]},
    )


@register_handler(RECONCILIATION_QUEUE)
async def handle_reward_reconciliation(services: Services, payload: dict) -> None:
    unsettled = await services.ledger.list_unsettled()
    settled = await services.reconciler.sweep(unsettled)
    logger.info("Reconciliation sweep: %d unsettled, %d settled", len(unsettled), settled)


async def process_next(services: Services, queue: TaskQueue, queue_name: str) -> bool:
    """Dequeue and handle one task.  Returns False if the queue was empty."""
    task = await queue.dequeue(queue_name, timeout=1)
    if task is None:
        return False

    bind_request_id(task.id)
    handler = HANDLERS[queue_name]
    try:
        await handler(services, task.payload)
        logger.info("Task %s on [%s] completed", task.id, queue_name)
    except Exception:
        # The record is left pending/submitted; the next sweep or an
        # explicit retry picks it up.
        logger.exception("Task %s on [%s] failed", task.id, queue_name)
    QUEUE_DEPTH.labels(queue_name=queue_name).set(await queue.queue_length(queue_name))
    return True


async def run_worker() -> None:
    """Poll all registered queues and dispatch tasks to handlers."""
    if redis_pool is None:
        logger.error("REDIS_URL is not set; the API settles rewards in-process, nothing to do")
        return

    async with lifespan_db():
        async with lifespan_redis():
            async with open_services(SETTINGS) as services:
                queues = list(HANDLERS.keys())
                logger.info("Worker started, listening on queues: %s", queues)
                last_sweep = time.monotonic()

                while True:
                    for queue_name in queues:
                        await process_next(services, task_queue, queue_name)

                    if time.monotonic() - last_sweep >= RECONCILE_INTERVAL_SECONDS:
                        last_sweep = time.monotonic()
                        bind_request_id()
                        try:
                            await handle_reward_reconciliation(services, {})
                        except Exception:
                            logger.exception("Scheduled reconciliation sweep failed")


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(run_worker())
