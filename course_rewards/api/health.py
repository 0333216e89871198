"""Health and readiness endpoints.

  /health (liveness):  "Is this process alive?"  Always 200; the body
                       reports per-dependency status.
  /ready (readiness):  "Can this instance take traffic?"  503 when the
                       database is configured but unreachable, since
                       RewardRecords cannot be written without it.

Redis and the chain are not readiness-critical: a lost queue task or an
unreachable node leaves rewards pending/failed, which reconciliation and
retry recover.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Request, Response
from sqlalchemy import text

from course_rewards.core.config import SETTINGS
from course_rewards.db.engine import engine
from course_rewards.db.redis import redis_pool

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _database_status() -> str:
    if engine is None:
        return "not_configured"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        logger.warning("Database health check failed", exc_info=True)
        return "degraded"
    return "ok"


async def _redis_status() -> str:
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
    except Exception:
        return "degraded"
    return "ok"


@router.get("/health")
async def health(request: Request) -> dict:
    checks: dict[str, str] = {
        "database": await _database_status(),
        "redis": await _redis_status(),
        "chain": "configured" if SETTINGS.chain_rpc_url else "simulated",
    }
    overall = "degraded" if "degraded" in checks.values() else "ok"

    services = getattr(request.app.state, "services", None)
    return {
        "status": overall,
        "checks": checks,
        "reward_mode": services.ledger.mode if services else SETTINGS.reward_mode,
    }


@router.get("/ready")
async def ready() -> Response:
    if await _database_status() == "degraded":
        return Response(status_code=503)
    return Response(status_code=200)
