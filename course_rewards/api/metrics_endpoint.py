"""Prometheus scrape endpoint (text exposition format, not JSON).

Besides the HTTP metrics this exposes the reward pipeline:
``reward_status_transitions_total``, ``chain_calls_total``,
``chain_confirmation_seconds`` and ``reward_settlements_in_flight``.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
