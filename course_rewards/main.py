from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from course_rewards.api.courses import router as courses_router
from course_rewards.api.health import router as health_router
from course_rewards.api.metrics_endpoint import router as metrics_router
from course_rewards.api.progress import router as progress_router
from course_rewards.api.rewards import router as rewards_router
from course_rewards.api.students import router as students_router
from course_rewards.core.config import SETTINGS
from course_rewards.core.logging import setup_logging
from course_rewards.db.engine import lifespan_db
from course_rewards.db.redis import lifespan_redis
from course_rewards.middleware.metrics import MetricsMiddleware
from course_rewards.middleware.request_context import RequestContextMiddleware
from course_rewards.services.container import open_services

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Teardown runs in reverse: in-flight settlements drain and the chain
    # session closes before Redis and the database go away.
    async with lifespan_db():
        async with lifespan_redis():
            async with open_services(SETTINGS) as services:
                app.state.services = services
                yield


app = FastAPI(
    title="course-rewards-service",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Last-added runs first: RequestContext → Metrics → CORS → route handler,
# so metrics and logs for a request already see its request ID.
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(courses_router)
app.include_router(students_router)
app.include_router(progress_router)
app.include_router(rewards_router)

logger.info(
    "course-rewards-service started  env=%s log_level=%s port=%d reward_mode=%s docs=%s",
    SETTINGS.app_env,
    SETTINGS.log_level,
    SETTINGS.port,
    SETTINGS.reward_mode,
    "on" if SETTINGS.is_dev else "off",
)
