"""Application metrics using the Prometheus client library.

All metrics are defined here so there is a single inventory of what the
service measures.  Other modules import specific metrics and
increment/observe them at the point of action.

Reward settlement is the part worth watching: a growing
``reward_settlements_in_flight`` gauge or a rising
``chain_calls_total{result="unavailable"}`` rate means learners are
finishing courses faster than the chain confirms their rewards.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Learning / reward metrics
# ---------------------------------------------------------------------------

LESSON_COMPLETIONS = Counter(
    "lesson_completions_total",
    "Lesson completion events by outcome",
    ["outcome"],  # "recorded", "duplicate", "course_completed"
)

REWARD_TRANSITIONS = Counter(
    "reward_status_transitions_total",
    "RewardRecord status changes, labelled by the status entered",
    ["status"],
)

CHAIN_CALLS = Counter(
    "chain_calls_total",
    "Calls made to the token contract",
    ["operation", "result"],  # result: "ok", "unavailable", "rejected"
)

CHAIN_CONFIRMATION_SECONDS = Histogram(
    "chain_confirmation_seconds",
    "Time from awardTokens broadcast to receipt",
    # Block times range from ~2s (L2s, Avalanche) to ~12s (mainnet);
    # anything past a few minutes is a stuck transaction.
    buckets=[1, 2.5, 5, 10, 20, 30, 60, 120, 300],
)

SETTLEMENTS_IN_FLIGHT = Gauge(
    "reward_settlements_in_flight",
    "On-chain settlements scheduled but not yet resolved in this process",
)

CACHE_OPERATIONS = Counter(
    "cache_operations_total",
    "Cache get operations by result",
    ["operation"],  # "hit" or "miss"
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],
)
