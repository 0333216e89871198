"""Timestamps are stored as integer Unix seconds (UTC) everywhere."""

from __future__ import annotations

import datetime


def now_ts() -> int:
    return int(datetime.datetime.now(datetime.UTC).timestamp())
