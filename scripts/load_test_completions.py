#!/usr/bin/env python3
"""Concurrency check: many clients complete the final lesson at once.

RUN:  python scripts/load_test_completions.py

Creates a course and a student, completes every lesson but the last,
then fires CONCURRENT_REQUESTS completions of the last lesson in
parallel.  Exactly one response should report just_completed=true, and
the student should hold exactly one reward for the course.

Prerequisites:
  - The API must be running: uvicorn course_rewards.main:app --port 8000
  - Against Postgres (DATABASE_URL set) this exercises the unique
    (student_id, course_id) constraint; in-memory it exercises the
    compare-and-set on the enrollment.
"""

from __future__ import annotations

import sys
import time
from concurrent.futures import ThreadPoolExecutor

import httpx

BASE_URL = "http://localhost:8000"
CONCURRENT_REQUESTS = 50
LESSONS = ["intro", "variables", "loops"]
WALLET = "0x" + "ab" * 20


def _complete_last(url: str) -> dict:
    with httpx.Client(base_url=BASE_URL, timeout=10) as client:
        resp = client.post(url)
        resp.raise_for_status()
        return resp.json()


def main() -> None:
    print("Lesson Completion Concurrency Test")
    print("=" * 50)

    with httpx.Client(base_url=BASE_URL, timeout=10) as client:
        slug = f"load-{int(time.time())}"
        course = client.post(
            "/v1/courses",
            json={"slug": slug, "title": "Load Test", "lesson_ids": LESSONS, "token_reward": 100},
        ).json()
        student = client.post(
            "/v1/students", json={"name": "load-test", "wallet_address": WALLET}
        ).json()
        base = f"/v1/students/{student['id']}/enrollments/{course['id']}"
        client.post(base).raise_for_status()
        for lesson in LESSONS[:-1]:
            client.post(f"{base}/lessons/{lesson}/complete").raise_for_status()

        print(f"Course:  {course['id']}")
        print(f"Student: {student['id']}")
        print(f"Firing {CONCURRENT_REQUESTS} completions of {LESSONS[-1]!r}...")

        start = time.monotonic()
        url = f"{base}/lessons/{LESSONS[-1]}/complete"
        with ThreadPoolExecutor(max_workers=CONCURRENT_REQUESTS) as pool:
            bodies = list(pool.map(_complete_last, [url] * CONCURRENT_REQUESTS))
        elapsed = time.monotonic() - start

        winners = sum(1 for b in bodies if b["just_completed"])
        tokens = sum(b["tokens_earned"] for b in bodies)
        rewards = client.get(f"/v1/students/{student['id']}/rewards").json()

        print()
        print(f"Results after {CONCURRENT_REQUESTS} requests ({elapsed:.2f}s):")
        print("─" * 40)
        print(f"  just_completed=true: {winners:>4}")
        print(f"  tokens reported:     {tokens:>4}")
        print(f"  reward records:      {len(rewards):>4}")
        print()

        if winners == 1 and len(rewards) == 1:
            print("Exactly one completion earned the reward.")
        else:
            print("FAILURE: the course reward was not issued exactly once.")
            sys.exit(1)


if __name__ == "__main__":
    main()
