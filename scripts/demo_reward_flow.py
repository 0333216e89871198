"""Demo: enroll → complete every lesson → 100 tokens, using FastAPI TestClient.

Runs against the in-memory stores and the simulated token contract, so
no database, Redis or chain node is needed.

Run with:
    python scripts/demo_reward_flow.py
    REWARD_MODE=on-chain python scripts/demo_reward_flow.py
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from course_rewards.main import app

WALLET = "0x" + "ab" * 20
LESSONS = ["intro", "variables", "loops"]


def main() -> None:
    with TestClient(app) as client:
        # ── Step 1: catalog + student ───────────────────────────────
        r = client.post(
            "/v1/courses",
            json={"slug": "python-basics", "title": "Python Basics", "lesson_ids": LESSONS, "token_reward": 100},
        )
        course_id = r.json()["id"]
        print(f"1. POST /v1/courses           → {r.status_code}  course={course_id}")

        r = client.post("/v1/students", json={"name": "Ada", "wallet_address": WALLET})
        student_id = r.json()["id"]
        print(f"2. POST /v1/students          → {r.status_code}  student={student_id}")

        base = f"/v1/students/{student_id}"
        r = client.post(f"{base}/enrollments/{course_id}")
        print(f"3. POST enrollments           → {r.status_code}")

        # ── Step 2: lessons, the last one completes the course ──────
        for lesson in LESSONS:
            r = client.post(
                f"{base}/enrollments/{course_id}/lessons/{lesson}/complete",
                json={"time_spent": 600},
            )
            body = r.json()
            print(
                f"4. complete {lesson:<10}        → {r.status_code}  "
                f"just_completed={body['just_completed']} tokens_earned={body['tokens_earned']}"
            )

        # ── Step 3: replay the last lesson, nothing new is awarded ─
        r = client.post(f"{base}/enrollments/{course_id}/lessons/{LESSONS[-1]}/complete")
        print(f"5. replay {LESSONS[-1]:<12}        → {r.status_code}  tokens_earned={r.json()['tokens_earned']}")

        # ── Step 4: status, progress, balance ───────────────────────
        r = client.get(f"{base}/rewards/{course_id}")
        print(f"6. GET reward                 → {r.status_code}  status={r.json()['status']}")
        r = client.get(f"{base}/enrollments/{course_id}/progress")
        print(f"7. GET progress               → {r.status_code}  percent={r.json()['percent']}")
        r = client.get(f"{base}/balance")
        print(f"8. GET balance                → {r.status_code}  {r.json()}")


if __name__ == "__main__":
    main()
