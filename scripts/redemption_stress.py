#!/usr/bin/env python
"""
Redemption Stress CLI

Races many users against one freshly generated access code and reports how the
attempts resolved. Against a healthy store the output is always exactly one
"redeemed" and everything else "code already used", with one enrollment row.

Usage: python scripts/redemption_stress.py --users 50
"""

import asyncio
import argparse
import sys
import time
from collections import Counter
from pathlib import Path

from sqlalchemy import func, select

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.database import AsyncSessionLocal, init_models
from app.exceptions import TransientStoreError
from app.models.access_code import AccessCode
from app.models.course import Course
from app.models.enrollment import Enrollment
from app.services.access_code_store import get_access_code_store
from app.services.redemption_coordinator import get_redemption_coordinator


async def run_stress(users: int):
    """Create a course and a code, then fire `users` concurrent redemptions"""
    await init_models()

    async with AsyncSessionLocal() as session:
        course = Course(title=f"Stress Course {int(time.time())}", published=True)
        session.add(course)
        await session.commit()

    store = get_access_code_store()
    await store.create_codes(course_id=course.id, quantity=1, created_by="stress-admin")

    async with AsyncSessionLocal() as session:
        code = await session.scalar(select(AccessCode.code).where(AccessCode.course_id == course.id))

    print("=" * 60)
    print("Redemption Stress Test")
    print("=" * 60)
    print(f"Course: {course.id}")
    print(f"Code: {code}")
    print(f"Concurrent users: {users}")
    print("=" * 60)

    coordinator = get_redemption_coordinator()

    async def attempt(i: int) -> str:
        try:
            result = await coordinator.redeem(code, f"stress-user-{i}")
            return result.outcome.value
        except TransientStoreError:
            return "try again"

    start_time = time.time()
    outcomes = await asyncio.gather(*(attempt(i) for i in range(users)))
    duration_ms = (time.time() - start_time) * 1000

    async with AsyncSessionLocal() as session:
        enrollments = await session.scalar(
            select(func.count()).select_from(Enrollment).where(Enrollment.course_id == course.id)
        )

    for outcome, count in Counter(outcomes).most_common():
        print(f"  {outcome:<20} {count}")
    print(f"  enrollments created  {enrollments}")
    print(f"\nCompleted in {duration_ms:.2f}ms")

    redeemed = outcomes.count("redeemed")
    if redeemed != 1 or enrollments != 1:
        print("\n❌ Atomicity violated")
        sys.exit(1)
    print("\n✅ Exactly one redemption succeeded")


def main():
    parser = argparse.ArgumentParser(description="Race concurrent redemptions of one access code")
    parser.add_argument("--users", "-u", type=int, default=50, help="Number of concurrent users")
    args = parser.parse_args()

    asyncio.run(run_stress(max(1, args.users)))


if __name__ == "__main__":
    main()
