"""
Demo Catalog Loader

Seeds a local database with a handful of courses and a batch of access codes.
Usage: python -m app.scripts.load_demo --courses 6 --codes 5
"""
import asyncio
import argparse
import random
from typing import List

from faker import Faker
from sqlalchemy import select, text

from app.database import AsyncSessionLocal, init_models
from app.models.access_code import AccessCode
from app.models.course import Course
from app.services.access_code_store import get_access_code_store

# Initialize Faker for realistic course titles
fake = Faker()

DEMO_ADMIN_ID = "demo-admin"


async def clear_demo_data():
    """Clear all existing data"""
    async with AsyncSessionLocal() as session:
        for table in ["enrollments", "access_codes", "courses"]:
            await session.execute(text(f"DELETE FROM {table}"))
        await session.commit()
    print("✓ Cleared existing data")


async def create_courses(count: int) -> List[Course]:
    """
    Create demo courses.

    The first course is free, the last one is unpublished so the
    "course unavailable" path can be tried by hand; the rest are paid.
    """
    courses = []
    async with AsyncSessionLocal() as session:
        for i in range(count):
            course = Course(
                title=fake.catch_phrase().title(),
                is_free=(i == 0),
                published=(i != count - 1),
            )
            session.add(course)
            courses.append(course)
        await session.commit()

    for course in courses:
        kind = "free" if course.is_free else "paid"
        state = "published" if course.published else "draft"
        print(f"  ✓ {course.title} ({kind}, {state}) id={course.id}")
    return courses


async def load_demo(course_count: int, codes_per_course: int):
    """Load the demo catalog and print the generated codes"""
    await init_models()
    await clear_demo_data()

    print(f"\nCreating {course_count} courses...")
    courses = await create_courses(course_count)

    store = get_access_code_store()
    paid = [c for c in courses if not c.is_free]

    print(f"\nGenerating {codes_per_course} codes per paid course...")
    for course in paid:
        await store.create_codes(
            course_id=course.id,
            quantity=codes_per_course,
            created_by=DEMO_ADMIN_ID,
            expires_in_days=random.choice([None, 30, 365]),
        )

    async with AsyncSessionLocal() as session:
        result = await session.execute(select(AccessCode).order_by(AccessCode.course_id))
        codes = result.scalars().all()

    titles = {c.id: c.title for c in courses}
    for access_code in codes:
        print(f"  {access_code.code}  -> {titles[access_code.course_id]}")

    print(f"\n✅ Demo catalog loaded: {len(courses)} courses, {len(codes)} access codes")


def main():
    """CLI entry point"""
    parser = argparse.ArgumentParser(description="Load a demo course catalog")
    parser.add_argument("--courses", type=int, default=6, help="Number of courses (min 2)")
    parser.add_argument("--codes", type=int, default=5, help="Access codes per paid course")

    args = parser.parse_args()
    asyncio.run(load_demo(max(2, args.courses), args.codes))


if __name__ == "__main__":
    main()
