"""Shared fixtures: a fresh SQLite file database per test"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Set

import pytest
from sqlalchemy import select

import app.models  # noqa: F401
from app.database import Base, build_engine, build_session_factory
from app.models.access_code import AccessCode
from app.models.course import Course
from app.services.access_code_store import AccessCodeStore
from app.services.enrollment_ledger import EnrollmentLedger
from app.services.integrity_auditor import IntegrityAuditor
from app.services.redemption_coordinator import RedemptionCoordinator

ADMIN_ID = "admin-1"


class FakeClock:
    """Controllable replacement for utcnow"""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2026, 3, 2, 9, 30, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def engine(tmp_path):
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'coursegate.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def code_store(session_factory, clock):
    return AccessCodeStore(session_factory=session_factory, clock=clock)


@pytest.fixture
def ledger(session_factory):
    return EnrollmentLedger(session_factory=session_factory)


@pytest.fixture
def coordinator(session_factory, code_store, ledger, clock):
    return RedemptionCoordinator(
        session_factory=session_factory,
        code_store=code_store,
        ledger=ledger,
        clock=clock,
    )


@pytest.fixture
def auditor(session_factory):
    return IntegrityAuditor(session_factory=session_factory)


@pytest.fixture
def make_course(session_factory):
    """Factory for courses; defaults to a published paid course"""
    async def _make(**overrides) -> Course:
        fields = {"title": "Clinical Pharmacology 101", "is_free": False, "published": True}
        fields.update(overrides)
        async with session_factory() as session:
            course = Course(**fields)
            session.add(course)
            await session.commit()
        return course

    return _make


@pytest.fixture
async def paid_course(make_course):
    return await make_course()


@pytest.fixture
async def free_course(make_course):
    return await make_course(title="Drug Interactions Primer", is_free=True)


@pytest.fixture
def codes_for(session_factory):
    """All code values currently stored for a course"""
    async def _codes(course_id) -> Set[str]:
        async with session_factory() as session:
            result = await session.execute(
                select(AccessCode.code).where(AccessCode.course_id == course_id)
            )
            return set(result.scalars().all())

    return _codes


@pytest.fixture
def issue_code(code_store, codes_for):
    """Generate one code through the store and return its value"""
    async def _issue(course_id, expires_in_days: Optional[int] = None) -> str:
        before = await codes_for(course_id)
        await code_store.create_codes(course_id, 1, ADMIN_ID, expires_in_days)
        (code,) = (await codes_for(course_id)) - before
        return code

    return _issue


@pytest.fixture
def load_code(session_factory):
    async def _load(code: str) -> Optional[AccessCode]:
        async with session_factory() as session:
            result = await session.execute(select(AccessCode).where(AccessCode.code == code))
            return result.scalar_one_or_none()

    return _load
