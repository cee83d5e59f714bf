"""
Integration tests for access code redemption

Tests the full redeem transaction against a real SQLite store: happy path,
every failure reason, idempotent resubmission and concurrent redeemers.
"""
import asyncio
from datetime import timedelta

import pytest
from sqlalchemy import func, select, update
from sqlalchemy.exc import OperationalError

from app.exceptions import InvariantViolationError, TransientStoreError, ValidationError
from app.models.access_code import AccessCode
from app.models.course import Course
from app.models.enrollment import Enrollment
from app.services.access_code_store import AccessCodeStore
from app.services.enrollment_ledger import EnrollmentLedger
from app.services.redemption_coordinator import RedemptionCoordinator, RedemptionOutcome


async def count_enrollments(session_factory, course_id, user_id=None) -> int:
    statement = select(func.count()).select_from(Enrollment).where(Enrollment.course_id == course_id)
    if user_id is not None:
        statement = statement.where(Enrollment.user_id == user_id)
    async with session_factory() as session:
        return await session.scalar(statement)


class TestRedeem:
    """Single-caller redemption paths"""

    @pytest.mark.asyncio
    async def test_valid_code_enrolls_and_burns(self, coordinator, paid_course, issue_code, load_code, session_factory, clock):
        """Valid code: enrollment created and code marked used by the caller"""
        code = await issue_code(paid_course.id)

        result = await coordinator.redeem(code, "student-1")

        assert result.outcome == RedemptionOutcome.REDEEMED
        assert result.to_dict() == {"success": True, "course_id": paid_course.id}

        stored = await load_code(code)
        assert stored.is_used
        assert stored.used_by == "student-1"
        assert stored.used_at is not None
        assert await count_enrollments(session_factory, paid_course.id, "student-1") == 1

    @pytest.mark.asyncio
    async def test_code_used_by_someone_else(self, coordinator, paid_course, issue_code, session_factory):
        code = await issue_code(paid_course.id)
        await coordinator.redeem(code, "student-1")

        result = await coordinator.redeem(code, "student-2")

        assert not result.success
        assert result.reason == "code already used"
        assert await count_enrollments(session_factory, paid_course.id, "student-2") == 0

    @pytest.mark.asyncio
    async def test_same_user_resubmits(self, coordinator, paid_course, issue_code, session_factory):
        """A retried request after a lost response is a success, not 'already used'"""
        code = await issue_code(paid_course.id)
        await coordinator.redeem(code, "student-1")

        result = await coordinator.redeem(code, "student-1")

        assert result.outcome == RedemptionOutcome.ALREADY_ENROLLED
        assert result.to_dict()["already_enrolled"] is True
        assert await count_enrollments(session_factory, paid_course.id) == 1

    @pytest.mark.asyncio
    async def test_unknown_code(self, coordinator, paid_course):
        result = await coordinator.redeem("ZZZZ-ZZZZ-ZZZZ", "student-1")

        assert result.to_dict()["reason"] == "code not found"
        assert result.course_id is None

    @pytest.mark.asyncio
    async def test_input_is_trimmed_and_case_folded(self, coordinator, paid_course, issue_code):
        code = await issue_code(paid_course.id)

        result = await coordinator.redeem(f"  {code.lower()}\t", "student-1")

        assert result.outcome == RedemptionOutcome.REDEEMED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["", "    ", "A" * 15])
    async def test_invalid_input_rejected_before_store(self, coordinator, raw):
        with pytest.raises(ValidationError):
            await coordinator.redeem(raw, "student-1")

    @pytest.mark.asyncio
    async def test_missing_user_rejected(self, coordinator, paid_course, issue_code, load_code):
        code = await issue_code(paid_course.id)

        with pytest.raises(ValidationError):
            await coordinator.redeem(code, "")

        assert not (await load_code(code)).is_used

    @pytest.mark.asyncio
    async def test_oversized_user_rejected(self, coordinator, paid_course, issue_code, load_code, session_factory):
        """Ids wider than the user id columns never reach the store"""
        code = await issue_code(paid_course.id)

        with pytest.raises(ValidationError, match="at most 64"):
            await coordinator.redeem(code, "u" * 65)

        assert not (await load_code(code)).is_used
        assert await count_enrollments(session_factory, paid_course.id) == 0

    @pytest.mark.asyncio
    async def test_user_id_at_column_width(self, coordinator, paid_course, issue_code, load_code):
        code = await issue_code(paid_course.id)

        result = await coordinator.redeem(code, "u" * 64)

        assert result.outcome == RedemptionOutcome.REDEEMED
        assert (await load_code(code)).used_by == "u" * 64


class TestExpiry:
    """Expiry boundary is exclusive at expires_at"""

    @pytest.mark.asyncio
    async def test_expired_code(self, coordinator, paid_course, issue_code, load_code, clock):
        code = await issue_code(paid_course.id, expires_in_days=1)
        clock.advance(hours=25)

        result = await coordinator.redeem(code, "student-1")

        assert result.reason == "code expired"
        assert not (await load_code(code)).is_used

    @pytest.mark.asyncio
    async def test_expired_at_exact_instant(self, coordinator, paid_course, issue_code, clock):
        code = await issue_code(paid_course.id, expires_in_days=1)
        clock.advance(days=1)

        result = await coordinator.redeem(code, "student-1")

        assert result.outcome == RedemptionOutcome.CODE_EXPIRED

    @pytest.mark.asyncio
    async def test_redeemable_one_microsecond_before(self, coordinator, paid_course, issue_code, clock):
        code = await issue_code(paid_course.id, expires_in_days=1)
        clock.advance(days=1, microseconds=-1)

        result = await coordinator.redeem(code, "student-1")

        assert result.outcome == RedemptionOutcome.REDEEMED

    @pytest.mark.asyncio
    async def test_code_without_expiry_never_expires(self, coordinator, paid_course, issue_code, clock):
        code = await issue_code(paid_course.id)
        clock.advance(days=365 * 20)

        result = await coordinator.redeem(code, "student-1")

        assert result.outcome == RedemptionOutcome.REDEEMED


class TestCourseState:

    @pytest.mark.asyncio
    async def test_unpublished_course(self, coordinator, make_course, issue_code, load_code):
        course = await make_course(published=False)
        code = await issue_code(course.id)

        result = await coordinator.redeem(code, "student-1")

        assert result.reason == "course unavailable"
        assert not (await load_code(code)).is_used

    @pytest.mark.asyncio
    async def test_soft_deleted_course(self, coordinator, paid_course, issue_code, session_factory, clock):
        code = await issue_code(paid_course.id)
        async with session_factory() as session:
            course = await session.get(Course, paid_course.id)
            course.deleted_at = clock()
            await session.commit()

        result = await coordinator.redeem(code, "student-1")

        assert result.outcome == RedemptionOutcome.COURSE_UNAVAILABLE

    @pytest.mark.asyncio
    async def test_already_enrolled_keeps_code(self, coordinator, ledger, paid_course, issue_code, load_code):
        """A user enrolled by other means does not burn the code"""
        await ledger.create("student-1", paid_course.id)
        code = await issue_code(paid_course.id)

        result = await coordinator.redeem(code, "student-1")

        assert result.outcome == RedemptionOutcome.ALREADY_ENROLLED
        assert not (await load_code(code)).is_used

        # Still good for another student
        assert (await coordinator.redeem(code, "student-2")).outcome == RedemptionOutcome.REDEEMED


class TestConcurrency:
    """Concurrent redeemers serialize on the code row"""

    @pytest.mark.asyncio
    async def test_fifty_users_one_code(self, coordinator, paid_course, issue_code, load_code, session_factory):
        """Exactly one of 50 simultaneous redeemers wins"""
        code = await issue_code(paid_course.id)

        results = await asyncio.gather(
            *(coordinator.redeem(code, f"student-{i}") for i in range(50))
        )

        winners = [r for r in results if r.outcome == RedemptionOutcome.REDEEMED]
        losers = [r for r in results if r.outcome == RedemptionOutcome.CODE_ALREADY_USED]
        assert len(winners) == 1
        assert len(losers) == 49

        assert await count_enrollments(session_factory, paid_course.id) == 1

        stored = await load_code(code)
        assert stored.is_used
        async with session_factory() as session:
            enrolled_user = await session.scalar(
                select(Enrollment.user_id).where(Enrollment.course_id == paid_course.id)
            )
        assert stored.used_by == enrolled_user

    @pytest.mark.asyncio
    async def test_one_user_two_codes_same_course(self, coordinator, paid_course, issue_code, load_code, session_factory):
        """Only one code is spent when a user races two codes for one course"""
        first = await issue_code(paid_course.id)
        second = await issue_code(paid_course.id)

        results = await asyncio.gather(
            coordinator.redeem(first, "student-1"),
            coordinator.redeem(second, "student-1"),
        )

        outcomes = sorted(r.outcome.value for r in results)
        assert outcomes == ["already enrolled", "redeemed"]
        assert await count_enrollments(session_factory, paid_course.id, "student-1") == 1

        used = [(await load_code(c)).is_used for c in (first, second)]
        assert sorted(used) == [False, True]


class TestFailureModes:

    @pytest.mark.asyncio
    async def test_used_code_without_enrollment_raises(self, coordinator, paid_course, issue_code, session_factory, clock):
        """Store state that breaks atomicity is surfaced, never papered over"""
        code = await issue_code(paid_course.id)
        async with session_factory() as session:
            await session.execute(
                update(AccessCode)
                .where(AccessCode.code == code)
                .values(is_used=True, used_by="student-1", used_at=clock())
            )
            await session.commit()

        with pytest.raises(InvariantViolationError):
            await coordinator.redeem(code, "student-1")

        # No enrollment was conjured up to cover the gap
        assert await count_enrollments(session_factory, paid_course.id) == 0

    @pytest.mark.asyncio
    async def test_enrollment_appearing_mid_transaction(self, session_factory, code_store, paid_course, issue_code, load_code, clock):
        """Unique clash on the enrollment insert rolls the code back to unused"""

        class BlindLedger(EnrollmentLedger):
            async def exists(self, user_id, course_id, session=None):
                return False

        ledger = BlindLedger(session_factory=session_factory)
        await ledger.create("student-1", paid_course.id)
        code = await issue_code(paid_course.id)

        coordinator = RedemptionCoordinator(
            session_factory=session_factory, code_store=code_store, ledger=ledger, clock=clock
        )
        result = await coordinator.redeem(code, "student-1")

        assert result.outcome == RedemptionOutcome.ALREADY_ENROLLED
        assert result.course_id == paid_course.id
        stored = await load_code(code)
        assert not stored.is_used
        assert stored.used_by is None

    @pytest.mark.asyncio
    async def test_lock_timeout_maps_to_try_again(self, session_factory, ledger, clock):

        class LockTimeoutStore(AccessCodeStore):
            async def lock_code(self, session, code):
                orig = Exception("canceling statement due to lock timeout")
                orig.sqlstate = "55P03"
                raise OperationalError("SELECT ... FOR UPDATE", {}, orig)

        coordinator = RedemptionCoordinator(
            session_factory=session_factory,
            code_store=LockTimeoutStore(session_factory=session_factory, clock=clock),
            ledger=ledger,
            clock=clock,
        )

        with pytest.raises(TransientStoreError) as exc_info:
            await coordinator.redeem("ABCD-EFGH-JKMN", "student-1")

        assert exc_info.value.message == "Something went wrong. Please try again."


@pytest.mark.asyncio
async def test_is_redeemable(code_store, coordinator, paid_course, issue_code, clock):
    code = await issue_code(paid_course.id, expires_in_days=10)

    assert await code_store.is_redeemable(code)
    assert await code_store.is_redeemable(code.lower())
    assert not await code_store.is_redeemable(code, now=clock() + timedelta(days=10))
    assert not await code_store.is_redeemable("NOPE-NOPE-NOPE")
    assert not await code_store.is_redeemable("")
    assert not await code_store.is_redeemable("   ")
    assert not await code_store.is_redeemable("A" * 15)

    await coordinator.redeem(code, "student-1")
    assert not await code_store.is_redeemable(code)
