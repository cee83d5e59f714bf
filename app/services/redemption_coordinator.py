"""
Access Code Redemption

Validates a typed-in code, burns it and enrolls the user as one indivisible
unit. Everything between the row lock and the commit happens in a single
transaction owned by RedemptionCoordinator.redeem, so two concurrent redeemers
of the same code can never both observe is_used = false and both win.

Coordination lives entirely in the shared store (row lock, compare-and-swap,
UNIQUE constraints); nothing here holds in-process state between requests.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import AsyncSessionLocal, apply_lock_timeout, is_unique_violation, transient_store_errors
from app.exceptions import InvariantViolationError
from app.models.course import Course
from app.services.access_code_store import AccessCodeStore, canonicalize_code, get_access_code_store
from app.services.enrollment_ledger import EnrollmentLedger, get_enrollment_ledger, require_user_id
from app.timeutil import utcnow

logger = logging.getLogger(__name__)


class RedemptionOutcome(str, Enum):
    """Every way a redemption can end, other than an exception."""

    REDEEMED = "redeemed"
    ALREADY_ENROLLED = "already enrolled"
    CODE_NOT_FOUND = "code not found"
    CODE_ALREADY_USED = "code already used"
    CODE_EXPIRED = "code expired"
    COURSE_UNAVAILABLE = "course unavailable"


OUTCOME_MESSAGES = {
    RedemptionOutcome.REDEEMED: "Access code redeemed. You are now enrolled.",
    RedemptionOutcome.ALREADY_ENROLLED: "You are already enrolled in this course.",
    RedemptionOutcome.CODE_NOT_FOUND: "Invalid access code. Please check the code and try again.",
    RedemptionOutcome.CODE_ALREADY_USED: "This access code has already been used.",
    RedemptionOutcome.CODE_EXPIRED: "This access code has expired.",
    RedemptionOutcome.COURSE_UNAVAILABLE: "The course for this access code is not available.",
}

SUCCESS_OUTCOMES = {RedemptionOutcome.REDEEMED, RedemptionOutcome.ALREADY_ENROLLED}


@dataclass(frozen=True)
class RedemptionResult:
    """Tagged result of a redemption attempt"""

    outcome: RedemptionOutcome
    course_id: Optional[UUID] = None

    @property
    def success(self) -> bool:
        return self.outcome in SUCCESS_OUTCOMES

    @property
    def reason(self) -> Optional[str]:
        """Machine-readable failure reason, None on success"""
        return None if self.success else self.outcome.value

    @property
    def message(self) -> str:
        return OUTCOME_MESSAGES[self.outcome]

    def to_dict(self) -> Dict[str, Any]:
        if self.success:
            body: Dict[str, Any] = {"success": True, "course_id": self.course_id}
            if self.outcome == RedemptionOutcome.ALREADY_ENROLLED:
                body["already_enrolled"] = True
            return body
        return {"success": False, "reason": self.reason, "error": self.message}


class _EnrollmentRace(Exception):
    """An enrollment for the pair appeared mid-transaction; forces a full rollback."""

    def __init__(self, course_id: UUID):
        self.course_id = course_id
        super().__init__(f"enrollment for course {course_id} created concurrently")


class RedemptionCoordinator:
    """
    Ties AccessCodeStore and EnrollmentLedger together in one transaction.

    The user id is trusted as given: it comes from the identity provider via
    the HTTP boundary, and no credential checks happen here.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        code_store: Optional[AccessCodeStore] = None,
        ledger: Optional[EnrollmentLedger] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory or AsyncSessionLocal
        self.code_store = code_store or get_access_code_store()
        self.ledger = ledger or get_enrollment_ledger()
        self.clock = clock

    async def redeem(self, code: str, user_id: str) -> RedemptionResult:
        """
        Redeem an access code for a user.

        Args:
            code: Code as typed; trimmed and uppercased before lookup
            user_id: Authenticated user id

        Returns:
            RedemptionResult; success for REDEEMED and ALREADY_ENROLLED

        Raises:
            ValidationError: Empty/oversized code or a missing/oversized user id
            TransientStoreError: Lock-wait timeout or store unavailable; caller may resubmit
            InvariantViolationError: Stored state breaks the atomicity contract
        """
        canonical = canonicalize_code(code)
        require_user_id(user_id)

        start_time = time.time()
        now = self.clock()

        try:
            with transient_store_errors("access code redemption"):
                async with self.session_factory() as session:
                    async with session.begin():
                        result = await self._redeem_in_transaction(session, canonical, user_id, now)
        except _EnrollmentRace as race:
            # The whole transaction rolled back, so the code is still unused
            logger.info(
                f"Enrollment for user {user_id} in course {race.course_id} appeared concurrently; "
                f"code {canonical} left unused"
            )
            result = RedemptionResult(RedemptionOutcome.ALREADY_ENROLLED, course_id=race.course_id)

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Redemption of {canonical} by user {user_id}: {result.outcome.value} ({duration_ms:.2f}ms)"
        )
        return result

    async def _redeem_in_transaction(
        self,
        session: AsyncSession,
        code: str,
        user_id: str,
        now: datetime,
    ) -> RedemptionResult:
        """Steps 2-7 of a redemption. Must only run inside session.begin()."""
        await apply_lock_timeout(session)

        # Lock first: every check below reads the row as of after the lock
        access_code = await self.code_store.lock_code(session, code)
        if access_code is None:
            return RedemptionResult(RedemptionOutcome.CODE_NOT_FOUND)

        course_id = access_code.course_id

        if access_code.is_used:
            if access_code.used_by != user_id:
                return RedemptionResult(RedemptionOutcome.CODE_ALREADY_USED, course_id=course_id)

            # Same user resubmitting a code they already burned
            if await self.ledger.exists(user_id, course_id, session=session):
                return RedemptionResult(RedemptionOutcome.ALREADY_ENROLLED, course_id=course_id)

            logger.critical(
                f"INVARIANT VIOLATION: access code {access_code.id} is used by {user_id} "
                f"but no enrollment exists for course {course_id}"
            )
            raise InvariantViolationError(
                f"Access code {access_code.id} is marked used without a matching enrollment"
            )

        if access_code.is_expired(now):
            return RedemptionResult(RedemptionOutcome.CODE_EXPIRED, course_id=course_id)

        course = await session.get(Course, course_id)
        if course is None or not course.is_available:
            return RedemptionResult(RedemptionOutcome.COURSE_UNAVAILABLE, course_id=course_id)

        if await self.ledger.exists(user_id, course_id, session=session):
            # End state already reached; leave the code for someone else
            return RedemptionResult(RedemptionOutcome.ALREADY_ENROLLED, course_id=course_id)

        if not await self.code_store.mark_used(session, access_code.id, user_id, now):
            # Only reachable on stores that ignore FOR UPDATE
            logger.info(f"Lost compare-and-swap on access code {access_code.id}")
            return RedemptionResult(RedemptionOutcome.CODE_ALREADY_USED, course_id=course_id)

        try:
            await self.ledger.insert(session, user_id, course_id)
        except IntegrityError as e:
            if not is_unique_violation(e):
                raise
            raise _EnrollmentRace(course_id) from e

        return RedemptionResult(RedemptionOutcome.REDEEMED, course_id=course_id)


# Global coordinator instance
_coordinator: Optional[RedemptionCoordinator] = None


def get_redemption_coordinator() -> RedemptionCoordinator:
    """Get or create global RedemptionCoordinator instance."""
    global _coordinator
    if _coordinator is None:
        _coordinator = RedemptionCoordinator()
    return _coordinator
