"""
Access Code Store

Generates unguessable, human-friendly access codes and answers whether a code
is currently redeemable. Bulk creation, guarded deletion and the admin listing
live here too, along with the two row-level helpers the redemption transaction
borrows (lock_code, mark_used).
"""

import logging
import secrets
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import AsyncSessionLocal, is_unique_violation, transient_store_errors
from app.exceptions import (
    AccessCodeInUseError,
    AccessCodeNotFoundError,
    CodeGenerationError,
    CourseNotFoundError,
    ValidationError,
)
from app.models.access_code import AccessCode
from app.models.course import Course
from app.services.enrollment_ledger import require_user_id
from app.timeutil import utcnow

logger = logging.getLogger(__name__)

# Uppercase letters and digits without the look-alikes 0/O and 1/I
CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_LENGTH = 12
CODE_GROUP_SIZE = 4
MAX_CODE_INPUT_LENGTH = 14

MIN_QUANTITY = 1
MAX_QUANTITY = 100
MIN_EXPIRY_DAYS = 1
MAX_EXPIRY_DAYS = 3650

MAX_GENERATION_ATTEMPTS = 5
DEFAULT_LIST_LIMIT = 200


def generate_code(length: int = CODE_LENGTH, alphabet: str = CODE_ALPHABET) -> str:
    """
    Generate a random access code such as "K7QM-2XHB-RW9D".

    Each symbol is drawn independently and uniformly with the secrets module
    (OS CSPRNG), so earlier outputs say nothing about later ones.

    Args:
        length: Number of symbols, excluding separators
        alphabet: Symbols to draw from

    Returns:
        Code string grouped in blocks of 4 joined by "-"
    """
    if length < 1:
        raise ValueError(f"Invalid code length: {length}")

    symbols = "".join(secrets.choice(alphabet) for _ in range(length))
    groups = [symbols[i:i + CODE_GROUP_SIZE] for i in range(0, length, CODE_GROUP_SIZE)]
    return "-".join(groups)


def canonicalize_code(raw: Any) -> str:
    """
    Trim and uppercase a typed-in code.

    Raises:
        ValidationError: If the code is missing, blank or too long
    """
    if not isinstance(raw, str) or not raw.strip():
        raise ValidationError("Please enter an access code")

    code = raw.strip()
    if len(code) > MAX_CODE_INPUT_LENGTH:
        raise ValidationError(f"Access code must be at most {MAX_CODE_INPUT_LENGTH} characters")
    return code.upper()


def clamp_quantity(quantity: int) -> int:
    """Silently clamp a requested batch size to [1, 100]."""
    return max(MIN_QUANTITY, min(MAX_QUANTITY, int(quantity)))


def clamp_expiry_days(expires_in_days: Optional[int]) -> Optional[int]:
    """Silently clamp an expiry horizon to [1, 3650] days; None means never expires."""
    if expires_in_days is None:
        return None
    return max(MIN_EXPIRY_DAYS, min(MAX_EXPIRY_DAYS, int(expires_in_days)))


class AccessCodeStore:
    """
    Owns the lifecycle of access codes: generation, lookup, consumption, deletion.

    Uniqueness of code values is guaranteed by the UNIQUE constraint on
    access_codes.code; generation only retries when the store reports a clash.
    """

    def __init__(
        self,
        session_factory: Optional[async_sessionmaker] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory or AsyncSessionLocal
        self.clock = clock

    async def find_by_code(self, code: str) -> Optional[AccessCode]:
        """Look up a code by its canonical value."""
        canonical = canonicalize_code(code)
        async with self.session_factory() as session:
            result = await session.execute(select(AccessCode).where(AccessCode.code == canonical))
            return result.scalar_one_or_none()

    async def is_redeemable(self, code: str, now: Optional[datetime] = None) -> bool:
        """
        True iff the code exists, is unused and has not expired at `now`.

        This is an advisory read for UI hints; redemption re-checks everything
        under a row lock.
        """
        try:
            access_code = await self.find_by_code(code)
        except ValidationError:
            # Blank or oversized input cannot match a stored code
            return False
        if access_code is None:
            return False
        return access_code.is_redeemable(now or self.clock())

    async def create_codes(
        self,
        course_id: UUID,
        quantity: int,
        created_by: str,
        expires_in_days: Optional[int] = None,
    ) -> int:
        """
        Bulk-create independent codes for a course in one transaction.

        Args:
            course_id: Course the codes unlock
            quantity: Requested count, clamped to [1, 100]
            created_by: Admin user id
            expires_in_days: Optional expiry horizon, clamped to [1, 3650]

        Returns:
            Number of codes created

        Raises:
            ValidationError: If created_by is missing or too long
            CourseNotFoundError: If the course is missing or soft-deleted
            CodeGenerationError: If a code kept colliding with existing ones
            TransientStoreError: If the store is temporarily unavailable
        """
        require_user_id(created_by, field="created_by")

        safe_quantity = clamp_quantity(quantity)
        days = clamp_expiry_days(expires_in_days)
        now = self.clock()
        expires_at = now + timedelta(days=days) if days is not None else None

        start_time = time.time()

        with transient_store_errors("access code generation"):
            async with self.session_factory() as session:
                async with session.begin():
                    course = await session.get(Course, course_id)
                    if course is None or course.is_deleted:
                        raise CourseNotFoundError(course_id)

                    for _ in range(safe_quantity):
                        await self._insert_unique_code(
                            session,
                            course_id=course_id,
                            created_by=created_by,
                            expires_at=expires_at,
                            created_at=now,
                        )

        duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Generated {safe_quantity} access codes for course {course_id} "
            f"(by {created_by}, expires_at={expires_at.isoformat() if expires_at else 'never'}, "
            f"{duration_ms:.2f}ms)"
        )
        return safe_quantity

    async def _insert_unique_code(self, session: AsyncSession, **fields) -> AccessCode:
        """Insert one code under a savepoint, regenerating the value on a unique clash."""
        for attempt in range(1, MAX_GENERATION_ATTEMPTS + 1):
            access_code = AccessCode(code=generate_code(), **fields)
            try:
                async with session.begin_nested():
                    session.add(access_code)
                    await session.flush()
                return access_code
            except IntegrityError as e:
                if not is_unique_violation(e):
                    raise
                logger.warning(f"Access code collision (attempt {attempt}/{MAX_GENERATION_ATTEMPTS}), regenerating")

        raise CodeGenerationError(
            f"Could not generate a unique access code after {MAX_GENERATION_ATTEMPTS} attempts"
        )

    async def delete_code(self, code_id: UUID) -> None:
        """
        Delete an unused code.

        Raises:
            AccessCodeNotFoundError: If no code has this id
            AccessCodeInUseError: If the code has been redeemed
            TransientStoreError: If the store is temporarily unavailable
        """
        with transient_store_errors("access code deletion"):
            async with self.session_factory() as session:
                async with session.begin():
                    access_code = await self._lock_by_id(session, code_id)
                    if access_code is None:
                        raise AccessCodeNotFoundError(code_id)
                    if access_code.is_used:
                        raise AccessCodeInUseError(code_id)

                    # Guarded again in the statement itself for stores without row locks
                    result = await session.execute(
                        delete(AccessCode)
                        .where(AccessCode.id == code_id, AccessCode.is_used.is_(False))
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        raise AccessCodeInUseError(code_id)

        logger.info(f"Access code deleted: id={code_id}")

    async def list_codes(self, limit: int = DEFAULT_LIST_LIMIT) -> List[Dict[str, Any]]:
        """Newest codes first, with the title of the course each one unlocks."""
        now = self.clock()
        statement = (
            select(AccessCode, Course.title)
            .join(Course, Course.id == AccessCode.course_id)
            .order_by(AccessCode.created_at.desc())
            .limit(limit)
        )

        async with self.session_factory() as session:
            rows = (await session.execute(statement)).all()

        return [
            {
                "id": access_code.id,
                "code": access_code.code,
                "course_id": access_code.course_id,
                "course_title": title,
                "is_used": access_code.is_used,
                "used_by": access_code.used_by,
                "used_at": access_code.used_at,
                "is_expired": access_code.is_expired(now),
                "expires_at": access_code.expires_at,
                "created_by": access_code.created_by,
                "created_at": access_code.created_at,
            }
            for access_code, title in rows
        ]

    # Row-level helpers for callers that already hold a transaction

    async def lock_code(self, session: AsyncSession, code: str) -> Optional[AccessCode]:
        """SELECT ... FOR UPDATE the row for a canonical code value."""
        result = await session.execute(
            select(AccessCode).where(AccessCode.code == code).with_for_update()
        )
        return result.scalar_one_or_none()

    async def _lock_by_id(self, session: AsyncSession, code_id: UUID) -> Optional[AccessCode]:
        result = await session.execute(
            select(AccessCode).where(AccessCode.id == code_id).with_for_update()
        )
        return result.scalar_one_or_none()

    async def mark_used(self, session: AsyncSession, code_id: UUID, user_id: str, now: datetime) -> bool:
        """
        Compare-and-swap is_used false -> true.

        Returns:
            True if this caller flipped the flag, False if it was already set
        """
        result = await session.execute(
            update(AccessCode)
            .where(AccessCode.id == code_id, AccessCode.is_used.is_(False))
            .values(is_used=True, used_by=user_id, used_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


# Global store instance
_store: Optional[AccessCodeStore] = None


def get_access_code_store() -> AccessCodeStore:
    """Get or create global AccessCodeStore instance."""
    global _store
    if _store is None:
        _store = AccessCodeStore()
    return _store
