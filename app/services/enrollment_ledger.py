"""
Enrollment Ledger

Enforces at most one enrollment per (user, course). The guarantee comes from
the uq_enrollments_user_course constraint: every create is a plain insert, and
a uniqueness violation is read as "already enrolled", never as an error.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.database import AsyncSessionLocal, is_unique_violation, transient_store_errors
from app.exceptions import (
    AccessCodeRequiredError,
    CourseNotFoundError,
    CourseUnavailableError,
    ValidationError,
)
from app.models.course import Course
from app.models.enrollment import USER_ID_LENGTH, Enrollment

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FreeEnrollmentResult:
    """Outcome of a free-course enrollment; both variants are successes."""

    already_enrolled: bool = False
    success: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "already_enrolled": self.already_enrolled}


class EnrollmentLedger:
    """Owns the (user_id, course_id) uniqueness invariant of enrollments"""

    def __init__(self, session_factory: Optional[async_sessionmaker] = None):
        self.session_factory = session_factory or AsyncSessionLocal

    async def exists(self, user_id: str, course_id: UUID, session: Optional[AsyncSession] = None) -> bool:
        """True if the user is enrolled in the course."""
        if session is not None:
            return await self._find(session, user_id, course_id) is not None

        async with self.session_factory() as session:
            return await self._find(session, user_id, course_id) is not None

    async def _find(self, session: AsyncSession, user_id: str, course_id: UUID) -> Optional[Enrollment]:
        result = await session.execute(
            select(Enrollment).where(
                Enrollment.user_id == user_id,
                Enrollment.course_id == course_id,
            )
        )
        return result.scalar_one_or_none()

    async def insert(self, session: AsyncSession, user_id: str, course_id: UUID) -> Enrollment:
        """
        Insert an enrollment inside the caller's transaction and flush it.

        Raises IntegrityError on a duplicate; callers that own a larger
        transaction decide what a duplicate means for them.
        """
        enrollment = Enrollment(user_id=user_id, course_id=course_id)
        session.add(enrollment)
        await session.flush()
        return enrollment

    async def create(self, user_id: str, course_id: UUID) -> Tuple[Enrollment, bool]:
        """
        Create an enrollment, collapsing duplicates onto the existing row.

        Returns:
            (enrollment, created) where created is False if the pair already existed

        Raises:
            TransientStoreError: If the store is temporarily unavailable
        """
        require_user_id(user_id)

        with transient_store_errors("enrollment create"):
            async with self.session_factory() as session:
                async with session.begin():
                    try:
                        async with session.begin_nested():
                            enrollment = await self.insert(session, user_id, course_id)
                        created = True
                    except IntegrityError as e:
                        if not is_unique_violation(e):
                            raise
                        enrollment = await self._find(session, user_id, course_id)
                        created = False

        if created:
            logger.info(f"Enrollment created: user={user_id} course={course_id}")
        else:
            logger.info(f"Enrollment already present: user={user_id} course={course_id}")
        return enrollment, created

    async def enroll_free(self, user_id: str, course_id: UUID) -> FreeEnrollmentResult:
        """
        Enroll a user in a free, published, not-deleted course.

        Raises:
            CourseNotFoundError: If the course does not exist
            CourseUnavailableError: If the course is unpublished or soft-deleted
            AccessCodeRequiredError: If the course is not free
        """
        require_user_id(user_id)

        course = await self._get_course(course_id)
        if course is None:
            raise CourseNotFoundError(course_id)
        if not course.is_available:
            raise CourseUnavailableError(course_id)
        if not course.is_free:
            raise AccessCodeRequiredError(course_id)

        _, created = await self.create(user_id, course_id)
        return FreeEnrollmentResult(already_enrolled=not created)

    async def grant(self, user_id: str, course_id: UUID, granted_by: str) -> Tuple[Enrollment, bool]:
        """
        Admin enrollment, bypassing the free/code paths.

        Unpublished courses are allowed (admins enroll testers before launch);
        soft-deleted ones are not.
        """
        require_user_id(user_id)

        course = await self._get_course(course_id)
        if course is None or course.is_deleted:
            raise CourseNotFoundError(course_id)

        enrollment, created = await self.create(user_id, course_id)
        logger.info(
            f"Admin {granted_by} granted course {course_id} to user {user_id} "
            f"({'new' if created else 'existing'} enrollment)"
        )
        return enrollment, created

    async def list_for_user(self, user_id: str) -> List[Dict[str, Any]]:
        """
        Enrollments for a user's dashboard.

        Enrollments on soft-deleted courses are kept and reported as inactive.
        """
        statement = (
            select(Enrollment, Course)
            .join(Course, Course.id == Enrollment.course_id)
            .where(Enrollment.user_id == user_id)
            .order_by(Enrollment.enrolled_at.desc())
        )

        async with self.session_factory() as session:
            rows = (await session.execute(statement)).all()

        return [
            {
                "enrollment_id": enrollment.id,
                "course_id": course.id,
                "course_title": course.title,
                "enrolled_at": enrollment.enrolled_at,
                "is_active": not course.is_deleted,
            }
            for enrollment, course in rows
        ]

    async def has_video_access(self, user_id: str, course_id: UUID) -> bool:
        """Enrolled and the course is not soft-deleted."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Course.deleted_at)
                .join(Enrollment, Enrollment.course_id == Course.id)
                .where(Enrollment.user_id == user_id, Course.id == course_id)
            )
            row = result.first()

        return row is not None and row.deleted_at is None

    async def _get_course(self, course_id: UUID) -> Optional[Course]:
        with transient_store_errors("course lookup"):
            async with self.session_factory() as session:
                return await session.get(Course, course_id)


def require_user_id(value: str, field: str = "user_id") -> None:
    """Reject missing ids and ids wider than the user id columns."""
    if not value:
        raise ValidationError(f"{field} is required")
    if len(value) > USER_ID_LENGTH:
        raise ValidationError(f"{field} must be at most {USER_ID_LENGTH} characters")


# Global ledger instance
_ledger: Optional[EnrollmentLedger] = None


def get_enrollment_ledger() -> EnrollmentLedger:
    """Get or create global EnrollmentLedger instance."""
    global _ledger
    if _ledger is None:
        _ledger = EnrollmentLedger()
    return _ledger
