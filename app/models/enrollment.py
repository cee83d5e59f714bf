"""Enrollment model - Grants a user access to a course"""
from sqlalchemy import Column, String, DateTime, ForeignKey, Index, UniqueConstraint, Uuid
from sqlalchemy.sql import func
import uuid

from app.database import Base
from app.timeutil import utcnow

# Opaque ids from the identity provider
USER_ID_LENGTH = 64


class Enrollment(Base):
    """User enrollment in a course, created once and never updated"""

    __tablename__ = "enrollments"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(USER_ID_LENGTH), nullable=False)
    course_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("courses.id", ondelete="RESTRICT"),
        nullable=False,
    )
    enrolled_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    # The unique pair is what keeps concurrent enroll attempts from doubling up
    __table_args__ = (
        UniqueConstraint("user_id", "course_id", name="uq_enrollments_user_course"),
        Index("idx_enrollments_course", "course_id"),
    )

    def __repr__(self):
        return f"<Enrollment(id={self.id}, user={self.user_id}, course={self.course_id})>"
