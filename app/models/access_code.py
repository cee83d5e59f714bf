"""AccessCode model - Single-use tokens that unlock one course"""
from datetime import datetime
from sqlalchemy import Column, String, Boolean, DateTime, ForeignKey, Index, Uuid
from sqlalchemy.sql import func, false
import uuid

from app.database import Base
from app.models.enrollment import USER_ID_LENGTH
from app.timeutil import utcnow, ensure_utc_aware


class AccessCode(Base):
    """
    Redeemable access code.

    is_used flips false -> true once, together with used_by/used_at and the
    matching enrollment row. Used codes are kept forever as audit history.
    """

    __tablename__ = "access_codes"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(String(14), unique=True, nullable=False)
    course_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("courses.id", ondelete="RESTRICT"),
        nullable=False,
    )
    is_used = Column(Boolean, nullable=False, default=False, server_default=false())
    used_by = Column(String(USER_ID_LENGTH), nullable=True)
    used_at = Column(DateTime(timezone=True), nullable=True)
    created_by = Column(String(USER_ID_LENGTH), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    # Indexes for performance
    __table_args__ = (
        Index("idx_access_codes_course", "course_id"),
        Index("idx_access_codes_created_at", "created_at"),
    )

    def is_expired(self, now: datetime) -> bool:
        """Expiry boundary is exclusive: a code expiring exactly at `now` is expired."""
        expires_at = ensure_utc_aware(self.expires_at)
        return expires_at is not None and expires_at <= now

    def is_redeemable(self, now: datetime) -> bool:
        return not self.is_used and not self.is_expired(now)

    def __repr__(self):
        return f"<AccessCode(id={self.id}, code={self.code}, is_used={self.is_used})>"
