"""Course model - Catalog entry that codes and enrollments point at"""
from sqlalchemy import Column, String, Boolean, DateTime, Index, Uuid
from sqlalchemy.sql import func, false
import uuid

from app.database import Base
from app.timeutil import utcnow


class Course(Base):
    """
    Course as seen by the enrollment core.

    Owned by the catalog side of the platform; this service only reads it.
    A course is soft-deleted by stamping deleted_at, never by removing the row,
    so enrollments keep pointing at it.
    """

    __tablename__ = "courses"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    title = Column(String(255), nullable=False)
    is_free = Column(Boolean, nullable=False, default=False, server_default=false())
    published = Column(Boolean, nullable=False, default=False, server_default=false())
    deleted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, server_default=func.now(), nullable=False)

    __table_args__ = (
        Index("idx_courses_published", "published"),
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_available(self) -> bool:
        """Published and not soft-deleted"""
        return bool(self.published) and not self.is_deleted

    def __repr__(self):
        return f"<Course(id={self.id}, title={self.title}, published={self.published})>"
