"""SQLAlchemy ORM Models for the course access schema"""
from app.models.course import Course
from app.models.access_code import AccessCode
from app.models.enrollment import Enrollment

__all__ = [
    "Course",
    "AccessCode",
    "Enrollment",
]
