"""
Enrollment Endpoints

POST /api/v1/enrollments/free - Enroll in a free course
GET /api/v1/enrollments/me - List the caller's enrollments
GET /api/v1/enrollments/{course_id}/access - Video access check
"""
from datetime import datetime
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Path
from pydantic import BaseModel

from app.api.auth import CurrentUser, get_current_user
from app.services.enrollment_ledger import EnrollmentLedger, get_enrollment_ledger

router = APIRouter(prefix="/api/v1/enrollments", tags=["enrollments"])


class FreeEnrollmentRequest(BaseModel):
    course_id: UUID


class FreeEnrollmentResponse(BaseModel):
    success: bool
    already_enrolled: bool


class EnrollmentItem(BaseModel):
    """One row of the user's dashboard"""
    enrollment_id: UUID
    course_id: UUID
    course_title: str
    enrolled_at: datetime
    is_active: bool


class EnrollmentListResponse(BaseModel):
    data: List[EnrollmentItem]


class AccessResponse(BaseModel):
    course_id: UUID
    has_access: bool


@router.post("/free", response_model=FreeEnrollmentResponse)
async def enroll_free(
    payload: FreeEnrollmentRequest,
    user: CurrentUser = Depends(get_current_user),
    ledger: EnrollmentLedger = Depends(get_enrollment_ledger),
):
    """
    Enroll the caller in a free course.

    Repeated calls succeed with already_enrolled=true.

    Raises:
        404: Course not found
        400: Course unavailable or requires an access code
    """
    result = await ledger.enroll_free(user.user_id, payload.course_id)
    return result.to_dict()


@router.get("/me", response_model=EnrollmentListResponse)
async def list_my_enrollments(
    user: CurrentUser = Depends(get_current_user),
    ledger: EnrollmentLedger = Depends(get_enrollment_ledger),
):
    """Courses the caller is enrolled in, newest first"""
    return {"data": await ledger.list_for_user(user.user_id)}


@router.get("/{course_id}/access", response_model=AccessResponse)
async def check_video_access(
    course_id: UUID = Path(..., description="Course UUID"),
    user: CurrentUser = Depends(get_current_user),
    ledger: EnrollmentLedger = Depends(get_enrollment_ledger),
):
    """Whether the caller may watch this course's videos"""
    return {
        "course_id": course_id,
        "has_access": await ledger.has_video_access(user.user_id, course_id),
    }
