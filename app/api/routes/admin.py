"""
Admin Endpoints

POST /api/v1/admin/access-codes - Generate a batch of access codes
GET /api/v1/admin/access-codes - List recent access codes
DELETE /api/v1/admin/access-codes/{code_id} - Delete an unused access code
POST /api/v1/admin/enrollments - Grant a course to a user
POST /api/v1/admin/integrity-audit - Run the used-code integrity audit

Every route requires the admin role; the check happens once, in the router
dependency.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Path, Query
from pydantic import BaseModel, Field

from app.api.auth import CurrentUser, require_admin
from app.services.access_code_store import (
    DEFAULT_LIST_LIMIT,
    AccessCodeStore,
    get_access_code_store,
)
from app.services.enrollment_ledger import EnrollmentLedger, get_enrollment_ledger
from app.services.integrity_auditor import IntegrityAuditor, get_integrity_auditor


router = APIRouter(
    prefix="/api/v1/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin)],
)


class GenerateCodesRequest(BaseModel):
    """Batch request; quantity and expiry are clamped server-side, not rejected"""
    course_id: UUID
    quantity: int = 1
    expires_in_days: Optional[int] = None


class GenerateCodesResponse(BaseModel):
    success: bool
    count: int


class AccessCodeItem(BaseModel):
    id: UUID
    code: str
    course_id: UUID
    course_title: str
    is_used: bool
    used_by: Optional[str] = None
    used_at: Optional[datetime] = None
    is_expired: bool
    expires_at: Optional[datetime] = None
    created_by: str
    created_at: datetime


class AccessCodeListResponse(BaseModel):
    data: List[AccessCodeItem]
    metadata: Dict[str, Any]


class SuccessResponse(BaseModel):
    success: bool


class GrantRequest(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    course_id: UUID


class GrantResponse(BaseModel):
    success: bool
    enrollment_id: UUID
    already_enrolled: bool


class IntegrityAuditResponse(BaseModel):
    codes_checked: int
    violations: int
    violation_ids: List[str]
    duration_ms: float


@router.post("/access-codes", response_model=GenerateCodesResponse)
async def generate_access_codes(
    payload: GenerateCodesRequest,
    admin: CurrentUser = Depends(require_admin),
    store: AccessCodeStore = Depends(get_access_code_store),
):
    """
    Generate access codes for a course.

    quantity is clamped to [1, 100]; expires_in_days, if given, to [1, 3650].

    Raises:
        404: Course not found or soft-deleted
    """
    count = await store.create_codes(
        course_id=payload.course_id,
        quantity=payload.quantity,
        created_by=admin.user_id,
        expires_in_days=payload.expires_in_days,
    )
    return {"success": True, "count": count}


@router.get("/access-codes", response_model=AccessCodeListResponse)
async def list_access_codes(
    limit: int = Query(DEFAULT_LIST_LIMIT, ge=1, le=1000),
    store: AccessCodeStore = Depends(get_access_code_store),
):
    """Most recent access codes with course title and redemption status"""
    codes = await store.list_codes(limit=limit)
    return {
        "data": codes,
        "metadata": {
            "count": len(codes),
            "used": sum(1 for c in codes if c["is_used"]),
        }
    }


@router.delete("/access-codes/{code_id}", response_model=SuccessResponse)
async def delete_access_code(
    code_id: UUID = Path(..., description="Access code UUID"),
    store: AccessCodeStore = Depends(get_access_code_store),
):
    """
    Delete an unused access code.

    Raises:
        404: No such code
        409: Code already used (used codes are kept as audit history)
    """
    await store.delete_code(code_id)
    return {"success": True}


@router.post("/enrollments", response_model=GrantResponse)
async def grant_enrollment(
    payload: GrantRequest,
    admin: CurrentUser = Depends(require_admin),
    ledger: EnrollmentLedger = Depends(get_enrollment_ledger),
):
    """Enroll a user in a course directly, without a code"""
    enrollment, created = await ledger.grant(payload.user_id, payload.course_id, granted_by=admin.user_id)
    return {
        "success": True,
        "enrollment_id": enrollment.id,
        "already_enrolled": not created,
    }


@router.post("/integrity-audit", response_model=IntegrityAuditResponse)
async def run_integrity_audit(
    auditor: IntegrityAuditor = Depends(get_integrity_auditor),
):
    """Check that every used access code has its enrollment"""
    return await auditor.audit()
