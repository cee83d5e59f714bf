"""
Access Code Redemption Endpoint

POST /api/v1/redeem - Redeem an access code for the authenticated user
"""
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.api.auth import CurrentUser, get_current_user
from app.services.redemption_coordinator import RedemptionCoordinator, get_redemption_coordinator


router = APIRouter(prefix="/api/v1", tags=["redemption"])


class RedeemRequest(BaseModel):
    """Code as typed by the user; canonicalized server-side"""
    code: str


class RedeemResponse(BaseModel):
    """Tagged redemption result"""
    success: bool
    course_id: Optional[UUID] = None
    already_enrolled: Optional[bool] = None
    reason: Optional[str] = None
    error: Optional[str] = None


@router.post("/redeem", response_model=RedeemResponse, response_model_exclude_none=True)
async def redeem_access_code(
    payload: RedeemRequest,
    user: CurrentUser = Depends(get_current_user),
    coordinator: RedemptionCoordinator = Depends(get_redemption_coordinator),
):
    """
    Redeem an access code.

    Expected failures (code not found, already used, expired, course
    unavailable) come back as 200 with success=false and a distinct reason.
    Validation problems are 400; transient store failures are 503.
    """
    result = await coordinator.redeem(payload.code, user.user_id)
    return result.to_dict()
