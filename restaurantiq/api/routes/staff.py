"""Staff invitation endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from restaurantiq.api.dependencies import get_current_user, get_staff_dao
from restaurantiq.services.auth_service import AuthenticatedUser
from restaurantiq.services.staff_invitations import (
    InvitationRequest,
    InvitationResult,
    SupabaseStaffDAO,
    send_invitation,
)

router = APIRouter(prefix="/api/staff", tags=["staff"])


@router.post("/invitations", response_model=InvitationResult, response_model_exclude_none=True)
async def invite_staff_member(
    payload: InvitationRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    dao: SupabaseStaffDAO = Depends(get_staff_dao),
) -> InvitationResult:
    return await send_invitation(dao, user, payload)
