"""Staff invitations sent by restaurant owners."""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx
from fastapi import HTTPException
from pydantic import BaseModel

from restaurantiq.config import email_client
from restaurantiq.services.auth_service import AuthenticatedUser
from restaurantiq.services.email_service import EmailDeliveryError, render_staff_invitation, send_email
from restaurantiq.services.postgrest_client import PostgrestDAO

logger = logging.getLogger(__name__)

OWNER_ROLE = "OWNER"


class InvitationRequest(BaseModel):
    email: Optional[str] = None
    role: Optional[str] = None
    restaurant_id: Optional[str] = None
    app_url: Optional[str] = None


class InvitationResult(BaseModel):
    success: bool = True
    invitation_id: str
    email_sent: bool
    email_error: Optional[Any] = None


class SupabaseStaffDAO(PostgrestDAO):
    """Membership, profile and invitation rows visible to the caller."""

    async def fetch_member_role(self, restaurant_id: str, user_id: str) -> Optional[str]:
        def _request() -> Optional[str]:
            with self._client() as client:
                rows = (
                    client.table("restaurant_members")
                    .select("role")
                    .eq("restaurant_id", restaurant_id)
                    .eq("user_id", user_id)
                    .limit(1)
                    .execute()
                ).data or []
                return rows[0].get("role") if rows else None

        return await self._execute(_request, context="fetch member role")

    async def has_pending_invitation(self, restaurant_id: str, email: str) -> bool:
        def _request() -> bool:
            with self._client() as client:
                rows = (
                    client.table("invitations")
                    .select("id")
                    .eq("restaurant_id", restaurant_id)
                    .eq("email", email)
                    .eq("status", "PENDING")
                    .limit(1)
                    .execute()
                ).data or []
                return bool(rows)

        return await self._execute(_request, context="fetch pending invitations")

    async def fetch_restaurant_name(self, restaurant_id: str) -> Optional[str]:
        def _request() -> Optional[str]:
            with self._client() as client:
                rows = (
                    client.table("restaurants").select("name").eq("id", restaurant_id).limit(1).execute()
                ).data or []
                return rows[0].get("name") if rows else None

        return await self._execute(_request, context="fetch restaurant")

    async def fetch_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        def _request() -> Optional[Dict[str, Any]]:
            with self._client() as client:
                rows = (
                    client.table("profiles").select("full_name,email").eq("id", user_id).limit(1).execute()
                ).data or []
                return rows[0] if rows else None

        return await self._execute(_request, context="fetch profile")

    async def create_invitation(self, restaurant_id: str, email: str, role: str, invited_by: str) -> Dict[str, Any]:
        def _request() -> Dict[str, Any]:
            with self._client(prefer="return=representation") as client:
                rows = (
                    client.table("invitations")
                    .insert({"restaurant_id": restaurant_id, "email": email, "role": role, "invited_by": invited_by})
                    .execute()
                ).data or []
                if not rows:
                    raise HTTPException(status_code=500, detail="Could not create invitation.")
                return rows[0]

        return await self._execute(_request, context="create invitation")


async def send_invitation(
    dao: SupabaseStaffDAO,
    user: AuthenticatedUser,
    payload: InvitationRequest,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> InvitationResult:
    """Record an invitation and email the signup link to the invitee."""

    if not email_client.RESEND_API_KEY:
        raise HTTPException(status_code=500, detail="RESEND_API_KEY not configured")
    if not payload.email or not payload.role or not payload.restaurant_id:
        raise HTTPException(status_code=400, detail="Missing required fields: email, role, restaurant_id")

    role = await dao.fetch_member_role(payload.restaurant_id, user.id)
    if role != OWNER_ROLE:
        raise HTTPException(status_code=403, detail="Only restaurant owners can send invitations")

    if await dao.has_pending_invitation(payload.restaurant_id, payload.email):
        raise HTTPException(status_code=409, detail="An invitation is already pending for this email")

    restaurant_name = await dao.fetch_restaurant_name(payload.restaurant_id) or "a restaurant"
    profile = await dao.fetch_profile(user.id) or {}
    inviter_name = profile.get("full_name") or profile.get("email") or "Someone"

    invitation = await dao.create_invitation(payload.restaurant_id, payload.email, payload.role, user.id)

    app_url = (payload.app_url or email_client.APP_URL).rstrip("/")
    signup_url = f"{app_url}/signup?invite={invitation.get('token')}"
    html = render_staff_invitation(inviter_name, restaurant_name, payload.role, signup_url)

    result = InvitationResult(invitation_id=str(invitation["id"]), email_sent=True)
    try:
        await send_email(
            payload.email,
            f"{inviter_name} invited you to join {restaurant_name}",
            html,
            transport=transport,
        )
    except EmailDeliveryError as exc:
        logger.warning("Invitation %s created but email failed: %s", result.invitation_id, exc)
        result.email_sent = False
        result.email_error = exc.details if exc.details is not None else str(exc)
    return result


__all__ = ["InvitationRequest", "InvitationResult", "SupabaseStaffDAO", "send_invitation"]
