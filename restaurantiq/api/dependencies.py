"""FastAPI dependencies shared by the routers."""

from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import Depends, Header, HTTPException

from restaurantiq.config.supabase_client import get_supabase_client
from restaurantiq.security.guards import require_service_role
from restaurantiq.services.auth_service import AuthenticatedUser, verify_access_token
from restaurantiq.services.inventory_dao import SupabaseInventoryDAO
from restaurantiq.services.notifications import SupabaseNotificationDAO
from restaurantiq.services.portfolio import SupabasePortfolioDAO
from restaurantiq.services.postgrest_client import extract_bearer_token
from restaurantiq.services.staff_invitations import SupabaseStaffDAO


async def get_current_restaurant_id(
    x_restaurant_id: Optional[str] = Header(default=None, alias="X-Restaurant-Id"),
) -> UUID:
    """Resolve the restaurant identifier from the current request."""

    if not x_restaurant_id:
        raise HTTPException(status_code=401, detail="Restaurant not selected.")
    try:
        return UUID(x_restaurant_id)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail="Invalid restaurant identifier.") from exc


async def get_access_token(
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> str:
    """Extract the Supabase bearer token from the Authorization header."""

    return extract_bearer_token(authorization)


async def get_current_user(access_token: str = Depends(get_access_token)) -> AuthenticatedUser:
    return await verify_access_token(access_token)


async def get_service_role(
    authorization: Optional[str] = Header(default=None, alias="Authorization"),
) -> None:
    require_service_role(authorization)


def get_inventory_dao(
    restaurant_id: UUID = Depends(get_current_restaurant_id),
    user: AuthenticatedUser = Depends(get_current_user),
) -> SupabaseInventoryDAO:
    return SupabaseInventoryDAO(restaurant_id, user.access_token)


def get_staff_dao(user: AuthenticatedUser = Depends(get_current_user)) -> SupabaseStaffDAO:
    return SupabaseStaffDAO(user.access_token)


def get_portfolio_dao(user: AuthenticatedUser = Depends(get_current_user)) -> SupabasePortfolioDAO:
    return SupabasePortfolioDAO(user.access_token)


def get_notification_dao(_: None = Depends(get_service_role)) -> SupabaseNotificationDAO:
    client = get_supabase_client()
    if client is None:
        raise HTTPException(status_code=500, detail="Supabase service role is not configured.")
    return SupabaseNotificationDAO(client)


__all__ = [
    "get_access_token",
    "get_current_restaurant_id",
    "get_current_user",
    "get_inventory_dao",
    "get_notification_dao",
    "get_portfolio_dao",
    "get_service_role",
    "get_staff_dao",
]
