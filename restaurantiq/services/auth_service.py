"""Bearer token verification against Supabase auth."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import HTTPException

from restaurantiq.config import supabase_client

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthenticatedUser:
    """Subset of the Supabase user record the handlers rely on."""

    id: str
    access_token: str
    email: Optional[str] = None


async def verify_access_token(
    access_token: str,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> AuthenticatedUser:
    """Ask Supabase auth whether the token is valid and return its user."""

    if not supabase_client.SUPABASE_URL or not supabase_client.SUPABASE_ANON_KEY:
        raise HTTPException(status_code=500, detail="Supabase is not configured.")

    headers = {
        "apikey": supabase_client.SUPABASE_ANON_KEY,
        "Authorization": f"Bearer {access_token}",
    }
    url = f"{supabase_client.SUPABASE_URL.rstrip('/')}/auth/v1/user"

    try:
        async with httpx.AsyncClient(timeout=10.0, transport=transport) as client:
            response = await client.get(url, headers=headers)
    except httpx.HTTPError as exc:  # pragma: no cover - network layer
        logger.error("Supabase auth unreachable: %s", exc)
        raise HTTPException(status_code=503, detail="Authentication service unreachable.") from exc

    if response.status_code in (401, 403):
        raise HTTPException(status_code=401, detail="Unauthorized")

    if response.status_code >= 500:
        logger.error("Supabase auth failed (%s): %s", response.status_code, response.text)
        raise HTTPException(status_code=503, detail="Authentication service unavailable.")

    try:
        data = response.json()
    except ValueError:
        data = None

    if not response.is_success or not isinstance(data, dict) or not data.get("id"):
        raise HTTPException(status_code=401, detail="Unauthorized")

    return AuthenticatedUser(
        id=str(data["id"]),
        access_token=access_token,
        email=data.get("email"),
    )


__all__ = ["AuthenticatedUser", "verify_access_token"]
