"""Shared utilities for talking to Supabase/PostgREST."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, NoReturn, Optional, Tuple, TypeVar

from fastapi import HTTPException
from httpx import HTTPError as HttpxError
from postgrest import APIError as PostgrestAPIError
from postgrest import SyncPostgrestClient

from restaurantiq.config import supabase_client

logger = logging.getLogger(__name__)
T = TypeVar("T")

UNREACHABLE_DETAIL = "Supabase is temporarily unreachable."
GENERIC_DETAIL = "Error while talking to Supabase."

# PostgREST and Postgres error codes that map to a client-facing status.
ERROR_CODE_STATUS: Dict[str, Tuple[int, str]] = {
    "PGRST301": (401, "Supabase authentication required."),
    "PGRST302": (401, "Supabase authentication required."),
    "42501": (403, "Access to the requested resource was denied."),
    "PGRST116": (404, "Resource not found."),
    "23505": (409, "A record with the same values already exists."),
    "23503": (400, "A referenced record does not exist."),
    "23502": (400, "A required field is missing."),
}
HTTP_STATUS_DETAIL = {
    401: "Supabase authentication required.",
    403: "Access to the requested resource was denied.",
    404: "Resource not found.",
}


def extract_bearer_token(header_value: Optional[str]) -> str:
    """Return the Bearer token from an Authorization header."""

    scheme, _, token = (header_value or "").strip().partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token or " " in token:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return token


def create_postgrest_client(
    access_token: str,
    *,
    prefer: Optional[str] = None,
    api_key: Optional[str] = None,
) -> SyncPostgrestClient:
    """PostgREST client acting as the caller, so row-level security applies."""

    api_key = api_key or supabase_client.SUPABASE_ANON_KEY
    base_url = supabase_client.SUPABASE_URL
    if not base_url or not api_key:
        raise HTTPException(status_code=500, detail="Supabase is not configured.")

    headers = {"apikey": api_key, "Accept": "application/json"}
    if prefer:
        headers["Prefer"] = prefer
    client = SyncPostgrestClient(f"{base_url.rstrip('/')}/rest/v1", headers=headers)
    client.auth(access_token)
    return client


def postgrest_status(exc: PostgrestAPIError) -> Tuple[int, str]:
    """Status code and public detail for a PostgREST error."""

    code = str(exc.code or "")
    if code in ERROR_CODE_STATUS:
        return ERROR_CODE_STATUS[code]
    if code.isdigit() and int(code) in HTTP_STATUS_DETAIL:
        return int(code), HTTP_STATUS_DETAIL[int(code)]
    return 502, GENERIC_DETAIL


def raise_postgrest_error(exc: PostgrestAPIError, *, context: str) -> NoReturn:
    status_code, detail = postgrest_status(exc)
    logger.error("%s failed (%s %s): %s", context, exc.code, status_code, exc.message or GENERIC_DETAIL)
    raise HTTPException(status_code=status_code, detail=detail) from exc


async def run_postgrest(request: Callable[[], T], *, context: str) -> T:
    """Run a blocking PostgREST call off the event loop and translate its failures."""

    try:
        return await asyncio.to_thread(request)
    except PostgrestAPIError as exc:
        raise_postgrest_error(exc, context=context)
    except HttpxError as exc:
        logger.error("%s unreachable: %s", context, exc)
        raise HTTPException(status_code=503, detail=UNREACHABLE_DETAIL) from exc


class PostgrestDAO:
    """Base for DAOs issuing PostgREST requests with the caller's token."""

    def __init__(self, access_token: str, *, api_key: Optional[str] = None):
        self.access_token = access_token
        self.api_key = api_key

    def _client(self, *, prefer: Optional[str] = None) -> SyncPostgrestClient:
        return create_postgrest_client(self.access_token, prefer=prefer, api_key=self.api_key)

    async def _execute(self, request: Callable[[], T], *, context: str) -> T:
        return await run_postgrest(request, context=context)


__all__ = [
    "PostgrestDAO",
    "UNREACHABLE_DETAIL",
    "create_postgrest_client",
    "extract_bearer_token",
    "postgrest_status",
    "raise_postgrest_error",
    "run_postgrest",
]
