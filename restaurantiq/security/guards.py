"""Reusable security helpers for the HTTP handlers."""

from __future__ import annotations

import hmac
import math
import os
import threading
import time
from collections import defaultdict, deque
from typing import Deque, DefaultDict, Optional, Tuple

from fastapi import HTTPException, Request

from restaurantiq.config import supabase_client

INVOICE_PARSE_LIMIT = int(os.getenv("INVOICE_PARSE_RATE_LIMIT", "20"))
INVOICE_PARSE_WINDOW_SECONDS = int(os.getenv("INVOICE_PARSE_RATE_WINDOW", "60"))

_RATE_LOCK = threading.Lock()
_RATE_BUCKETS: DefaultDict[Tuple[str, str], Deque[float]] = defaultdict(deque)


def get_client_ip(request: Request) -> str:
    """Best effort extraction of the requester IP address."""

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        candidate = forwarded.split(",")[0].strip()
        if candidate:
            return candidate
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def require_service_role(authorization: Optional[str]) -> None:
    """Only let the Supabase service-role key through."""

    service_key = supabase_client.SUPABASE_SERVICE_ROLE_KEY
    token = ""
    if authorization and authorization.lower().startswith("bearer "):
        token = authorization[7:].strip()
    if not service_key or not token or not hmac.compare_digest(token, service_key):
        raise HTTPException(status_code=401, detail="Unauthorized – service role required")


def rate_limit_request(
    request: Request,
    *,
    scope: str,
    limit: int,
    window_seconds: int,
) -> None:
    """Allow at most `limit` calls per client IP and scope in any `window_seconds` span.

    A rejected call gets a 429 whose Retry-After header says when the oldest
    call in the window expires.
    """

    key = (scope, get_client_ip(request))
    now = time.monotonic()
    with _RATE_LOCK:
        hits = _RATE_BUCKETS[key]
        while hits and now - hits[0] >= window_seconds:
            hits.popleft()
        if len(hits) >= limit:
            retry_after = max(1, math.ceil(window_seconds - (now - hits[0])))
            raise HTTPException(
                status_code=429,
                detail="Rate limit exceeded. Please try again shortly.",
                headers={"Retry-After": str(retry_after)},
            )
        hits.append(now)


def reset_rate_limits() -> None:
    with _RATE_LOCK:
        _RATE_BUCKETS.clear()


__all__ = [
    "get_client_ip",
    "rate_limit_request",
    "require_service_role",
    "reset_rate_limits",
    "INVOICE_PARSE_LIMIT",
    "INVOICE_PARSE_WINDOW_SECONDS",
]
