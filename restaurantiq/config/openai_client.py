"""Chat-completion client used for invoice parsing."""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional

import httpx
from dotenv import load_dotenv
from openai import OpenAI

load_dotenv()

AI_GATEWAY_API_KEY = os.getenv("AI_GATEWAY_API_KEY") or os.getenv("OPENAI_API_KEY")
AI_GATEWAY_BASE_URL = os.getenv("AI_GATEWAY_BASE_URL") or None
INVOICE_PARSER_MODEL = os.getenv("INVOICE_PARSER_MODEL", "gpt-4.1-mini")


def build_ai_client(
    api_key: str,
    base_url: Optional[str] = None,
    *,
    http_client: Optional[httpx.Client] = None,
) -> OpenAI:
    # Gateway 429/402 answers go straight back to the caller, so the SDK must not retry.
    return OpenAI(api_key=api_key, base_url=base_url, max_retries=0, http_client=http_client)


@lru_cache(maxsize=1)
def get_ai_client() -> Optional[OpenAI]:
    """Return an OpenAI-compatible client, or None when no key is configured."""
    if not AI_GATEWAY_API_KEY:
        return None
    return build_ai_client(AI_GATEWAY_API_KEY, AI_GATEWAY_BASE_URL)


__all__ = ["build_ai_client", "get_ai_client", "INVOICE_PARSER_MODEL"]
