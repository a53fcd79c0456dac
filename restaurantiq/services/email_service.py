"""Transactional email delivery through Resend and template rendering."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import httpx
from jinja2 import Environment, FileSystemLoader, select_autoescape

from restaurantiq.config import email_client
from restaurantiq.services.inventory_rules import format_num

logger = logging.getLogger(__name__)

TEMPLATES_DIR = Path(__file__).resolve().parents[1] / "templates" / "email"
REQUEST_TIMEOUT_SECONDS = 10.0
RISK_COLORS = {"RED": "#dc2626", "YELLOW": "#f59e0b"}


class EmailDeliveryError(RuntimeError):
    """Raised when the email provider refuses or cannot take a message."""

    def __init__(self, message: str, *, status_code: int = 502, details: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.details = details


templates = Environment(
    loader=FileSystemLoader(str(TEMPLATES_DIR)),
    autoescape=select_autoescape(["html"]),
    trim_blocks=True,
    lstrip_blocks=True,
)
templates.filters["num"] = format_num
templates.filters["risk_color"] = lambda risk: RISK_COLORS.get(str(risk), "#f59e0b")


def normalize_recipients(to: Union[str, Sequence[str], None]) -> List[str]:
    if not to:
        return []
    if isinstance(to, str):
        return [to]
    return [address for address in to if address]


async def send_email(
    to: Union[str, Sequence[str]],
    subject: str,
    html: str,
    *,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    """Send one message and return the provider response body."""

    if not email_client.RESEND_API_KEY:
        raise EmailDeliveryError("RESEND_API_KEY not configured", status_code=500)

    recipients = normalize_recipients(to)
    if not recipients or not subject or not html:
        raise EmailDeliveryError("Missing required fields: to, subject, html", status_code=400)

    payload = {"from": email_client.EMAIL_SENDER, "to": recipients, "subject": subject, "html": html}
    headers = {"Authorization": f"Bearer {email_client.RESEND_API_KEY}"}

    try:
        async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT_SECONDS, transport=transport) as client:
            response = await client.post(email_client.RESEND_API_URL, json=payload, headers=headers)
    except httpx.HTTPError as exc:
        logger.error("Email provider unreachable: %s", exc)
        raise EmailDeliveryError("Email provider unreachable", status_code=503) from exc

    try:
        body = response.json()
    except ValueError:
        body = {"message": response.text}

    if response.is_error:
        logger.error("Resend failed (%s): %s", response.status_code, body)
        raise EmailDeliveryError("Failed to send email", status_code=response.status_code, details=body)

    return body if isinstance(body, dict) else {"data": body}


def render_low_stock_alert(
    restaurant_name: str,
    location_name: Optional[str],
    items: Sequence[Dict[str, Any]],
    timestamp: str,
) -> str:
    return templates.get_template("low_stock_alert.html").render(
        restaurant_name=restaurant_name,
        location_name=location_name,
        items=items,
        timestamp=timestamp,
    )


def render_daily_digest(user_name: str, groups: Sequence[Dict[str, Any]]) -> str:
    """Groups carry ``restaurant_name``, ``location_name`` and ``items``."""

    return templates.get_template("daily_digest.html").render(user_name=user_name, groups=groups)


def render_inventory_reminder(
    restaurant_name: str,
    location_name: Optional[str],
    reminder_name: str,
    timestamp: str,
) -> str:
    return templates.get_template("inventory_reminder.html").render(
        restaurant_name=restaurant_name,
        location_name=location_name,
        reminder_name=reminder_name,
        timestamp=timestamp,
    )


def render_staff_invitation(inviter_name: str, restaurant_name: str, role: str, signup_url: str) -> str:
    return templates.get_template("staff_invitation.html").render(
        inviter_name=inviter_name,
        restaurant_name=restaurant_name,
        role=role,
        signup_url=signup_url,
    )


__all__ = [
    "EmailDeliveryError",
    "normalize_recipients",
    "render_daily_digest",
    "render_inventory_reminder",
    "render_low_stock_alert",
    "render_staff_invitation",
    "send_email",
]
