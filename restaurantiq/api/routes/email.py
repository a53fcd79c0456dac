"""Service-role endpoint relaying transactional email."""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from restaurantiq.api.dependencies import get_service_role
from restaurantiq.services.email_service import EmailDeliveryError, send_email

router = APIRouter(prefix="/api/email", tags=["email"])


class SendEmailRequest(BaseModel):
    to: Optional[Union[str, List[str]]] = None
    subject: Optional[str] = None
    html: Optional[str] = None


@router.post("/send")
async def send_email_endpoint(
    payload: SendEmailRequest,
    _: None = Depends(get_service_role),
) -> Dict[str, Any]:
    try:
        body = await send_email(payload.to or [], payload.subject or "", payload.html or "")
    except EmailDeliveryError as exc:
        if exc.details is not None:
            raise HTTPException(
                status_code=exc.status_code,
                detail={"error": str(exc), "details": exc.details},
            ) from exc
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
    return {"success": True, "id": body.get("id")}
