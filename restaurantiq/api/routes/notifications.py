"""Scheduled notification processing, callable with the service-role key."""

from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends

from restaurantiq.api.dependencies import get_notification_dao
from restaurantiq.services.notifications import SupabaseNotificationDAO, process_notifications

router = APIRouter(prefix="/api/notifications", tags=["notifications"])
logger = logging.getLogger(__name__)


@router.post("/process")
async def run_notification_pass(
    dao: SupabaseNotificationDAO = Depends(get_notification_dao),
) -> Dict[str, Any]:
    result = await process_notifications(dao)
    logger.info("Notification pass finished: %d action(s)", result["processed"])
    return result
