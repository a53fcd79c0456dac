"""Inventory analytics and session review endpoints."""

from __future__ import annotations

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query

from restaurantiq.api.dependencies import get_current_user, get_inventory_dao
from restaurantiq.services.auth_service import AuthenticatedUser
from restaurantiq.services.inventory_dao import SupabaseInventoryDAO
from restaurantiq.services.smart_order import ApprovalResult, approve_session, reject_session
from restaurantiq.services.usage_analytics import (
    SHRINK_SESSION_COUNT,
    ComputedUsageItem,
    PARRecommendation,
    UsageAnomaly,
    chronological_ids,
    compute_par_recommendations_for,
    compute_usage_analytics_for,
    detect_usage_anomalies,
)

router = APIRouter(prefix="/api/inventory", tags=["inventory"])


@router.get("/usage", response_model=List[ComputedUsageItem])
async def get_usage(
    location_id: Optional[str] = Query(default=None),
    dao: SupabaseInventoryDAO = Depends(get_inventory_dao),
) -> List[ComputedUsageItem]:
    return await compute_usage_analytics_for(dao, location_id=location_id)


@router.get("/par-recommendations", response_model=List[PARRecommendation])
async def get_par_recommendations(
    location_id: Optional[str] = Query(default=None),
    dao: SupabaseInventoryDAO = Depends(get_inventory_dao),
) -> List[PARRecommendation]:
    return await compute_par_recommendations_for(dao, location_id=location_id)


@router.get("/anomalies", response_model=List[UsageAnomaly])
async def get_usage_anomalies(
    location_id: Optional[str] = Query(default=None),
    dao: SupabaseInventoryDAO = Depends(get_inventory_dao),
) -> List[UsageAnomaly]:
    sessions = await dao.fetch_approved_sessions(limit=SHRINK_SESSION_COUNT, location_id=location_id)
    if len(sessions) < 2:
        return []
    ordered_ids = chronological_ids(sessions)
    items = await dao.fetch_session_items(ordered_ids)
    return detect_usage_anomalies(items, ordered_ids)


@router.post("/sessions/{session_id}/approve", response_model=ApprovalResult)
async def approve_inventory_session(
    session_id: UUID,
    user: AuthenticatedUser = Depends(get_current_user),
    dao: SupabaseInventoryDAO = Depends(get_inventory_dao),
) -> ApprovalResult:
    return await approve_session(dao, session_id, user.id)


@router.post("/sessions/{session_id}/reject")
async def reject_inventory_session(
    session_id: UUID,
    dao: SupabaseInventoryDAO = Depends(get_inventory_dao),
):
    return await reject_session(dao, session_id)
