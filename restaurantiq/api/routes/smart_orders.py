"""Smart order run endpoints."""

from __future__ import annotations

from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from restaurantiq.api.dependencies import get_current_user, get_inventory_dao
from restaurantiq.services.auth_service import AuthenticatedUser
from restaurantiq.services.inventory_dao import SupabaseInventoryDAO
from restaurantiq.services.smart_order import (
    SmartOrderLine,
    SmartOrderSummary,
    build_smart_order_lines,
    summarize_run,
)

router = APIRouter(prefix="/api/smart-orders", tags=["smart-orders"])


class PreviewItem(BaseModel):
    item_name: str
    current_stock: Optional[float] = None
    par_level: Optional[float] = None
    unit: Optional[str] = None
    pack_size: Optional[str] = None
    unit_cost: Optional[float] = None


class PreviewRequest(BaseModel):
    items: List[PreviewItem] = Field(default_factory=list)
    par_map: Dict[str, float] = Field(default_factory=dict)


class SmartOrderRunResponse(BaseModel):
    id: str
    session_id: Optional[str] = None
    inventory_list_id: Optional[str] = None
    par_guide_id: Optional[str] = None
    created_at: Optional[str] = None
    lines: List[SmartOrderLine]
    summary: SmartOrderSummary


class PreviewResponse(BaseModel):
    lines: List[SmartOrderLine]
    summary: SmartOrderSummary


@router.post("/preview", response_model=PreviewResponse)
async def preview_smart_order(
    payload: PreviewRequest,
    _: AuthenticatedUser = Depends(get_current_user),
) -> PreviewResponse:
    build = build_smart_order_lines([item.model_dump() for item in payload.items], payload.par_map)
    return PreviewResponse(lines=build.lines, summary=summarize_run(build.lines))


@router.get("/{run_id}", response_model=SmartOrderRunResponse)
async def get_smart_order_run(
    run_id: UUID,
    dao: SupabaseInventoryDAO = Depends(get_inventory_dao),
) -> SmartOrderRunResponse:
    run: Optional[Dict[str, Any]] = await dao.fetch_smart_order_run(run_id)
    if not run:
        raise HTTPException(status_code=404, detail="Smart order run not found.")

    lines = [SmartOrderLine.model_validate(item) for item in run.get("items") or []]
    return SmartOrderRunResponse(
        id=str(run["id"]),
        session_id=_optional_str(run.get("session_id")),
        inventory_list_id=_optional_str(run.get("inventory_list_id")),
        par_guide_id=_optional_str(run.get("par_guide_id")),
        created_at=_optional_str(run.get("created_at")),
        lines=lines,
        summary=summarize_run(lines),
    )


def _optional_str(value: Any) -> Optional[str]:
    return str(value) if value is not None else None
