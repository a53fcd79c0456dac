"""Smart order runs built from approved inventory sessions."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Sequence
from uuid import UUID

from fastapi import HTTPException
from pydantic import BaseModel, Field

from restaurantiq.services.inventory_rules import RiskLevel, compute_order_qty, compute_risk_level

logger = logging.getLogger(__name__)

REVIEW_STATUS = "IN_REVIEW"
APPROVED_STATUS = "APPROVED"
IN_PROGRESS_STATUS = "IN_PROGRESS"


class SmartOrderLine(BaseModel):
    item_name: str
    suggested_order: float
    risk: RiskLevel
    current_stock: float
    par_level: float
    unit_cost: Optional[float] = None
    pack_size: Optional[str] = None


class SmartOrderBuild(BaseModel):
    lines: List[SmartOrderLine] = Field(default_factory=list)
    red_count: int = 0
    yellow_count: int = 0


class SmartOrderSummary(BaseModel):
    order_items: List[SmartOrderLine]
    stocked_items: List[SmartOrderLine]
    no_par_items: List[SmartOrderLine]
    red_count: int
    yellow_count: int
    estimated_cost: float


class ApprovalResult(BaseModel):
    session_id: UUID
    status: str
    smart_order_run_id: Optional[str] = None
    red_count: int = 0
    yellow_count: int = 0
    notified_users: int = 0


def build_smart_order_lines(
    session_items: Iterable[Dict[str, Any]],
    par_map: Optional[Dict[str, float]] = None,
) -> SmartOrderBuild:
    """Compute suggested quantities and risk for every counted item."""

    par_map = par_map or {}
    lines: List[SmartOrderLine] = []
    for item in session_items:
        item_name = str(item.get("item_name") or "")
        par_level = par_map.get(item_name)
        if par_level is None:
            par_level = _to_float(item.get("par_level"))
        current_stock = _to_float(item.get("current_stock"))
        lines.append(
            SmartOrderLine(
                item_name=item_name,
                suggested_order=compute_order_qty(
                    current_stock,
                    par_level,
                    item.get("unit"),
                    item.get("pack_size"),
                ),
                risk=compute_risk_level(current_stock, par_level),
                current_stock=current_stock,
                par_level=par_level,
                unit_cost=item.get("unit_cost") or None,
                pack_size=item.get("pack_size") or None,
            )
        )

    return SmartOrderBuild(
        lines=lines,
        red_count=sum(1 for line in lines if line.risk == RiskLevel.RED),
        yellow_count=sum(1 for line in lines if line.risk == RiskLevel.YELLOW),
    )


def summarize_run(lines: Sequence[SmartOrderLine]) -> SmartOrderSummary:
    order_items = [line for line in lines if line.suggested_order > 0 and line.risk != RiskLevel.NO_PAR]
    return SmartOrderSummary(
        order_items=order_items,
        stocked_items=[line for line in lines if line.risk == RiskLevel.GREEN and line.suggested_order <= 0],
        no_par_items=[line for line in lines if line.risk == RiskLevel.NO_PAR],
        red_count=sum(1 for line in lines if line.risk == RiskLevel.RED),
        yellow_count=sum(1 for line in lines if line.risk == RiskLevel.YELLOW),
        estimated_cost=round(
            sum(line.suggested_order * (line.unit_cost or 0) for line in order_items),
            2,
        ),
    )


def resolve_alert_recipients(
    preference: Optional[Dict[str, Any]],
    members: Sequence[Dict[str, Any]],
) -> List[str]:
    """Users who should see the approval alert, following the restaurant preference."""

    if not preference:
        return []
    mode = preference.get("recipients_mode")
    if mode == "OWNERS_MANAGERS":
        return [m["user_id"] for m in members if m.get("role") in ("OWNER", "MANAGER")]
    if mode == "ALL":
        return [m["user_id"] for m in members]
    if mode == "CUSTOM":
        return [r["user_id"] for r in preference.get("alert_recipients") or [] if r.get("user_id")]
    return []


def build_approval_notifications(
    restaurant_id: str,
    user_ids: Sequence[str],
    *,
    session_id: str,
    run_id: str,
    red_count: int,
    yellow_count: int,
) -> List[Dict[str, Any]]:
    flagged = red_count + yellow_count
    plural = "s" if flagged > 1 else ""
    return [
        {
            "restaurant_id": restaurant_id,
            "user_id": user_id,
            "type": "LOW_STOCK",
            "severity": "CRITICAL" if red_count > 0 else "WARNING",
            "title": f"Inventory Approved — {flagged} item{plural} need attention",
            "message": f"{red_count} high risk, {yellow_count} medium risk items detected",
            "data": {
                "session_id": session_id,
                "run_id": run_id,
                "red": red_count,
                "yellow": yellow_count,
            },
        }
        for user_id in user_ids
    ]


async def create_smart_order_for_session(dao, session: Dict[str, Any], user_id: str) -> ApprovalResult:
    """Snapshot a smart order run for an approved session and alert the team."""

    session_id = str(session["id"])
    items = await dao.fetch_session_items([session_id])
    result = ApprovalResult(session_id=session["id"], status=APPROVED_STATUS)
    if not items:
        return result

    guide_id, par_map = await dao.fetch_latest_par_map(session.get("inventory_list_id"))
    build = build_smart_order_lines(items, par_map)

    run = await dao.create_smart_order_run(
        {
            "session_id": session_id,
            "inventory_list_id": session.get("inventory_list_id"),
            "par_guide_id": guide_id,
            "created_by": user_id,
        },
        [line.model_dump(mode="json") for line in build.lines],
    )
    result.smart_order_run_id = str(run["id"])
    result.red_count = build.red_count
    result.yellow_count = build.yellow_count

    if build.red_count or build.yellow_count:
        preference = await dao.fetch_in_app_alert_preference()
        if preference:
            members = await dao.fetch_members()
            recipients = resolve_alert_recipients(preference, members)
            notifications = build_approval_notifications(
                dao.restaurant_id_str,
                recipients,
                session_id=session_id,
                run_id=result.smart_order_run_id,
                red_count=build.red_count,
                yellow_count=build.yellow_count,
            )
            await dao.insert_notifications(notifications)
            result.notified_users = len(notifications)

    return result


async def approve_session(dao, session_id: UUID, user_id: str) -> ApprovalResult:
    session = await _require_reviewable_session(dao, session_id)

    await dao.update_session(
        session_id,
        {
            "status": APPROVED_STATUS,
            "approved_at": datetime.now(timezone.utc).isoformat(),
            "approved_by": user_id,
        },
    )

    try:
        return await create_smart_order_for_session(dao, session, user_id)
    except HTTPException as exc:
        logger.warning("Auto smart order failed for session %s: %s", session_id, exc.detail)
        return ApprovalResult(session_id=session_id, status=APPROVED_STATUS)


async def reject_session(dao, session_id: UUID) -> Dict[str, Any]:
    await _require_reviewable_session(dao, session_id)
    await dao.update_session(session_id, {"status": IN_PROGRESS_STATUS})
    return {"session_id": str(session_id), "status": IN_PROGRESS_STATUS}


async def _require_reviewable_session(dao, session_id: UUID) -> Dict[str, Any]:
    session = await dao.fetch_session(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Inventory session not found.")
    if session.get("status") != REVIEW_STATUS:
        raise HTTPException(status_code=400, detail="Only sessions in review can be approved or sent back.")
    return session


def _to_float(value: Any) -> float:
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


__all__ = [
    "ApprovalResult",
    "SmartOrderBuild",
    "SmartOrderLine",
    "SmartOrderSummary",
    "approve_session",
    "build_approval_notifications",
    "build_smart_order_lines",
    "create_smart_order_for_session",
    "reject_session",
    "resolve_alert_recipients",
    "summarize_run",
]
