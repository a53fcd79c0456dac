"""Multi-restaurant portfolio dashboard."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Union

from postgrest.types import CountMethod
from pydantic import BaseModel, Field

from restaurantiq.services.postgrest_client import PostgrestDAO

logger = logging.getLogger(__name__)

RED_RATIO = 0.5
TOP_ITEMS_LIMIT = 5
SPEND_STATUSES = ("COMPLETE", "POSTED")


class LocationItemsSummary(BaseModel):
    red: int = 0
    yellow: int = 0
    green: int = 0
    waste_exposure: float = 0.0
    top_items: List[Dict[str, Any]] = Field(default_factory=list)


class LocationSummary(BaseModel):
    location_id: str
    location_name: str
    red: int
    yellow: int
    green: int
    waste_exposure: float
    last_approved: Optional[str] = None


class RestaurantSummary(BaseModel):
    id: str
    name: Optional[str] = None
    role: Optional[str] = None
    red: int = 0
    yellow: int = 0
    green: int = 0
    waste_exposure: float = 0.0
    spend_month: float = 0.0
    locations: List[LocationSummary] = Field(default_factory=list)
    recent_orders: int = 0
    unread_alerts: int = 0


class PortfolioDashboard(BaseModel):
    restaurants: List[RestaurantSummary] = Field(default_factory=list)
    totals: Dict[str, Union[int, float]] = Field(default_factory=lambda: {"red": 0, "yellow": 0, "green": 0})


def _number(value: Any) -> float:
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def summarize_location_items(items: Sequence[Dict[str, Any]]) -> LocationItemsSummary:
    """Risk buckets, overstock value and biggest gaps for one session's items."""

    summary = LocationItemsSummary()
    ranked = []
    for item in items:
        stock = _number(item.get("current_stock"))
        par = _number(item.get("par_level"))
        ratio = stock / par if par > 0 else 1
        if ratio < RED_RATIO:
            summary.red += 1
        elif ratio < 1:
            summary.yellow += 1
        else:
            summary.green += 1
        if par > 0 and stock > par and item.get("unit_cost"):
            summary.waste_exposure += (stock - par) * _number(item["unit_cost"])
        ranked.append(
            {
                **item,
                "suggested": max(par - stock, 0),
                "ratio": stock / max(par, 1),
            }
        )

    ranked.sort(key=lambda entry: entry["suggested"], reverse=True)
    summary.top_items = ranked[:TOP_ITEMS_LIMIT]
    return summary


def month_start(now: datetime) -> datetime:
    return now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


class SupabasePortfolioDAO(PostgrestDAO):
    """Reads across every restaurant the caller is a member of."""

    async def fetch_memberships(self, user_id: str) -> List[Dict[str, Any]]:
        def _request() -> List[Dict[str, Any]]:
            with self._client() as client:
                return (
                    client.table("restaurant_members")
                    .select("restaurant_id,role,restaurants(id,name)")
                    .eq("user_id", user_id)
                    .execute()
                ).data or []

        return await self._execute(_request, context="fetch memberships")

    async def fetch_active_locations(self, restaurant_id: str) -> List[Dict[str, Any]]:
        def _request() -> List[Dict[str, Any]]:
            with self._client() as client:
                return (
                    client.table("locations")
                    .select("id,name")
                    .eq("restaurant_id", restaurant_id)
                    .eq("is_active", True)
                    .execute()
                ).data or []

        return await self._execute(_request, context="fetch locations")

    async def fetch_latest_approved_session(
        self,
        restaurant_id: str,
        location_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        def _request() -> Optional[Dict[str, Any]]:
            with self._client() as client:
                query = (
                    client.table("inventory_sessions")
                    .select("id,approved_at")
                    .eq("restaurant_id", restaurant_id)
                    .eq("status", "APPROVED")
                )
                if location_id:
                    query = query.eq("location_id", location_id)
                rows = query.order("approved_at", desc=True).limit(1).execute().data or []
                return rows[0] if rows else None

        return await self._execute(_request, context="fetch latest approved session")

    async def fetch_session_items(self, session_id: str) -> List[Dict[str, Any]]:
        def _request() -> List[Dict[str, Any]]:
            with self._client() as client:
                return (
                    client.table("inventory_session_items")
                    .select("item_name,current_stock,par_level,unit,unit_cost")
                    .eq("session_id", session_id)
                    .execute()
                ).data or []

        return await self._execute(_request, context="fetch session items")

    async def fetch_spend_since(self, restaurant_id: str, since: datetime) -> float:
        def _request() -> float:
            with self._client() as client:
                purchases = (
                    client.table("purchase_history")
                    .select("id")
                    .eq("restaurant_id", restaurant_id)
                    .in_("invoice_status", list(SPEND_STATUSES))
                    .gte("created_at", since.isoformat())
                    .execute()
                ).data or []
                ids = [row["id"] for row in purchases if row.get("id")]
                if not ids:
                    return 0.0
                items = (
                    client.table("purchase_history_items")
                    .select("total_cost")
                    .in_("purchase_history_id", ids)
                    .execute()
                ).data or []
                return sum(_number(item.get("total_cost")) for item in items)

        return await self._execute(_request, context="fetch monthly spend")

    async def count_orders(self, restaurant_id: str) -> int:
        def _request() -> int:
            with self._client() as client:
                response = (
                    client.table("orders")
                    .select("id", count=CountMethod.exact, head=True)
                    .eq("restaurant_id", restaurant_id)
                    .execute()
                )
                return response.count or 0

        return await self._execute(_request, context="count orders")

    async def count_unread_notifications(self, user_id: str, restaurant_id: str) -> int:
        def _request() -> int:
            with self._client() as client:
                response = (
                    client.table("notifications")
                    .select("id", count=CountMethod.exact, head=True)
                    .eq("user_id", user_id)
                    .eq("restaurant_id", restaurant_id)
                    .is_("read_at", "null")
                    .execute()
                )
                return response.count or 0

        return await self._execute(_request, context="count unread notifications")


async def build_portfolio_dashboard(
    dao: SupabasePortfolioDAO,
    user_id: str,
    *,
    now: Optional[datetime] = None,
) -> PortfolioDashboard:
    memberships = await dao.fetch_memberships(user_id)
    if not memberships:
        return PortfolioDashboard()

    since = month_start(now or datetime.now(timezone.utc))
    restaurants: List[RestaurantSummary] = []
    totals = {"red": 0, "yellow": 0, "green": 0, "waste_exposure": 0.0, "spend_month": 0.0}

    for membership in memberships:
        restaurant = membership.get("restaurants") or {}
        restaurant_id = str(restaurant.get("id") or membership.get("restaurant_id"))
        summary = RestaurantSummary(id=restaurant_id, name=restaurant.get("name"), role=membership.get("role"))

        locations = await dao.fetch_active_locations(restaurant_id)
        targets = [(str(loc["id"]), loc.get("name") or "") for loc in locations] or [(None, None)]

        for location_id, location_name in targets:
            session = await dao.fetch_latest_approved_session(restaurant_id, location_id)
            items = await dao.fetch_session_items(str(session["id"])) if session else []
            location = summarize_location_items(items)
            summary.red += location.red
            summary.yellow += location.yellow
            summary.green += location.green
            summary.waste_exposure += location.waste_exposure
            if location_id:
                summary.locations.append(
                    LocationSummary(
                        location_id=location_id,
                        location_name=location_name,
                        red=location.red,
                        yellow=location.yellow,
                        green=location.green,
                        waste_exposure=location.waste_exposure,
                        last_approved=(session or {}).get("approved_at"),
                    )
                )

        summary.spend_month = await dao.fetch_spend_since(restaurant_id, since)
        summary.recent_orders = await dao.count_orders(restaurant_id)
        summary.unread_alerts = await dao.count_unread_notifications(user_id, restaurant_id)

        totals["red"] += summary.red
        totals["yellow"] += summary.yellow
        totals["green"] += summary.green
        totals["waste_exposure"] += summary.waste_exposure
        totals["spend_month"] += summary.spend_month
        restaurants.append(summary)

    return PortfolioDashboard(restaurants=restaurants, totals=totals)


__all__ = [
    "LocationItemsSummary",
    "PortfolioDashboard",
    "RestaurantSummary",
    "SupabasePortfolioDAO",
    "build_portfolio_dashboard",
    "month_start",
    "summarize_location_items",
]
