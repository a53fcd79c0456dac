"""Usage analytics and rules-based PAR recommendations.

Usage between two approved counts is ``beginning + purchases - ending``,
scaled to a weekly rate from the time elapsed between the two approvals.
The PAR rules look at the last three counted sessions of each item:

* stock below 50% of PAR three times in a row suggests +15%;
* stock above 130% of PAR three times in a row suggests -15%;
* otherwise, weekly usage above 80% of PAR suggests ``ceil(usage * 1.2)``.

The functions taking plain rows are pure; the ``*_for`` coroutines load the
rows through an inventory DAO first.
"""

from __future__ import annotations

import math
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Literal, Optional, Sequence

from pydantic import BaseModel

from restaurantiq.services.inventory_rules import round_half_up

SECONDS_PER_DAY = 86400
USAGE_SESSION_COUNT = 2
PAR_SESSION_COUNT = 4
SHRINK_SESSION_COUNT = 5
MIN_COUNTED_SESSIONS = 3

CRITICAL_RATIO = 0.5
OVERSTOCK_RATIO = 1.3
PAR_ADJUSTMENT = 0.15
USAGE_PRESSURE_RATIO = 0.8
USAGE_BUFFER = 1.2
HIGH_USAGE_FACTOR = 1.5

RecommendationType = Literal["increase", "decrease", "usage_trend"]
AnomalyType = Literal["HIGH_USAGE", "COUNT_VARIANCE"]


class ComputedUsageItem(BaseModel):
    item_name: str
    beginning_stock: float
    ending_stock: float
    purchases_between: float
    usage_raw: float
    weekly_usage: float
    days_between: int


class PARRecommendation(BaseModel):
    item_name: str
    current_par: float
    suggested_par: float
    change_pct: int
    reason: str
    type: RecommendationType


class UsageAnomaly(BaseModel):
    item_name: str
    usage: float
    avg: float
    type: AnomalyType


def normalize_item_name(name: Any) -> str:
    return str(name or "").strip().lower()


def parse_timestamp(value: Any) -> datetime:
    """Parse a PostgREST timestamp into an aware datetime."""

    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value or "").strip()
        if not text:
            raise ValueError("timestamp is required")
        if text.endswith("Z"):
            text = f"{text[:-1]}+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def compute_usage(
    previous_items: Iterable[Dict[str, Any]],
    latest_items: Iterable[Dict[str, Any]],
    purchase_items: Iterable[Dict[str, Any]],
    previous_approved_at: Any,
    latest_approved_at: Any,
) -> List[ComputedUsageItem]:
    """Compute per-item usage between two approved inventory counts."""

    purchases: Dict[str, float] = defaultdict(float)
    for row in purchase_items:
        purchases[normalize_item_name(row.get("item_name"))] += _to_float(row.get("quantity"))

    ending: Dict[str, float] = {}
    for row in latest_items:
        ending[normalize_item_name(row.get("item_name"))] = _to_float(row.get("current_stock"))

    elapsed = parse_timestamp(latest_approved_at) - parse_timestamp(previous_approved_at)
    days_between = max(1.0, elapsed.total_seconds() / SECONDS_PER_DAY)

    results: List[ComputedUsageItem] = []
    for row in previous_items:
        key = normalize_item_name(row.get("item_name"))
        beginning = _to_float(row.get("current_stock"))
        ending_stock = ending.get(key, 0.0)
        purchased = purchases.get(key, 0.0)
        usage_raw = beginning + purchased - ending_stock
        weekly_usage = usage_raw / days_between * 7

        results.append(
            ComputedUsageItem(
                item_name=str(row.get("item_name") or ""),
                beginning_stock=beginning,
                ending_stock=ending_stock,
                purchases_between=purchased,
                usage_raw=usage_raw,
                weekly_usage=max(0.0, weekly_usage),
                days_between=int(round_half_up(days_between)),
            )
        )

    return sorted(results, key=lambda item: item.weekly_usage, reverse=True)


def compute_par_recommendations(
    session_items: Sequence[Dict[str, Any]],
    ordered_session_ids: Sequence[Any],
    usage: Iterable[ComputedUsageItem],
) -> List[PARRecommendation]:
    """Apply the PAR rules to items counted across chronologically ordered sessions."""

    slot_by_session = {str(session_id): index for index, session_id in enumerate(ordered_session_ids)}
    stocks_by_item: Dict[str, List[Optional[float]]] = {}
    pars_by_item: Dict[str, List[float]] = defaultdict(list)
    display_names: Dict[str, str] = {}

    for row in session_items:
        key = normalize_item_name(row.get("item_name"))
        if key not in stocks_by_item:
            stocks_by_item[key] = [None] * len(ordered_session_ids)
            display_names[key] = str(row.get("item_name") or key)
        slot = slot_by_session.get(str(row.get("session_id")))
        if slot is None:
            continue
        stocks_by_item[key][slot] = _to_float(row.get("current_stock"))
        pars_by_item[key].append(_to_float(row.get("par_level")))

    weekly_usage_by_item = {normalize_item_name(entry.item_name): entry.weekly_usage for entry in usage}

    recommendations: List[PARRecommendation] = []
    for key, stocks in stocks_by_item.items():
        counted = [stock for stock in stocks if stock is not None]
        if len(counted) < MIN_COUNTED_SESSIONS:
            continue

        current_par = max([*pars_by_item[key], 0.0])
        if current_par <= 0:
            continue

        display_name = display_names[key]
        last_three = counted[-MIN_COUNTED_SESSIONS:]

        if all(stock < current_par * CRITICAL_RATIO for stock in last_three):
            increase = round_half_up(current_par * PAR_ADJUSTMENT)
            recommendations.append(
                PARRecommendation(
                    item_name=display_name,
                    current_par=current_par,
                    suggested_par=current_par + increase,
                    change_pct=int(round_half_up(increase / current_par * 100)),
                    reason=(
                        "Stock critically low (<50% PAR) for 3 consecutive counts. "
                        "Consider increasing PAR."
                    ),
                    type="increase",
                )
            )
            continue

        if all(stock > current_par * OVERSTOCK_RATIO for stock in last_three):
            decrease = round_half_up(current_par * PAR_ADJUSTMENT)
            recommendations.append(
                PARRecommendation(
                    item_name=display_name,
                    current_par=current_par,
                    suggested_par=current_par - decrease,
                    change_pct=-int(round_half_up(decrease / current_par * 100)),
                    reason=(
                        "Stock consistently above PAR (>130%) for 3 consecutive counts. "
                        "Consider decreasing PAR."
                    ),
                    type="decrease",
                )
            )
            continue

        weekly_usage = weekly_usage_by_item.get(key)
        if weekly_usage and weekly_usage > current_par * USAGE_PRESSURE_RATIO:
            suggested = math.ceil(weekly_usage * USAGE_BUFFER)
            recommendations.append(
                PARRecommendation(
                    item_name=display_name,
                    current_par=current_par,
                    suggested_par=suggested,
                    change_pct=int(round_half_up((suggested - current_par) / current_par * 100)),
                    reason=(
                        f"Weekly usage ({weekly_usage:.1f}) approaching PAR level. "
                        "Consider buffer increase."
                    ),
                    type="usage_trend",
                )
            )

    return sorted(recommendations, key=lambda rec: abs(rec.change_pct), reverse=True)


def detect_usage_anomalies(
    session_items: Sequence[Dict[str, Any]],
    ordered_session_ids: Sequence[Any],
) -> List[UsageAnomaly]:
    """Flag items whose latest usage spikes or whose stock grew without a delivery."""

    slot_by_session = {str(session_id): index for index, session_id in enumerate(ordered_session_ids)}
    stocks_by_item: Dict[str, List[Optional[float]]] = {}
    display_names: Dict[str, str] = {}

    for row in session_items:
        key = normalize_item_name(row.get("item_name"))
        if key not in stocks_by_item:
            stocks_by_item[key] = [None] * len(ordered_session_ids)
            display_names[key] = str(row.get("item_name") or key)
        slot = slot_by_session.get(str(row.get("session_id")))
        if slot is not None:
            stocks_by_item[key][slot] = _to_float(row.get("current_stock"))

    anomalies: List[UsageAnomaly] = []
    for key, stocks in stocks_by_item.items():
        usages = [
            before - after
            for before, after in zip(stocks, stocks[1:])
            if before is not None and after is not None
        ]
        if len(usages) < 2:
            continue

        latest_usage = usages[-1]
        earlier = usages[:-1]
        rolling_avg = sum(earlier) / len(earlier)

        if rolling_avg > 0 and latest_usage > rolling_avg * HIGH_USAGE_FACTOR:
            anomalies.append(
                UsageAnomaly(item_name=display_names[key], usage=latest_usage, avg=rolling_avg, type="HIGH_USAGE")
            )
        if latest_usage < 0:
            anomalies.append(
                UsageAnomaly(item_name=display_names[key], usage=latest_usage, avg=rolling_avg, type="COUNT_VARIANCE")
            )

    return anomalies


def chronological_ids(sessions: Sequence[Dict[str, Any]]) -> List[str]:
    """Session ids oldest first, given rows ordered newest first."""

    return [str(session["id"]) for session in reversed(sessions)]


async def compute_usage_analytics_for(dao, location_id: Optional[str] = None) -> List[ComputedUsageItem]:
    """Usage between the two most recent approved sessions."""

    sessions = await dao.fetch_approved_sessions(limit=USAGE_SESSION_COUNT, location_id=location_id)
    if len(sessions) < USAGE_SESSION_COUNT:
        return []

    latest, previous = sessions[0], sessions[1]
    latest_items = await dao.fetch_session_items([latest["id"]])
    previous_items = await dao.fetch_session_items([previous["id"]])
    purchase_items = await dao.fetch_purchase_items_between(
        previous["approved_at"],
        latest["approved_at"],
        location_id=location_id,
    )
    return compute_usage(
        previous_items,
        latest_items,
        purchase_items,
        previous["approved_at"],
        latest["approved_at"],
    )


async def compute_par_recommendations_for(dao, location_id: Optional[str] = None) -> List[PARRecommendation]:
    """PAR recommendations from the last four approved sessions."""

    sessions = await dao.fetch_approved_sessions(limit=PAR_SESSION_COUNT, location_id=location_id)
    if len(sessions) < MIN_COUNTED_SESSIONS:
        return []

    ordered_ids = chronological_ids(sessions)
    items = await dao.fetch_session_items(ordered_ids)
    if not items:
        return []

    usage = await compute_usage_analytics_for(dao, location_id=location_id)
    return compute_par_recommendations(items, ordered_ids, usage)


def _to_float(value: Any, default: float = 0.0) -> float:
    if value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


__all__ = [
    "ComputedUsageItem",
    "PARRecommendation",
    "UsageAnomaly",
    "chronological_ids",
    "compute_par_recommendations",
    "compute_par_recommendations_for",
    "compute_usage",
    "compute_usage_analytics_for",
    "detect_usage_anomalies",
    "normalize_item_name",
    "parse_timestamp",
]
