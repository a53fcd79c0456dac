"""Inventory formatting, risk classification and smart order rounding rules."""

from __future__ import annotations

import math
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel

WHOLE_UNITS = frozenset({"CS", "CASE", "CASES", "PK", "PACK", "PACKS", "EA", "EACH"})
WHOLE_PACK_MARKERS = ("CASE", "CS", "PACK", "PK")
CASE_UNITS = frozenset({"CS", "CASE", "CASES"})
DECIMAL_UNITS = frozenset({"LB", "LBS", "GAL", "GALLON", "GALLONS", "OZ", "KG", "LITER", "L"})

CRITICAL_PERCENT = 50
FULL_PERCENT = 100

EMPTY_DISPLAY = "—"

RowState = Literal["uncounted", "zero", "counted"]


class RiskLevel(str, Enum):
    RED = "RED"
    YELLOW = "YELLOW"
    GREEN = "GREEN"
    NO_PAR = "NO_PAR"


class RiskInfo(BaseModel):
    """Risk bucket for a stock count measured against its PAR level."""

    level: RiskLevel
    label: str
    percent: Optional[int] = None
    tooltip: str


def round_half_up(value: float, digits: int = 0) -> float:
    """Round like the UI does: halves go towards positive infinity."""

    factor = 10 ** digits
    return math.floor(value * factor + 0.5) / factor


def format_num(value: Optional[float]) -> str:
    """Format a quantity with at most two decimals and no trailing zeros."""

    if value is None:
        return EMPTY_DISPLAY
    rounded = round_half_up(float(value), 2)
    if rounded == 0:
        return "0"
    text = f"{rounded:.2f}".rstrip("0").rstrip(".")
    return text


def format_currency(value: Optional[float]) -> str:
    if value is None:
        return EMPTY_DISPLAY
    return f"${round_half_up(float(value), 2):.2f}"


def parse_input_value(raw: Optional[str]) -> Optional[float]:
    """Parse a count typed by a user; negatives clamp to zero."""

    if raw is None:
        return None
    text = raw.strip()
    if text in ("", ".", "-"):
        return None
    try:
        value = float(text)
    except ValueError:
        return None
    if math.isnan(value):
        return None
    return max(0.0, value)


def get_risk(current_stock: Optional[float], par_level: Optional[float]) -> RiskInfo:
    stock = float(current_stock) if current_stock is not None else 0.0

    if par_level is None or par_level <= 0:
        return RiskInfo(
            level=RiskLevel.NO_PAR,
            label="No PAR",
            percent=None,
            tooltip="No PAR level set for this item",
        )

    percent = int(round_half_up(stock / float(par_level) * 100))

    if stock <= 0:
        return RiskInfo(
            level=RiskLevel.RED,
            label="Critical",
            percent=0,
            tooltip="Out of stock — 0% of PAR",
        )

    if percent < CRITICAL_PERCENT:
        return RiskInfo(
            level=RiskLevel.RED,
            label="Critical",
            percent=percent,
            tooltip=f"Current is {percent}% of PAR",
        )

    if percent < FULL_PERCENT:
        return RiskInfo(
            level=RiskLevel.YELLOW,
            label="Low",
            percent=percent,
            tooltip=f"Current is {percent}% of PAR",
        )

    return RiskInfo(
        level=RiskLevel.GREEN,
        label="OK",
        percent=percent,
        tooltip=f"Current is {percent}% of PAR — fully stocked",
    )


def compute_risk_level(current_stock: Optional[float], par_level: Optional[float]) -> RiskLevel:
    return get_risk(current_stock, par_level).level


def _normalize_unit(value: Optional[str]) -> str:
    return (value or "").upper().strip()


def is_whole_unit_type(unit: Optional[str], pack_size: Optional[str]) -> bool:
    """Return True when the unit can only be ordered in whole numbers."""

    if not unit and not pack_size:
        return False
    if _normalize_unit(unit) in WHOLE_UNITS:
        return True
    normalized_pack = _normalize_unit(pack_size)
    return any(marker in normalized_pack for marker in WHOLE_PACK_MARKERS)


def is_case_unit(unit: Optional[str]) -> bool:
    return _normalize_unit(unit) in CASE_UNITS


def is_decimal_unit_type(unit: Optional[str]) -> bool:
    return _normalize_unit(unit) in DECIMAL_UNITS


def compute_need_raw(current_stock: Optional[float], par_level: Optional[float]) -> float:
    """Gap between PAR and stock, never negative, two decimals."""

    stock = float(current_stock) if current_stock is not None else 0.0
    par = float(par_level) if par_level is not None else 0.0
    if par <= 0:
        return 0.0
    raw = par - stock
    if raw <= 0:
        return 0.0
    return round_half_up(raw, 2)


def compute_order_qty(
    current_stock: Optional[float],
    par_level: Optional[float],
    unit: Optional[str] = None,
    pack_size: Optional[str] = None,
) -> float:
    """Suggested order quantity with unit-aware rounding."""

    stock = float(current_stock) if current_stock is not None else 0.0
    par = float(par_level) if par_level is not None else 0.0

    if par <= 0:
        return 0

    need_raw = par - stock
    if need_raw <= 0:
        return 0

    if is_whole_unit_type(unit, pack_size):
        return math.ceil(need_raw)

    if is_decimal_unit_type(unit):
        return round_half_up(need_raw, 1)

    # Unknown units round up so an order never falls short.
    return math.ceil(need_raw)


def get_row_state(current_stock: Any) -> RowState:
    if current_stock is None:
        return "uncounted"
    if float(current_stock) == 0:
        return "zero"
    return "counted"


__all__ = [
    "RiskInfo",
    "RiskLevel",
    "compute_need_raw",
    "compute_order_qty",
    "compute_risk_level",
    "format_currency",
    "format_num",
    "get_risk",
    "get_row_state",
    "is_case_unit",
    "is_decimal_unit_type",
    "is_whole_unit_type",
    "parse_input_value",
    "round_half_up",
]
