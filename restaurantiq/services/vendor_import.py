"""Vendor invoice import backed by demo fixtures until real vendor APIs are wired."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

DEFAULT_DATE_RANGE_DAYS = 30
FALLBACK_VENDOR = "Sysco"


def _invoice(invoice_number: str, invoice_date: str, vendor_name: str, total: float, item_count: int) -> Dict[str, Any]:
    return {
        "invoice_number": invoice_number,
        "invoice_date": invoice_date,
        "vendor_name": vendor_name,
        "total": total,
        "item_count": item_count,
        "status": "delivered",
    }


def _line(product_number: str, item_name: str, quantity: float, unit_cost: float, unit: str, pack_size: str) -> Dict[str, Any]:
    return {
        "product_number": product_number,
        "item_name": item_name,
        "quantity": quantity,
        "unit_cost": unit_cost,
        "line_total": round(quantity * unit_cost, 2),
        "unit": unit,
        "pack_size": pack_size,
    }


VENDOR_INVOICES: Dict[str, List[Dict[str, Any]]] = {
    "Sysco": [
        _invoice("SYS-2026-44821", "2026-02-18", "Sysco", 1284.50, 12),
        _invoice("SYS-2026-44790", "2026-02-14", "Sysco", 978.25, 9),
        _invoice("SYS-2026-44712", "2026-02-07", "Sysco", 1450.00, 15),
    ],
    "US Foods": [
        _invoice("USF-88321", "2026-02-19", "US Foods", 2105.75, 18),
        _invoice("USF-88290", "2026-02-12", "US Foods", 1620.00, 14),
    ],
    "PFG": [
        _invoice("PFG-110455", "2026-02-17", "PFG", 890.30, 8),
        _invoice("PFG-110401", "2026-02-10", "PFG", 1125.60, 11),
    ],
}

_LINES: Dict[str, List[Dict[str, Any]]] = {
    "SYS-2026-44821": [
        _line("1234567", "Chicken Breast 10lb", 5, 42.50, "CS", "2/10lb"),
        _line("2345678", "Ground Beef 80/20", 4, 55.00, "CS", "4/5lb"),
        _line("3456789", "French Fries Crinkle Cut", 6, 28.00, "CS", "6/5lb"),
        _line("4567890", "Burger Buns Sesame", 8, 18.50, "CS", "12ct"),
        _line("5678901", "Iceberg Lettuce", 3, 24.00, "CS", "24ct"),
        _line("6789012", "Roma Tomatoes", 4, 32.00, "CS", "25lb"),
        _line("7890123", "Canola Oil", 2, 38.00, "CS", "6/1GAL"),
        _line("8901234", "Vanilla Ice Cream", 3, 45.00, "TUB", "3GAL"),
        _line("9012345", "Mozzarella Shredded", 2, 28.50, "CS", "4/5lb"),
        _line("0123456", "Bacon Sliced", 1, 42.00, "CS", "15lb"),
        _line("1122334", "Ranch Dressing", 2, 13.00, "CS", "4/1GAL"),
    ],
    "SYS-2026-44790": [
        _line("1234567", "Chicken Breast 10lb", 4, 42.50, "CS", "2/10lb"),
        _line("3456789", "French Fries Crinkle Cut", 8, 28.00, "CS", "6/5lb"),
        _line("5678901", "Iceberg Lettuce", 5, 24.00, "CS", "24ct"),
        _line("7890123", "Canola Oil", 3, 38.00, "CS", "6/1GAL"),
        _line("8901234", "Vanilla Ice Cream", 5, 45.00, "TUB", "3GAL"),
    ],
    "SYS-2026-44712": [
        _line("2345678", "Ground Beef 80/20", 6, 55.00, "CS", "4/5lb"),
        _line("4567890", "Burger Buns Sesame", 10, 18.50, "CS", "12ct"),
        _line("6789012", "Roma Tomatoes", 6, 32.00, "CS", "25lb"),
        _line("9012345", "Mozzarella Shredded", 4, 28.50, "CS", "4/5lb"),
    ],
    "USF-88321": [
        _line("USF-001", "Premium Vodka 1.75L", 6, 22.00, "BTL", "1.75L"),
        _line("USF-002", "Captain Morgan Rum", 4, 18.00, "BTL", "1.75L"),
        _line("USF-003", "Orange Juice Premium", 8, 6.50, "GAL", "1GAL"),
        _line("USF-004", "Fresh Limes", 5, 18.00, "CS", "200ct"),
        _line("USF-005", "Bagged Ice", 20, 3.50, "BAG", "20lb"),
    ],
    "USF-88290": [
        _line("USF-001", "Premium Vodka 1.75L", 4, 22.00, "BTL", "1.75L"),
        _line("USF-003", "Orange Juice Premium", 6, 6.50, "GAL", "1GAL"),
        _line("USF-005", "Bagged Ice", 15, 3.50, "BAG", "20lb"),
    ],
    "PFG-110455": [
        _line("PFG-A1", "Cooking Oil Blend", 4, 35.00, "CS", "6/1GAL"),
        _line("PFG-A2", "All Purpose Flour", 3, 22.00, "BAG", "50lb"),
        _line("PFG-A3", "Sugar Granulated", 2, 28.00, "BAG", "50lb"),
    ],
    "PFG-110401": [
        _line("PFG-A1", "Cooking Oil Blend", 6, 35.00, "CS", "6/1GAL"),
        _line("PFG-A4", "Paper Towels", 4, 45.00, "CS", "12ct"),
        _line("PFG-A5", "Disposable Gloves L", 5, 12.00, "BX", "100ct"),
    ],
}

INVOICE_DETAILS: Dict[str, Dict[str, Any]] = {
    invoice["invoice_number"]: {
        "vendor_name": invoice["vendor_name"],
        "invoice_number": invoice["invoice_number"],
        "invoice_date": invoice["invoice_date"],
        "items": _LINES[invoice["invoice_number"]],
    }
    for invoices in VENDOR_INVOICES.values()
    for invoice in invoices
}


def list_vendor_invoices(
    vendor_name: str,
    date_range_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> List[Dict[str, Any]]:
    """Invoices of a vendor dated within the last ``date_range_days`` days."""

    days = date_range_days or DEFAULT_DATE_RANGE_DAYS
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)
    invoices = VENDOR_INVOICES.get(vendor_name) or VENDOR_INVOICES[FALLBACK_VENDOR]
    return [
        dict(invoice)
        for invoice in invoices
        if datetime.fromisoformat(invoice["invoice_date"]).replace(tzinfo=timezone.utc) >= cutoff
    ]


def get_vendor_invoice_details(invoice_number: str) -> Optional[Dict[str, Any]]:
    details = INVOICE_DETAILS.get(invoice_number)
    if details is None:
        return None
    return {**details, "items": [dict(item) for item in details["items"]]}


__all__ = [
    "INVOICE_DETAILS",
    "VENDOR_INVOICES",
    "get_vendor_invoice_details",
    "list_vendor_invoices",
]
