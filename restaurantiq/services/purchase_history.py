"""Saving parsed invoices into purchase history and last-order lookups."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Optional, Sequence
from uuid import UUID

from fastapi import HTTPException
from pydantic import BaseModel, Field

from restaurantiq.services.invoice_parser import InvoiceItem

logger = logging.getLogger(__name__)

InvoiceStatus = Literal["DRAFT", "RECEIVED", "POSTED"]
LAST_ORDER_STATUSES = frozenset({"RECEIVED", "POSTED", "COMPLETE"})


class InvoiceSaveRequest(BaseModel):
    vendor_name: str = ""
    invoice_number: Optional[str] = None
    invoice_date: Optional[str] = None
    location_id: Optional[str] = None
    smart_order_run_id: Optional[str] = None
    status: InvoiceStatus = "DRAFT"
    items: List[InvoiceItem] = Field(default_factory=list)


class InvoiceSaveResult(BaseModel):
    id: str
    invoice_status: str
    item_count: int


def stored_status(status: str) -> str:
    """POSTED invoices are stored as COMPLETE."""

    return "COMPLETE" if status == "POSTED" else status


def line_total_cost(item: InvoiceItem) -> Optional[float]:
    if item.line_total is not None:
        return item.line_total
    if item.unit_cost:
        return item.unit_cost * item.quantity
    return None


def validate_invoice(payload: InvoiceSaveRequest) -> None:
    if not payload.items:
        raise HTTPException(status_code=400, detail="No items to save")
    if not payload.vendor_name.strip():
        raise HTTPException(status_code=400, detail="Vendor name is required")
    if payload.status == "POSTED":
        unmatched = [item for item in payload.items if item.match_status == "UNMATCHED"]
        if unmatched:
            raise HTTPException(
                status_code=400,
                detail=f"{len(unmatched)} unmatched item(s) must be matched before posting.",
            )


def build_purchase_rows(
    payload: InvoiceSaveRequest,
    catalog_items: Sequence[Dict[str, Any]],
    user_id: Optional[str] = None,
) -> tuple[Dict[str, Any], List[Dict[str, Any]]]:
    """Header and item rows ready for the purchase_history tables."""

    brands = {str(c.get("id")): c.get("brand_name") for c in catalog_items if c.get("id")}
    header = {
        "vendor_name": payload.vendor_name.strip(),
        "invoice_number": payload.invoice_number or None,
        "invoice_date": payload.invoice_date or None,
        "location_id": payload.location_id or None,
        "smart_order_run_id": payload.smart_order_run_id or None,
        "invoice_status": stored_status(payload.status),
        "created_by": user_id,
    }
    rows = []
    for item in payload.items:
        brand = item.brand_name
        if not brand and item.catalog_item_id:
            brand = brands.get(item.catalog_item_id)
        rows.append(
            {
                "item_name": item.item_name,
                "quantity": item.quantity,
                "unit_cost": item.unit_cost,
                "total_cost": line_total_cost(item),
                "pack_size": item.pack_size,
                "brand_name": brand or None,
                "catalog_item_id": item.catalog_item_id,
                "match_status": item.match_status,
            }
        )
    return header, rows


async def save_invoice(
    dao,
    payload: InvoiceSaveRequest,
    *,
    user_id: Optional[str] = None,
    purchase_id: Optional[UUID] = None,
) -> InvoiceSaveResult:
    validate_invoice(payload)
    catalog = await dao.fetch_catalog_items()
    header, rows = build_purchase_rows(payload, catalog, user_id)
    saved_id = await dao.save_purchase(header, rows, purchase_id=purchase_id)
    logger.info("Saved invoice %s with %d item(s) as %s", saved_id, len(rows), header["invoice_status"])
    return InvoiceSaveResult(id=saved_id, invoice_status=header["invoice_status"], item_count=len(rows))


def compute_last_order_dates(
    purchases: Sequence[Dict[str, Any]],
    items: Sequence[Dict[str, Any]],
) -> Dict[str, str]:
    """Map each catalog item to the latest date it was received."""

    dates_by_purchase: Dict[str, str] = {}
    for purchase in purchases:
        if purchase.get("invoice_status") and purchase["invoice_status"] not in LAST_ORDER_STATUSES:
            continue
        date = purchase.get("invoice_date") or purchase.get("created_at")
        if date:
            dates_by_purchase[str(purchase["id"])] = str(date)

    latest: Dict[str, str] = {}
    for item in items:
        catalog_id = str(item.get("catalog_item_id") or "")
        date = dates_by_purchase.get(str(item.get("purchase_history_id")))
        if not catalog_id or not date:
            continue
        if catalog_id not in latest or date > latest[catalog_id]:
            latest[catalog_id] = date
    return latest


async def last_order_dates_for(dao, location_id: Optional[str] = None) -> Dict[str, str]:
    purchases, items = await dao.fetch_received_purchases(location_id=location_id)
    return compute_last_order_dates(purchases, items)


__all__ = [
    "InvoiceSaveRequest",
    "InvoiceSaveResult",
    "build_purchase_rows",
    "compute_last_order_dates",
    "last_order_dates_for",
    "line_total_cost",
    "save_invoice",
    "stored_status",
    "validate_invoice",
]
