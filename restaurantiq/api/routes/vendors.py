"""Vendor invoice import endpoints."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from restaurantiq.api.dependencies import get_current_user
from restaurantiq.services.auth_service import AuthenticatedUser
from restaurantiq.services.vendor_import import get_vendor_invoice_details, list_vendor_invoices

router = APIRouter(prefix="/api/vendors", tags=["vendors"])


class VendorInvoicesRequest(BaseModel):
    vendor_name: Optional[str] = None
    integration_id: Optional[str] = None
    date_range_days: Optional[int] = None


class InvoiceDetailsRequest(BaseModel):
    invoice_number: Optional[str] = None


@router.post("/invoices")
async def import_vendor_invoices(
    payload: VendorInvoicesRequest,
    _: AuthenticatedUser = Depends(get_current_user),
) -> Dict[str, Any]:
    if not payload.vendor_name:
        raise HTTPException(status_code=400, detail="vendor_name is required")
    # integration_id selects real vendor credentials once live integrations exist.
    invoices = list_vendor_invoices(payload.vendor_name, payload.date_range_days)
    return {"invoices": invoices, "is_mock": True}


@router.post("/invoice-details")
async def import_vendor_invoice_details(
    payload: InvoiceDetailsRequest,
    _: AuthenticatedUser = Depends(get_current_user),
) -> Dict[str, Any]:
    if not payload.invoice_number:
        raise HTTPException(status_code=400, detail="invoice_number is required")
    details = get_vendor_invoice_details(payload.invoice_number)
    if details is None:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return {**details, "is_mock": True}
