"""Invoice parsing, catalog matching and purchase history endpoints."""

from __future__ import annotations

from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile
from pydantic import BaseModel, Field

from restaurantiq.api.dependencies import get_current_user, get_inventory_dao
from restaurantiq.security.guards import (
    INVOICE_PARSE_LIMIT,
    INVOICE_PARSE_WINDOW_SECONDS,
    rate_limit_request,
)
from restaurantiq.services.auth_service import AuthenticatedUser
from restaurantiq.services.inventory_dao import SupabaseInventoryDAO
from restaurantiq.services.invoice_parser import (
    InvoiceItem,
    InvoiceParsingError,
    extract_invoice_text,
    match_invoice_items,
    parse_invoice_content,
)
from restaurantiq.services.purchase_history import (
    InvoiceSaveRequest,
    InvoiceSaveResult,
    last_order_dates_for,
    save_invoice,
)

router = APIRouter(prefix="/api/invoices", tags=["invoices"])

PARSE_SCOPE = "invoice-parse"


class ParseInvoiceRequest(BaseModel):
    content: Optional[str] = None
    file_type: Optional[str] = None


class MatchInvoiceRequest(BaseModel):
    items: List[Dict[str, Any]] = Field(default_factory=list)


async def _parse_or_raise(content: Optional[str], file_type: Optional[str]) -> Dict[str, Any]:
    try:
        return await parse_invoice_content(content, file_type)
    except InvoiceParsingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc


@router.post("/parse")
async def parse_invoice(
    payload: ParseInvoiceRequest,
    request: Request,
    _: AuthenticatedUser = Depends(get_current_user),
) -> Dict[str, Any]:
    rate_limit_request(
        request,
        scope=PARSE_SCOPE,
        limit=INVOICE_PARSE_LIMIT,
        window_seconds=INVOICE_PARSE_WINDOW_SECONDS,
    )
    return await _parse_or_raise(payload.content, payload.file_type)


@router.post("/parse-file")
async def parse_invoice_file(
    request: Request,
    file: UploadFile = File(...),
    _: AuthenticatedUser = Depends(get_current_user),
) -> Dict[str, Any]:
    rate_limit_request(
        request,
        scope=PARSE_SCOPE,
        limit=INVOICE_PARSE_LIMIT,
        window_seconds=INVOICE_PARSE_WINDOW_SECONDS,
    )
    data = await file.read()
    try:
        text, file_type = extract_invoice_text(file.filename or "", file.content_type, data)
    except InvoiceParsingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=str(exc)) from exc
    return await _parse_or_raise(text, file_type)


@router.post("/match", response_model=List[InvoiceItem])
async def match_invoice(
    payload: MatchInvoiceRequest,
    dao: SupabaseInventoryDAO = Depends(get_inventory_dao),
) -> List[InvoiceItem]:
    catalog = await dao.fetch_catalog_items()
    return match_invoice_items(payload.items, catalog)


@router.post("", response_model=InvoiceSaveResult, status_code=201)
async def create_invoice(
    payload: InvoiceSaveRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    dao: SupabaseInventoryDAO = Depends(get_inventory_dao),
) -> InvoiceSaveResult:
    return await save_invoice(dao, payload, user_id=user.id)


@router.put("/{purchase_id}", response_model=InvoiceSaveResult)
async def update_invoice(
    purchase_id: UUID,
    payload: InvoiceSaveRequest,
    user: AuthenticatedUser = Depends(get_current_user),
    dao: SupabaseInventoryDAO = Depends(get_inventory_dao),
) -> InvoiceSaveResult:
    return await save_invoice(dao, payload, user_id=user.id, purchase_id=purchase_id)


@router.get("/last-order-dates")
async def get_last_order_dates(
    location_id: Optional[str] = Query(default=None),
    dao: SupabaseInventoryDAO = Depends(get_inventory_dao),
) -> Dict[str, str]:
    return await last_order_dates_for(dao, location_id=location_id)
