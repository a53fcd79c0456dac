"""Invoice parsing through the AI chat-completion gateway and catalog matching."""

from __future__ import annotations

import asyncio
import io
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional, Sequence

from openai import APIError, APIStatusError, RateLimitError
from pydantic import BaseModel
from pypdf import PdfReader

from restaurantiq.config import openai_client

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 8 * 1024 * 1024
MAX_INVOICE_TEXT_CHARS = 30000
TEXT_EXTENSIONS = {".csv": "csv", ".txt": "text", ".tsv": "csv"}

MatchStatus = Literal["MATCHED", "UNMATCHED", "MANUAL"]

SYSTEM_PROMPT = """You are an invoice parser for a restaurant inventory system. Extract line items from the provided invoice text/CSV content.

For each line item, extract:
- product_number: The vendor's product/item number or SKU
- item_name: The name/description of the item
- quantity: The quantity shipped/ordered (number)
- unit_cost: The unit price (number, no currency symbols)
- line_total: The line total cost (number, no currency symbols)
- unit: The unit of measure if mentioned (e.g., CS, EA, LB, GAL)
- pack_size: Pack size if mentioned (e.g., "6/10#", "4/1GAL")

Also extract header info:
- vendor_name: The vendor/supplier name
- invoice_number: The invoice number
- invoice_date: The invoice date (YYYY-MM-DD format)

Be precise with numbers. If a field is not found, use null."""

EXTRACT_INVOICE_TOOL: Dict[str, Any] = {
    "type": "function",
    "function": {
        "name": "extract_invoice",
        "description": "Extract structured invoice data with header info and line items",
        "parameters": {
            "type": "object",
            "properties": {
                "vendor_name": {"type": "string", "description": "Vendor/supplier name"},
                "invoice_number": {"type": "string", "description": "Invoice number"},
                "invoice_date": {"type": "string", "description": "Invoice date in YYYY-MM-DD format"},
                "items": {
                    "type": "array",
                    "items": {
                        "type": "object",
                        "properties": {
                            "product_number": {"type": "string"},
                            "item_name": {"type": "string"},
                            "quantity": {"type": "number"},
                            "unit_cost": {"type": "number"},
                            "line_total": {"type": "number"},
                            "unit": {"type": "string"},
                            "pack_size": {"type": "string"},
                        },
                        "required": ["item_name", "quantity"],
                    },
                },
            },
            "required": ["items"],
        },
    },
}


class InvoiceParsingError(RuntimeError):
    """Raised when an invoice cannot be turned into structured data."""

    def __init__(self, message: str, *, status_code: int = 500):
        super().__init__(message)
        self.status_code = status_code


class InvoiceUploadError(InvoiceParsingError):
    """Raised when an uploaded invoice file cannot be read."""

    def __init__(self, message: str):
        super().__init__(message, status_code=422)


class InvoiceItem(BaseModel):
    product_number: Optional[str] = None
    item_name: str
    quantity: float
    unit_cost: Optional[float] = None
    line_total: Optional[float] = None
    unit: Optional[str] = None
    pack_size: Optional[str] = None
    brand_name: Optional[str] = None
    catalog_item_id: Optional[str] = None
    match_status: MatchStatus = "UNMATCHED"
    catalog_match_name: Optional[str] = None


async def parse_invoice_content(content: Optional[str], file_type: Optional[str] = None) -> Dict[str, Any]:
    """Ask the gateway to extract header and line items from invoice text."""

    if not content:
        raise InvoiceParsingError("No content provided", status_code=400)

    client = openai_client.get_ai_client()
    if client is None:
        raise InvoiceParsingError("AI gateway not configured", status_code=500)

    try:
        completion = await asyncio.to_thread(
            client.chat.completions.create,
            model=openai_client.INVOICE_PARSER_MODEL,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": (
                        f"Parse this {file_type or 'invoice'} content and extract all line items:\n\n{content}"
                    ),
                },
            ],
            tools=[EXTRACT_INVOICE_TOOL],
            tool_choice={"type": "function", "function": {"name": "extract_invoice"}},
        )
    except RateLimitError as exc:
        raise InvoiceParsingError("Rate limit exceeded. Please try again shortly.", status_code=429) from exc
    except APIStatusError as exc:
        if exc.status_code == 402:
            raise InvoiceParsingError("AI credits exhausted. Please add credits.", status_code=402) from exc
        logger.error("AI gateway error (%s): %s", exc.status_code, exc.message)
        raise InvoiceParsingError("AI parsing failed") from exc
    except APIError as exc:
        logger.error("AI gateway error: %s", exc)
        raise InvoiceParsingError("AI parsing failed") from exc

    arguments = _tool_call_arguments(completion)
    if not arguments:
        raise InvoiceParsingError("AI could not parse invoice", status_code=422)

    try:
        parsed = json.loads(arguments)
    except json.JSONDecodeError as exc:
        logger.warning("Invoice tool arguments are not JSON: %s", arguments[:280])
        raise InvoiceParsingError("AI could not parse invoice", status_code=422) from exc
    if not isinstance(parsed, dict):
        raise InvoiceParsingError("AI could not parse invoice", status_code=422)
    return parsed


def _tool_call_arguments(completion: Any) -> Optional[str]:
    choices = getattr(completion, "choices", None) or []
    if not choices:
        return None
    message = getattr(choices[0], "message", None)
    tool_calls = getattr(message, "tool_calls", None) or []
    if not tool_calls:
        return None
    function = getattr(tool_calls[0], "function", None)
    return getattr(function, "arguments", None) or None


def extract_invoice_text(filename: str, content_type: Optional[str], data: bytes) -> tuple[str, str]:
    """Return ``(text, file_type)`` for an uploaded PDF, CSV or text invoice."""

    if not data:
        raise InvoiceUploadError("The uploaded file is empty.")
    if len(data) > MAX_UPLOAD_BYTES:
        raise InvoiceUploadError("The uploaded file exceeds the 8 MB limit.")

    extension = Path(filename or "").suffix.lower()
    mime = (content_type or "").lower()

    if extension == ".pdf" or mime == "application/pdf":
        text = _extract_pdf_text(data)
        if not text.strip():
            raise InvoiceUploadError("Could not read any text from the PDF.")
        return text, "pdf"

    if extension in TEXT_EXTENSIONS or mime.startswith("text/"):
        try:
            text = data.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise InvoiceUploadError("The uploaded file is not UTF-8 text.") from exc
        file_type = TEXT_EXTENSIONS.get(extension) or ("csv" if "csv" in mime else "text")
        return text[:MAX_INVOICE_TEXT_CHARS], file_type

    raise InvoiceUploadError("Unsupported file type. Upload a PDF, CSV or TXT invoice.")


def _extract_pdf_text(data: bytes) -> str:
    try:
        reader = PdfReader(io.BytesIO(data))
    except Exception as exc:  # pragma: no cover - parsing depends on uploaded PDF
        raise InvoiceUploadError("Could not open the PDF: corrupted or encrypted file.") from exc

    pages = []
    for page in reader.pages:
        try:
            pages.append(page.extract_text() or "")
        except Exception:  # pragma: no cover - best effort per page
            logger.debug("Skipping unreadable PDF page", exc_info=True)
            continue
    return "\n".join(pages)[:MAX_INVOICE_TEXT_CHARS]


def _compact_name(value: Any) -> str:
    return re.sub(r"[^a-z0-9]", "", str(value or "").lower())


def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def match_invoice_items(
    raw_items: Sequence[Dict[str, Any]],
    catalog_items: Sequence[Dict[str, Any]],
) -> List[InvoiceItem]:
    """Attach catalog items to parsed invoice lines by SKU, then by name."""

    matched: List[InvoiceItem] = []
    for raw in raw_items:
        item = InvoiceItem(
            product_number=raw.get("product_number") or None,
            item_name=raw.get("item_name") or "",
            quantity=_optional_float(raw.get("quantity")) or 0,
            unit_cost=_optional_float(raw.get("unit_cost")),
            line_total=_optional_float(raw.get("line_total")),
            unit=raw.get("unit") or None,
            pack_size=raw.get("pack_size") or None,
        )

        match = None
        if item.product_number:
            sku = item.product_number.lower()
            match = next(
                (c for c in catalog_items if c.get("vendor_sku") and str(c["vendor_sku"]).lower() == sku),
                None,
            )

        normalized = _compact_name(item.item_name)
        if match is None and normalized:
            for candidate in catalog_items:
                catalog_name = _compact_name(candidate.get("item_name"))
                if not catalog_name:
                    continue
                if catalog_name == normalized or normalized in catalog_name or catalog_name in normalized:
                    match = candidate
                    break

        if match is not None:
            item.catalog_item_id = str(match.get("id"))
            item.match_status = "MATCHED"
            item.catalog_match_name = match.get("item_name")
        matched.append(item)

    return matched


__all__ = [
    "InvoiceItem",
    "InvoiceParsingError",
    "InvoiceUploadError",
    "extract_invoice_text",
    "match_invoice_items",
    "parse_invoice_content",
]
