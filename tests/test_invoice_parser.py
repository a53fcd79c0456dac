import asyncio
import io
import json
from types import SimpleNamespace

import httpx
import pytest
from openai import APIStatusError, RateLimitError
from pypdf import PdfWriter

from restaurantiq.config import openai_client
from restaurantiq.services.invoice_parser import (
    InvoiceParsingError,
    InvoiceUploadError,
    extract_invoice_text,
    match_invoice_items,
    parse_invoice_content,
)

GATEWAY_REQUEST = httpx.Request("POST", "https://gateway.test/v1/chat/completions")


def _completion(arguments):
    tool_calls = []
    if arguments is not None:
        tool_calls = [SimpleNamespace(function=SimpleNamespace(name="extract_invoice", arguments=arguments))]
    message = SimpleNamespace(content=None, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _install_client(monkeypatch, create):
    calls = []

    def _create(**kwargs):
        calls.append(kwargs)
        return create()

    client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=_create)))
    monkeypatch.setattr(openai_client, "get_ai_client", lambda: client)
    return calls


def _raise(exc):
    def _create():
        raise exc

    return _create


def test_parse_invoice_content_returns_tool_arguments(monkeypatch) -> None:
    payload = {
        "vendor_name": "Sysco",
        "invoice_number": "INV-1",
        "items": [{"item_name": "Chicken Breast", "quantity": 4}],
    }
    calls = _install_client(monkeypatch, lambda: _completion(json.dumps(payload)))

    parsed = asyncio.run(parse_invoice_content("Chicken Breast,4", "csv"))

    assert parsed == payload
    request = calls[0]
    assert request["tool_choice"]["function"]["name"] == "extract_invoice"
    assert request["messages"][1]["content"].startswith("Parse this csv content")


def test_parse_invoice_content_requires_content_and_client(monkeypatch) -> None:
    with pytest.raises(InvoiceParsingError) as excinfo:
        asyncio.run(parse_invoice_content(""))
    assert excinfo.value.status_code == 400

    monkeypatch.setattr(openai_client, "get_ai_client", lambda: None)
    with pytest.raises(InvoiceParsingError) as excinfo:
        asyncio.run(parse_invoice_content("line"))
    assert excinfo.value.status_code == 500
    assert str(excinfo.value) == "AI gateway not configured"


def test_parse_invoice_content_maps_gateway_errors(monkeypatch) -> None:
    rate_limited = RateLimitError(
        "slow down",
        response=httpx.Response(429, request=GATEWAY_REQUEST),
        body=None,
    )
    _install_client(monkeypatch, _raise(rate_limited))
    with pytest.raises(InvoiceParsingError) as excinfo:
        asyncio.run(parse_invoice_content("line"))
    assert excinfo.value.status_code == 429

    no_credits = APIStatusError(
        "payment required",
        response=httpx.Response(402, request=GATEWAY_REQUEST),
        body=None,
    )
    _install_client(monkeypatch, _raise(no_credits))
    with pytest.raises(InvoiceParsingError) as excinfo:
        asyncio.run(parse_invoice_content("line"))
    assert excinfo.value.status_code == 402

    broken = APIStatusError(
        "bad gateway",
        response=httpx.Response(502, request=GATEWAY_REQUEST),
        body=None,
    )
    _install_client(monkeypatch, _raise(broken))
    with pytest.raises(InvoiceParsingError) as excinfo:
        asyncio.run(parse_invoice_content("line"))
    assert excinfo.value.status_code == 500
    assert str(excinfo.value) == "AI parsing failed"


@pytest.mark.parametrize("status_code", [429, 402])
def test_gateway_refusals_reach_the_gateway_once(monkeypatch, status_code) -> None:
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request.url.path)
        return httpx.Response(status_code, json={"error": {"message": "no"}})

    client = openai_client.build_ai_client(
        "sk-test",
        "https://gateway.test/v1",
        http_client=httpx.Client(transport=httpx.MockTransport(handler)),
    )
    monkeypatch.setattr(openai_client, "get_ai_client", lambda: client)

    with pytest.raises(InvoiceParsingError) as excinfo:
        asyncio.run(parse_invoice_content("line"))

    assert excinfo.value.status_code == status_code
    assert calls == ["/v1/chat/completions"]


@pytest.mark.parametrize("arguments", [None, "not json", "[1, 2]"])
def test_parse_invoice_content_rejects_unusable_tool_output(monkeypatch, arguments) -> None:
    _install_client(monkeypatch, lambda: _completion(arguments))

    with pytest.raises(InvoiceParsingError) as excinfo:
        asyncio.run(parse_invoice_content("line"))

    assert excinfo.value.status_code == 422
    assert str(excinfo.value) == "AI could not parse invoice"


def test_extract_invoice_text_reads_csv_and_strips_bom() -> None:
    text, file_type = extract_invoice_text("invoice.csv", "text/csv", b"\xef\xbb\xbfitem,qty\nRice,2\n")

    assert file_type == "csv"
    assert text.startswith("item,qty")


def test_extract_invoice_text_rejects_bad_uploads() -> None:
    with pytest.raises(InvoiceUploadError):
        extract_invoice_text("invoice.csv", "text/csv", b"")

    with pytest.raises(InvoiceUploadError) as excinfo:
        extract_invoice_text("invoice.xlsx", "application/vnd.ms-excel", b"PK\x03\x04")
    assert excinfo.value.status_code == 422


def test_extract_invoice_text_rejects_pdf_without_text() -> None:
    writer = PdfWriter()
    writer.add_blank_page(width=612, height=792)
    buffer = io.BytesIO()
    writer.write(buffer)

    with pytest.raises(InvoiceUploadError, match="Could not read any text"):
        extract_invoice_text("scan.pdf", "application/pdf", buffer.getvalue())


def test_match_invoice_items_by_sku_then_name() -> None:
    catalog = [
        {"id": "c1", "item_name": "Chicken Breast", "vendor_sku": "SY-100"},
        {"id": "c2", "item_name": "Roma Tomatoes", "vendor_sku": None},
        {"id": "c3", "item_name": "", "vendor_sku": None},
    ]
    raw = [
        {"product_number": "sy-100", "item_name": "CHKN BRST", "quantity": "4", "unit_cost": 32.5},
        {"item_name": "Tomatoes, Roma", "quantity": 2},
        {"item_name": "roma tomatoes 25lb", "quantity": 1},
        {"item_name": "Olive Oil", "quantity": 3},
        {"item_name": "", "quantity": 1},
    ]

    items = match_invoice_items(raw, catalog)

    assert [(i.match_status, i.catalog_item_id) for i in items] == [
        ("MATCHED", "c1"),
        ("UNMATCHED", None),
        ("MATCHED", "c2"),
        ("UNMATCHED", None),
        ("UNMATCHED", None),
    ]
    assert items[0].quantity == 4
    assert items[0].catalog_match_name == "Chicken Breast"
