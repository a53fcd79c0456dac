from datetime import datetime, timezone

from restaurantiq.services.vendor_import import get_vendor_invoice_details, list_vendor_invoices

NOW = datetime(2026, 2, 20, tzinfo=timezone.utc)


def test_list_vendor_invoices_filters_by_date_range() -> None:
    assert len(list_vendor_invoices("Sysco", now=NOW)) == 3

    recent = list_vendor_invoices("Sysco", 7, now=NOW)
    assert [invoice["invoice_number"] for invoice in recent] == ["SYS-2026-44821", "SYS-2026-44790"]


def test_unknown_vendor_falls_back_to_sysco() -> None:
    invoices = list_vendor_invoices("Local Farm", now=NOW)

    assert {invoice["vendor_name"] for invoice in invoices} == {"Sysco"}


def test_invoice_details_include_line_totals() -> None:
    details = get_vendor_invoice_details("USF-88321")

    assert details["vendor_name"] == "US Foods"
    vodka = details["items"][0]
    assert vodka["line_total"] == 132.0
    assert get_vendor_invoice_details("NOPE") is None


def test_invoice_details_are_copies() -> None:
    details = get_vendor_invoice_details("PFG-110455")
    details["items"][0]["quantity"] = 99

    assert get_vendor_invoice_details("PFG-110455")["items"][0]["quantity"] == 4
