import asyncio
from uuid import uuid4

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from restaurantiq.api import dependencies
from restaurantiq.api.routes import invoices as invoices_routes
from restaurantiq.config import email_client
from restaurantiq.main import app
from restaurantiq.security.guards import reset_rate_limits
from restaurantiq.services.auth_service import AuthenticatedUser
from tests.fakes import FakeInventoryDAO, FakeNotificationDAO, FakePortfolioDAO, FakeStaffDAO

HEADERS = {"Authorization": "Bearer test-token"}


@pytest.fixture(name="fake_dao")
def fake_dao_fixture() -> FakeInventoryDAO:
    dao = FakeInventoryDAO()
    dao.approved_sessions = [
        {"id": "s2", "approved_at": "2024-01-08T00:00:00Z"},
        {"id": "s1", "approved_at": "2024-01-01T00:00:00Z"},
    ]
    dao.session_items = [
        {"session_id": "s1", "item_name": "Rice", "current_stock": 10, "par_level": 8},
        {"session_id": "s2", "item_name": "Rice", "current_stock": 3, "par_level": 8},
    ]
    dao.catalog = [{"id": "c1", "item_name": "Jasmine Rice", "vendor_sku": "R-1", "brand_name": "Lotus"}]
    return dao


@pytest.fixture(name="api_client")
def client_fixture(fake_dao: FakeInventoryDAO):
    user = AuthenticatedUser(id="user-1", access_token="test-token", email="chef@example.com")

    async def override_user():
        return user

    async def override_dao():
        return fake_dao

    app.dependency_overrides[dependencies.get_current_user] = override_user
    app.dependency_overrides[dependencies.get_inventory_dao] = override_dao
    reset_rate_limits()

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
    reset_rate_limits()


def test_health(api_client: TestClient) -> None:
    assert api_client.get("/health").json() == {"status": "ok"}


def test_restaurant_header_is_required() -> None:
    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(dependencies.get_current_restaurant_id(None))
    assert excinfo.value.status_code == 401

    with pytest.raises(HTTPException) as excinfo:
        asyncio.run(dependencies.get_current_restaurant_id("not-a-uuid"))
    assert excinfo.value.status_code == 400


def test_usage_endpoint(api_client: TestClient) -> None:
    response = api_client.get("/api/inventory/usage", headers=HEADERS)

    assert response.status_code == 200
    payload = response.json()
    assert payload[0]["item_name"] == "Rice"
    assert payload[0]["weekly_usage"] == pytest.approx(7)


def test_par_recommendations_need_three_sessions(api_client: TestClient) -> None:
    response = api_client.get("/api/inventory/par-recommendations", headers=HEADERS)

    assert response.status_code == 200
    assert response.json() == []


def test_approve_then_fetch_smart_order_run(api_client: TestClient, fake_dao: FakeInventoryDAO) -> None:
    session_id = uuid4()
    fake_dao.sessions[str(session_id)] = {"id": str(session_id), "status": "IN_REVIEW", "inventory_list_id": "L1"}
    fake_dao.session_items.append(
        {"session_id": str(session_id), "item_name": "Chicken", "current_stock": 1, "par_level": 6, "unit": "CS"}
    )

    response = api_client.post(f"/api/inventory/sessions/{session_id}/approve", headers=HEADERS)

    assert response.status_code == 200
    approval = response.json()
    assert approval["status"] == "APPROVED"
    assert approval["red_count"] == 1

    run = api_client.get(f"/api/smart-orders/{approval['smart_order_run_id']}", headers=HEADERS)
    assert run.status_code == 200
    body = run.json()
    assert body["session_id"] == str(session_id)
    assert body["lines"][0]["suggested_order"] == 5
    assert body["summary"]["red_count"] == 1

    again = api_client.post(f"/api/inventory/sessions/{session_id}/approve", headers=HEADERS)
    assert again.status_code == 400


def test_reject_unknown_session(api_client: TestClient) -> None:
    response = api_client.post(f"/api/inventory/sessions/{uuid4()}/reject", headers=HEADERS)

    assert response.status_code == 404
    assert response.json()["detail"] == "Inventory session not found."


def test_usage_anomalies_endpoint(api_client: TestClient, fake_dao: FakeInventoryDAO) -> None:
    fake_dao.approved_sessions = [{"id": sid, "approved_at": None} for sid in ("w3", "w2", "w1")]
    fake_dao.session_items = [
        {"session_id": sid, "item_name": "Wine", "current_stock": stock}
        for sid, stock in (("w1", 10), ("w2", 8), ("w3", 9))
    ]

    response = api_client.get("/api/inventory/anomalies", headers=HEADERS)

    assert response.status_code == 200
    assert response.json() == [{"item_name": "Wine", "usage": -1.0, "avg": 2.0, "type": "COUNT_VARIANCE"}]


def test_usage_anomalies_need_two_sessions(api_client: TestClient, fake_dao: FakeInventoryDAO) -> None:
    fake_dao.approved_sessions = fake_dao.approved_sessions[:1]

    assert api_client.get("/api/inventory/anomalies", headers=HEADERS).json() == []


def test_smart_order_preview(api_client: TestClient) -> None:
    response = api_client.post(
        "/api/smart-orders/preview",
        json={
            "items": [
                {"item_name": "Chicken", "current_stock": 2, "par_level": 10, "unit": "CS", "unit_cost": 40},
                {"item_name": "Salt", "current_stock": 1},
            ],
            "par_map": {"Chicken": 12},
        },
        headers=HEADERS,
    )

    assert response.status_code == 200
    payload = response.json()
    assert [line["suggested_order"] for line in payload["lines"]] == [10, 0]
    assert payload["summary"]["estimated_cost"] == 400
    assert [line["item_name"] for line in payload["summary"]["no_par_items"]] == ["Salt"]


def test_missing_smart_order_run(api_client: TestClient) -> None:
    response = api_client.get(f"/api/smart-orders/{uuid4()}", headers=HEADERS)

    assert response.status_code == 404
    assert response.json()["detail"] == "Smart order run not found."


def test_match_and_save_invoice(api_client: TestClient, fake_dao: FakeInventoryDAO) -> None:
    matched = api_client.post(
        "/api/invoices/match",
        json={"items": [{"product_number": "r-1", "item_name": "RICE JASMINE 25LB", "quantity": 2, "unit_cost": 30}]},
        headers=HEADERS,
    )
    assert matched.status_code == 200
    items = matched.json()
    assert items[0]["match_status"] == "MATCHED"
    assert items[0]["catalog_item_id"] == "c1"

    created = api_client.post(
        "/api/invoices",
        json={"vendor_name": "Sysco", "status": "POSTED", "items": items},
        headers=HEADERS,
    )
    assert created.status_code == 201
    assert created.json()["invoice_status"] == "COMPLETE"
    _, header, rows = fake_dao.saved_purchases[0]
    assert header["created_by"] == "user-1"
    assert rows[0]["brand_name"] == "Lotus"
    assert rows[0]["total_cost"] == 60


def test_posting_unmatched_invoice_is_rejected(api_client: TestClient) -> None:
    response = api_client.post(
        "/api/invoices",
        json={"vendor_name": "Sysco", "status": "POSTED", "items": [{"item_name": "Mystery", "quantity": 1}]},
        headers=HEADERS,
    )

    assert response.status_code == 400
    assert response.json()["detail"] == "1 unmatched item(s) must be matched before posting."


def test_last_order_dates(api_client: TestClient, fake_dao: FakeInventoryDAO) -> None:
    fake_dao.received_purchases = (
        [{"id": "p1", "invoice_status": "RECEIVED", "invoice_date": "2024-01-05"}],
        [{"purchase_history_id": "p1", "catalog_item_id": "c1"}],
    )

    response = api_client.get("/api/invoices/last-order-dates", headers=HEADERS)

    assert response.json() == {"c1": "2024-01-05"}


def test_invoice_parse_is_rate_limited(api_client: TestClient, monkeypatch) -> None:
    monkeypatch.setattr(invoices_routes, "INVOICE_PARSE_LIMIT", 1)

    first = api_client.post("/api/invoices/parse", json={"content": ""}, headers=HEADERS)
    second = api_client.post("/api/invoices/parse", json={"content": ""}, headers=HEADERS)

    assert first.status_code == 400
    assert first.json()["detail"] == "No content provided"
    assert second.status_code == 429
    assert second.headers["retry-after"]


def test_parse_file_rejects_unsupported_upload(api_client: TestClient) -> None:
    response = api_client.post(
        "/api/invoices/parse-file",
        files={"file": ("invoice.xlsx", b"PK\x03\x04", "application/vnd.ms-excel")},
        headers=HEADERS,
    )

    assert response.status_code == 422


def test_vendor_invoice_endpoints(api_client: TestClient) -> None:
    missing = api_client.post("/api/vendors/invoices", json={}, headers=HEADERS)
    assert missing.status_code == 400
    assert missing.json()["detail"] == "vendor_name is required"

    listed = api_client.post(
        "/api/vendors/invoices",
        json={"vendor_name": "PFG", "date_range_days": 3650},
        headers=HEADERS,
    )
    assert listed.json()["is_mock"] is True
    assert [invoice["invoice_number"] for invoice in listed.json()["invoices"]] == ["PFG-110455", "PFG-110401"]

    details = api_client.post("/api/vendors/invoice-details", json={"invoice_number": "PFG-110455"}, headers=HEADERS)
    assert details.json()["items"][0]["item_name"] == "Cooking Oil Blend"

    unknown = api_client.post("/api/vendors/invoice-details", json={"invoice_number": "X"}, headers=HEADERS)
    assert unknown.status_code == 404


def test_email_relay_requires_service_role(api_client: TestClient) -> None:
    response = api_client.post(
        "/api/email/send",
        json={"to": "a@example.com", "subject": "s", "html": "<p></p>"},
        headers={"Authorization": "Bearer not-the-service-key"},
    )

    assert response.status_code == 401


def test_portfolio_dashboard(api_client: TestClient) -> None:
    portfolio_dao = FakePortfolioDAO()
    portfolio_dao.memberships = [{"restaurant_id": "r1", "role": "OWNER", "restaurants": {"id": "r1", "name": "Bistro"}}]

    async def override_portfolio_dao():
        return portfolio_dao

    app.dependency_overrides[dependencies.get_portfolio_dao] = override_portfolio_dao

    response = api_client.get("/api/portfolio/dashboard", headers=HEADERS)

    assert response.status_code == 200
    payload = response.json()
    assert payload["restaurants"][0]["name"] == "Bistro"
    assert payload["totals"]["spend_month"] == 0


def test_staff_invitation_requires_owner(api_client: TestClient, monkeypatch) -> None:
    monkeypatch.setattr(email_client, "RESEND_API_KEY", "re_test")
    staff_dao = FakeStaffDAO()
    staff_dao.roles[("r1", "user-1")] = "STAFF"

    async def override_staff_dao():
        return staff_dao

    app.dependency_overrides[dependencies.get_staff_dao] = override_staff_dao

    response = api_client.post(
        "/api/staff/invitations",
        json={"email": "new@example.com", "role": "STAFF", "restaurant_id": "r1"},
        headers=HEADERS,
    )

    assert response.status_code == 403
    assert response.json()["detail"] == "Only restaurant owners can send invitations"


def test_notification_pass_requires_service_role(api_client: TestClient) -> None:
    response = api_client.post("/api/notifications/process", headers={"Authorization": "Bearer nope"})

    assert response.status_code == 401


def test_notification_pass_with_nothing_to_do(api_client: TestClient) -> None:
    async def override_notification_dao():
        return FakeNotificationDAO()

    app.dependency_overrides[dependencies.get_notification_dao] = override_notification_dao

    response = api_client.post("/api/notifications/process")

    assert response.json() == {"success": True, "processed": 0, "details": []}
