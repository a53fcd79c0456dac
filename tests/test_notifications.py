import asyncio
import json
from datetime import datetime, timezone

import httpx
import pytest
from fastapi import HTTPException

from restaurantiq.config import email_client
from restaurantiq.services.notifications import (
    build_low_stock_notification,
    build_shrink_notifications,
    classify_alert_items,
    digest_is_due,
    filter_items_for_user,
    process_notifications,
    reminder_is_due,
    resolve_recipient_roles,
    session_name_for,
    utc_hour_for,
    wants_immediate_email,
)
from tests.fakes import FakeNotificationDAO

NOW = datetime(2026, 2, 16, 15, 2, tzinfo=timezone.utc)


def test_classify_alert_items_only_keeps_items_under_par() -> None:
    items = [
        {"item_name": "Chicken", "current_stock": 2, "par_level": 10},
        {"item_name": "Buns", "current_stock": 8, "par_level": 10},
        {"item_name": "Oil", "current_stock": 12, "par_level": 10},
        {"item_name": "Salt", "current_stock": 0, "par_level": 0},
    ]

    flagged = classify_alert_items(items)

    assert [(i["item_name"], i["risk"]) for i in flagged] == [
        ("Chicken", "RED"),
        ("Buns", "YELLOW"),
        ("Salt", "RED"),
    ]


def test_recipient_roles_and_user_filters() -> None:
    assert resolve_recipient_roles("ALL") == ("OWNER", "MANAGER", "STAFF")
    assert resolve_recipient_roles(None) == ("OWNER", "MANAGER")

    items = [{"item_name": "a", "risk": "RED"}, {"item_name": "b", "risk": "YELLOW"}]
    assert [i["item_name"] for i in filter_items_for_user(items, None)] == ["a"]
    assert [i["item_name"] for i in filter_items_for_user(items, {"low_stock_yellow": True})] == ["a", "b"]
    assert filter_items_for_user(items, {"low_stock_red": False}) == []

    assert wants_immediate_email(None)
    assert not wants_immediate_email({"channel_email": False})
    assert not wants_immediate_email({"email_digest_mode": "DAILY_DIGEST"})


def test_utc_hour_for_uses_fixed_offsets() -> None:
    assert utc_hour_for(21, "America/New_York") == 2
    assert utc_hour_for(8, "America/Chicago") == 14
    assert utc_hour_for(8, "Europe/Paris") == 13


def test_reminder_is_due_within_tolerance() -> None:
    reminder = {"time_of_day": "09:30", "timezone": "America/Chicago", "days_of_week": ["MON"]}

    assert reminder_is_due(reminder, datetime(2026, 2, 16, 15, 33, tzinfo=timezone.utc))
    assert not reminder_is_due(reminder, datetime(2026, 2, 16, 15, 35, tzinfo=timezone.utc))
    assert not reminder_is_due(reminder, datetime(2026, 2, 17, 15, 30, tzinfo=timezone.utc))


def test_digest_is_due_in_first_minutes_of_hour() -> None:
    preference = {"digest_hour": 7, "timezone": "America/Denver"}

    assert digest_is_due(preference, datetime(2026, 2, 16, 14, 4, tzinfo=timezone.utc))
    assert not digest_is_due(preference, datetime(2026, 2, 16, 14, 5, tzinfo=timezone.utc))
    assert not digest_is_due({"digest_hour": None}, NOW)


def test_session_name_for() -> None:
    assert session_name_for("Morning count", NOW) == "Morning count – Feb 16"


def test_low_stock_notification_summarizes_items() -> None:
    items = [{"item_name": f"Item {i}", "risk": "YELLOW"} for i in range(6)]

    row = build_low_stock_notification({"id": "r1", "name": "Bistro"}, "loc-1", "u1", items)

    assert row["title"] == "0 critical, 6 low stock items"
    assert row["message"].endswith("Item 4 and 1 more")
    assert row["severity"] == "WARNING"


def test_shrink_notifications_split_by_type() -> None:
    anomalies = [
        {"item_name": "Chicken", "usage": 8.0, "avg": 5.0, "type": "HIGH_USAGE"},
        {"item_name": "Wine", "usage": -3.0, "avg": 2.0, "type": "COUNT_VARIANCE"},
    ]

    high, variance = build_shrink_notifications({"id": "r1", "name": "Bistro"}, "u1", anomalies)

    assert high["title"] == "1 item with abnormal usage"
    assert high["message"] == "Bistro: Chicken (8 vs avg 5)"
    assert high["severity"] == "WARNING"
    assert variance["type"] == "COUNT_VARIANCE"
    assert variance["severity"] == "INFO"


def _scenario(dao_class=FakeNotificationDAO) -> FakeNotificationDAO:
    dao = dao_class()
    dao.restaurants = [{"id": "r1", "name": "Bistro"}]
    dao.approved_sessions["r1"] = [
        {"id": sid, "inventory_list_id": "L1", "location_id": "loc-1"} for sid in ("s4", "s3", "s2", "s1")
    ]
    for sid, stock in zip(("s1", "s2", "s3", "s4"), (20, 15, 10, 2)):
        dao.session_items.append({"session_id": sid, "item_name": "Chicken", "current_stock": stock, "par_level": 10})
    dao.session_items.append({"session_id": "s4", "item_name": "Buns", "current_stock": 8, "par_level": 10})
    dao.master_preferences["r1"] = {"recipients_mode": "OWNERS_MANAGERS", "alert_recipients": []}
    dao.members["r1"] = [
        {"user_id": "u-owner", "role": "OWNER"},
        {"user_id": "u-staff", "role": "STAFF"},
    ]
    dao.user_preferences[("r1", "u-owner")] = {"low_stock_red": True, "channel_email": True}
    dao.profiles = {
        "u-owner": {"email": "owner@example.com", "full_name": "Olive Owner"},
        "u-staff": {"email": "staff@example.com", "full_name": None},
    }
    dao.location_names["loc-1"] = "Downtown"
    dao.reminders = [
        {
            "id": "rem-1",
            "restaurant_id": "r1",
            "name": "Morning count",
            "time_of_day": "10:00",
            "timezone": "America/New_York",
            "days_of_week": ["MON", "WED"],
            "recipients_mode": "CUSTOM",
            "reminder_targets": [{"user_id": "u-staff"}],
            "restaurants": {"name": "Bistro"},
            "locations": {"name": "Downtown"},
            "inventory_list_id": "L1",
            "location_id": "loc-1",
            "auto_create_session": True,
        }
    ]
    dao.digest_preferences = [
        {"user_id": "u-owner", "restaurant_id": "r1", "digest_hour": 10, "timezone": "America/New_York"}
    ]
    dao.overdue_schedules = [
        {"id": "rem-2", "restaurant_id": "r1", "inventory_list_id": "L1", "lock_after_hours": 24}
    ]
    dao.stale_sessions = [{"id": "old-1", "name": "Old count", "created_at": "2026-02-14T08:00:00Z"}]
    return dao


@pytest.fixture
def outbox(monkeypatch):
    monkeypatch.setattr(email_client, "RESEND_API_KEY", "re_test")
    sent = []

    def handler(request: httpx.Request) -> httpx.Response:
        sent.append(json.loads(request.content))
        return httpx.Response(200, json={"id": f"email-{len(sent)}"})

    return sent, httpx.MockTransport(handler)


def test_process_notifications_runs_every_step(outbox) -> None:
    sent, transport = outbox
    dao = _scenario()

    result = asyncio.run(process_notifications(dao, now=NOW, transport=transport))

    assert result["success"] is True
    assert result["details"] == [
        "Sent alert email to owner@example.com for Bistro",
        "Sent reminder email to staff@example.com",
        "Auto-created session: Morning count – Feb 16",
        "Sent digest to owner@example.com",
        "Sent overdue notification for session: Old count",
        "Shrink check: 1 anomalies for Bistro",
    ]
    assert result["processed"] == 6
    assert [email["to"] for email in sent] == [
        ["owner@example.com"],
        ["staff@example.com"],
        ["owner@example.com"],
    ]

    by_type = {}
    for notification in dao.notifications:
        by_type.setdefault(notification["type"], []).append(notification)
    low_stock = by_type["LOW_STOCK"][0]
    assert low_stock["user_id"] == "u-owner"
    assert [item["item_name"] for item in low_stock["data"]["items"]] == ["Chicken"]
    assert low_stock["emailed_at"] == NOW.isoformat()
    assert [n["user_id"] for n in by_type["REMINDER"]] == ["u-staff"]
    assert by_type["SCHEDULE_OVERDUE"][0]["data"]["session_id"] == "old-1"
    assert by_type["SHRINK_ALERT"][0]["title"] == "1 item with abnormal usage"
    assert dao.created_sessions[0]["name"] == "Morning count – Feb 16"


def test_later_pass_the_same_day_sends_nothing_new(outbox) -> None:
    sent, transport = outbox
    dao = _scenario()
    asyncio.run(process_notifications(dao, now=NOW, transport=transport))
    notification_count = len(dao.notifications)

    later = NOW.replace(hour=18, minute=30)
    result = asyncio.run(process_notifications(dao, now=later, transport=transport))

    assert result["processed"] == 0
    assert len(dao.notifications) == notification_count
    assert len(sent) == 3


def test_failed_emails_do_not_stop_the_pass(monkeypatch) -> None:
    monkeypatch.setattr(email_client, "RESEND_API_KEY", None)
    dao = _scenario()

    result = asyncio.run(process_notifications(dao, now=NOW))

    assert result["details"] == [
        "Auto-created session: Morning count – Feb 16",
        "Sent overdue notification for session: Old count",
        "Shrink check: 1 anomalies for Bistro",
    ]
    assert {n["type"] for n in dao.notifications} == {"LOW_STOCK", "REMINDER", "SCHEDULE_OVERDUE", "SHRINK_ALERT"}
    assert not any(n.get("emailed_at") for n in dao.notifications)


def test_count_variance_alone_is_reported_once_a_day(outbox) -> None:
    _, transport = outbox
    dao = FakeNotificationDAO()
    dao.restaurants = [{"id": "r1", "name": "Bistro"}]
    dao.approved_sessions["r1"] = [{"id": sid, "inventory_list_id": "L1"} for sid in ("w3", "w2", "w1")]
    for sid, stock in zip(("w1", "w2", "w3"), (10, 8, 9)):
        dao.session_items.append({"session_id": sid, "item_name": "Wine", "current_stock": stock})
    dao.members["r1"] = [{"user_id": "u-owner", "role": "OWNER"}]

    asyncio.run(process_notifications(dao, now=NOW, transport=transport))
    later = asyncio.run(process_notifications(dao, now=NOW.replace(minute=12), transport=transport))

    assert [n["type"] for n in dao.notifications] == ["COUNT_VARIANCE"]
    assert later["processed"] == 0


def test_email_only_alerts_are_sent_once_a_day(outbox) -> None:
    sent, transport = outbox
    dao = _scenario()
    dao.user_preferences[("r1", "u-owner")] = {"low_stock_red": True, "channel_email": True, "channel_in_app": False}

    asyncio.run(process_notifications(dao, now=NOW, transport=transport))
    asyncio.run(process_notifications(dao, now=NOW.replace(minute=12), transport=transport))

    alerts = [email for email in sent if email["subject"].startswith("⚠️ Low Stock Alert")]
    assert len(alerts) == 1
    low_stock = [n for n in dao.notifications if n["type"] == "LOW_STOCK"]
    assert len(low_stock) == 1
    assert low_stock[0]["read_at"] == low_stock[0]["emailed_at"] == NOW.isoformat()


class _RemindersDownDAO(FakeNotificationDAO):
    async def fetch_enabled_reminders(self):
        raise HTTPException(status_code=503, detail="Supabase is unreachable.")


def test_failing_step_does_not_stop_the_pass(outbox) -> None:
    sent, transport = outbox
    dao = _scenario(_RemindersDownDAO)

    result = asyncio.run(process_notifications(dao, now=NOW, transport=transport))

    assert result["success"] is True
    assert result["details"] == [
        "Sent alert email to owner@example.com for Bistro",
        "Sent digest to owner@example.com",
        "Sent overdue notification for session: Old count",
        "Shrink check: 1 anomalies for Bistro",
    ]
    assert [email["to"] for email in sent] == [["owner@example.com"], ["owner@example.com"]]
