"""Scheduled notification pass: low stock, reminders, digests, overdue counts, shrink.

One call to :func:`process_notifications` runs every step once against the
service-role Supabase client. Each step is idempotent for the current UTC day,
so the pass can be triggered every few minutes by an external scheduler.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple, TypeVar, Union

import httpx
from supabase import Client

from restaurantiq.services import email_service
from restaurantiq.services.postgrest_client import run_postgrest
from restaurantiq.services.usage_analytics import SHRINK_SESSION_COUNT, chronological_ids, detect_usage_anomalies

logger = logging.getLogger(__name__)
T = TypeVar("T")

TZ_OFFSETS = {
    "America/New_York": -5,
    "America/Chicago": -6,
    "America/Denver": -7,
    "America/Los_Angeles": -8,
}
DEFAULT_TZ_OFFSET = -5
DAY_CODES = ("MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN")
REMINDER_MINUTE_TOLERANCE = 4
DIGEST_MINUTE_WINDOW = 4
DEFAULT_REMINDER_TIME = "21:00"

MANAGER_ROLES = ("OWNER", "MANAGER")
ALL_ROLES = ("OWNER", "MANAGER", "STAFF")
SHRINK_TYPES = ("SHRINK_ALERT", "COUNT_VARIANCE")


# Pure helpers


def classify_alert_items(items: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Items under PAR, tagged RED below half of PAR and YELLOW otherwise."""

    flagged = []
    for item in items:
        stock = float(item.get("current_stock") or 0)
        ratio = stock / max(float(item.get("par_level") or 0), 1)
        if ratio < 1:
            flagged.append({**item, "risk": "RED" if ratio < 0.5 else "YELLOW"})
    return flagged


def resolve_recipient_roles(recipients_mode: Optional[str]) -> Tuple[str, ...]:
    return ALL_ROLES if recipients_mode == "ALL" else MANAGER_ROLES


def filter_items_for_user(items: Sequence[Dict[str, Any]], preference: Optional[Dict[str, Any]]) -> List[Dict[str, Any]]:
    preference = preference or {}
    alert_red = preference.get("low_stock_red")
    alert_yellow = preference.get("low_stock_yellow")
    alert_red = True if alert_red is None else alert_red
    alert_yellow = False if alert_yellow is None else alert_yellow
    return [
        item
        for item in items
        if (item["risk"] == "RED" and alert_red) or (item["risk"] == "YELLOW" and alert_yellow)
    ]


def wants_immediate_email(preference: Optional[Dict[str, Any]]) -> bool:
    preference = preference or {}
    return preference.get("channel_email") is not False and (
        preference.get("email_digest_mode") or "IMMEDIATE"
    ) == "IMMEDIATE"


def utc_hour_for(local_hour: int, timezone_name: Optional[str]) -> int:
    """Convert a local hour to UTC with a fixed offset table (no DST)."""

    offset = TZ_OFFSETS.get(timezone_name or "", DEFAULT_TZ_OFFSET)
    return (int(local_hour) - offset + 24) % 24


def day_code(now: datetime) -> str:
    return DAY_CODES[now.weekday()]


def reminder_is_due(reminder: Dict[str, Any], now: datetime) -> bool:
    hour_text, _, minute_text = (reminder.get("time_of_day") or DEFAULT_REMINDER_TIME).partition(":")
    target_hour = int(hour_text)
    target_minute = int(minute_text[:2] or 0)
    if now.hour != utc_hour_for(target_hour, reminder.get("timezone")):
        return False
    if abs(now.minute - target_minute) > REMINDER_MINUTE_TOLERANCE:
        return False
    return day_code(now) in (reminder.get("days_of_week") or [])


def digest_is_due(preference: Dict[str, Any], now: datetime) -> bool:
    if preference.get("digest_hour") is None:
        return False
    return (
        now.hour == utc_hour_for(preference["digest_hour"], preference.get("timezone"))
        and now.minute <= DIGEST_MINUTE_WINDOW
    )


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def session_name_for(reminder_name: str, now: datetime) -> str:
    return f"{reminder_name} – {now.strftime('%b')} {now.day}"


def build_low_stock_notification(
    restaurant: Dict[str, Any],
    location_id: Optional[str],
    user_id: str,
    items: Sequence[Dict[str, Any]],
) -> Dict[str, Any]:
    red = sum(1 for item in items if item["risk"] == "RED")
    yellow = sum(1 for item in items if item["risk"] == "YELLOW")
    names = ", ".join(item["item_name"] for item in items[:5])
    more = f" and {len(items) - 5} more" if len(items) > 5 else ""
    return {
        "restaurant_id": restaurant["id"],
        "location_id": location_id,
        "user_id": user_id,
        "type": "LOW_STOCK",
        "title": f"{red} critical, {yellow} low stock items",
        "message": f"{restaurant.get('name')}: {names}{more}",
        "severity": "CRITICAL" if red > 0 else "WARNING",
        "data": {
            "items": [
                {
                    "item_name": item["item_name"],
                    "current_stock": item.get("current_stock"),
                    "par_level": item.get("par_level"),
                    "risk": item["risk"],
                }
                for item in items
            ]
        },
    }


def build_shrink_notifications(
    restaurant: Dict[str, Any],
    user_id: str,
    anomalies: Sequence[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    high_usage = [a for a in anomalies if a["type"] == "HIGH_USAGE"]
    variance = [a for a in anomalies if a["type"] == "COUNT_VARIANCE"]
    rows = []
    if high_usage:
        plural = "s" if len(high_usage) > 1 else ""
        details = ", ".join(
            f"{a['item_name']} ({a['usage']:.0f} vs avg {a['avg']:.0f})" for a in high_usage[:3]
        )
        rows.append(
            {
                "restaurant_id": restaurant["id"],
                "user_id": user_id,
                "type": "SHRINK_ALERT",
                "title": f"{len(high_usage)} item{plural} with abnormal usage",
                "message": f"{restaurant.get('name')}: {details}",
                "severity": "CRITICAL" if len(high_usage) >= 3 else "WARNING",
                "data": {"items": list(high_usage)},
            }
        )
    if variance:
        plural = "s" if len(variance) > 1 else ""
        names = ", ".join(a["item_name"] for a in variance[:5])
        rows.append(
            {
                "restaurant_id": restaurant["id"],
                "user_id": user_id,
                "type": "COUNT_VARIANCE",
                "title": f"{len(variance)} item{plural} with count variance",
                "message": f"{restaurant.get('name')}: {names} — stock increased without recorded delivery",
                "severity": "WARNING" if len(variance) >= 3 else "INFO",
                "data": {"items": list(variance)},
            }
        )
    return rows


# Data access


class SupabaseNotificationDAO:
    """Service-role reads and writes used by the notification pass."""

    def __init__(self, client: Client):
        self.client = client

    async def _execute(self, request: Callable[[], T], *, context: str) -> T:
        return await run_postgrest(request, context=context)

    async def _rows(self, build: Callable[[], Any], *, context: str) -> List[Dict[str, Any]]:
        return await self._execute(lambda: build().execute().data or [], context=context)

    async def fetch_restaurants(self) -> List[Dict[str, Any]]:
        return await self._rows(lambda: self.client.table("restaurants").select("id,name"), context="fetch restaurants")

    async def fetch_approved_sessions(self, restaurant_id: str, *, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        def _build():
            query = (
                self.client.table("inventory_sessions")
                .select("id,inventory_list_id,location_id,approved_at")
                .eq("restaurant_id", restaurant_id)
                .eq("status", "APPROVED")
                .not_.is_("approved_at", "null")
                .order("approved_at", desc=True)
            )
            return query.limit(limit) if limit else query

        return await self._rows(_build, context="fetch approved sessions")

    async def fetch_session_items(self, session_ids: Sequence[str]) -> List[Dict[str, Any]]:
        if not session_ids:
            return []
        return await self._rows(
            lambda: self.client.table("inventory_session_items")
            .select("session_id,item_name,current_stock,par_level")
            .in_("session_id", list(session_ids)),
            context="fetch session items",
        )

    async def fetch_master_preference(self, restaurant_id: str) -> Optional[Dict[str, Any]]:
        rows = await self._rows(
            lambda: self.client.table("notification_preferences")
            .select("*,alert_recipients(user_id)")
            .eq("restaurant_id", restaurant_id)
            .limit(1),
            context="fetch alert preference",
        )
        return rows[0] if rows else None

    async def fetch_member_ids(self, restaurant_id: str, roles: Sequence[str]) -> List[str]:
        rows = await self._rows(
            lambda: self.client.table("restaurant_members")
            .select("user_id,role")
            .eq("restaurant_id", restaurant_id)
            .in_("role", list(roles)),
            context="fetch members",
        )
        return [row["user_id"] for row in rows]

    async def fetch_user_preference(self, restaurant_id: str, user_id: str) -> Optional[Dict[str, Any]]:
        rows = await self._rows(
            lambda: self.client.table("notification_preferences")
            .select("*")
            .eq("restaurant_id", restaurant_id)
            .eq("user_id", user_id)
            .limit(1),
            context="fetch user preference",
        )
        return rows[0] if rows else None

    async def has_notification_since(
        self,
        restaurant_id: str,
        notification_type: Union[str, Sequence[str]],
        since: datetime,
        *,
        user_id: Optional[str] = None,
    ) -> bool:
        types = [notification_type] if isinstance(notification_type, str) else list(notification_type)

        def _build():
            query = (
                self.client.table("notifications")
                .select("id")
                .eq("restaurant_id", restaurant_id)
                .in_("type", types)
                .gte("created_at", since.isoformat())
            )
            if user_id:
                query = query.eq("user_id", user_id)
            return query.limit(1)

        return bool(await self._rows(_build, context="check notifications"))

    async def has_overdue_notification(self, restaurant_id: str, session_id: str) -> bool:
        rows = await self._rows(
            lambda: self.client.table("notifications")
            .select("id")
            .eq("restaurant_id", restaurant_id)
            .eq("type", "SCHEDULE_OVERDUE")
            .contains("data", {"session_id": session_id})
            .limit(1),
            context="check overdue notifications",
        )
        return bool(rows)

    async def insert_notifications(self, rows: Sequence[Dict[str, Any]]) -> None:
        if not rows:
            return
        await self._execute(
            lambda: self.client.table("notifications").insert(list(rows)).execute(),
            context="insert notifications",
        )

    async def fetch_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        rows = await self._rows(
            lambda: self.client.table("profiles").select("email,full_name").eq("id", user_id).limit(1),
            context="fetch profile",
        )
        return rows[0] if rows else None

    async def fetch_location_name(self, location_id: Optional[str]) -> Optional[str]:
        if not location_id:
            return None
        rows = await self._rows(
            lambda: self.client.table("locations").select("name").eq("id", location_id).limit(1),
            context="fetch location",
        )
        return rows[0].get("name") if rows else None

    async def fetch_restaurant_name(self, restaurant_id: str) -> Optional[str]:
        rows = await self._rows(
            lambda: self.client.table("restaurants").select("name").eq("id", restaurant_id).limit(1),
            context="fetch restaurant",
        )
        return rows[0].get("name") if rows else None

    async def fetch_enabled_reminders(self) -> List[Dict[str, Any]]:
        return await self._rows(
            lambda: self.client.table("reminders")
            .select("*,reminder_targets(user_id),restaurants(name),locations(name)")
            .eq("is_enabled", True),
            context="fetch reminders",
        )

    async def has_session_since(self, restaurant_id: str, inventory_list_id: str, since: datetime) -> bool:
        rows = await self._rows(
            lambda: self.client.table("inventory_sessions")
            .select("id")
            .eq("restaurant_id", restaurant_id)
            .eq("inventory_list_id", inventory_list_id)
            .gte("created_at", since.isoformat())
            .limit(1),
            context="check sessions",
        )
        return bool(rows)

    async def create_session(self, row: Dict[str, Any]) -> None:
        await self._execute(
            lambda: self.client.table("inventory_sessions").insert(row).execute(),
            context="create session",
        )

    async def fetch_digest_preferences(self) -> List[Dict[str, Any]]:
        return await self._rows(
            lambda: self.client.table("notification_preferences")
            .select("*")
            .eq("email_digest_mode", "DAILY_DIGEST")
            .eq("channel_email", True),
            context="fetch digest preferences",
        )

    async def fetch_pending_notifications(self, user_id: str, restaurant_id: str, since: datetime) -> List[Dict[str, Any]]:
        return await self._rows(
            lambda: self.client.table("notifications")
            .select("*")
            .eq("user_id", user_id)
            .eq("restaurant_id", restaurant_id)
            .is_("emailed_at", "null")
            .gte("created_at", since.isoformat()),
            context="fetch pending notifications",
        )

    async def mark_emailed(self, notification_ids: Sequence[str], emailed_at: datetime) -> None:
        if not notification_ids:
            return
        await self._execute(
            lambda: self.client.table("notifications")
            .update({"emailed_at": emailed_at.isoformat()})
            .in_("id", list(notification_ids))
            .execute(),
            context="mark notifications emailed",
        )

    async def fetch_overdue_schedules(self) -> List[Dict[str, Any]]:
        return await self._rows(
            lambda: self.client.table("reminders")
            .select("*,restaurants(name)")
            .eq("is_enabled", True)
            .not_.is_("inventory_list_id", "null")
            .not_.is_("lock_after_hours", "null"),
            context="fetch overdue schedules",
        )

    async def fetch_stale_sessions(self, restaurant_id: str, inventory_list_id: str, before: datetime) -> List[Dict[str, Any]]:
        return await self._rows(
            lambda: self.client.table("inventory_sessions")
            .select("id,name,created_at")
            .eq("restaurant_id", restaurant_id)
            .eq("inventory_list_id", inventory_list_id)
            .eq("status", "IN_PROGRESS")
            .lt("created_at", before.isoformat()),
            context="fetch stale sessions",
        )


# Processing


class NotificationProcessor:
    """Runs one notification pass and collects a human-readable log."""

    def __init__(
        self,
        dao: SupabaseNotificationDAO,
        *,
        now: Optional[datetime] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.dao = dao
        self.now = now or datetime.now(timezone.utc)
        self.today = start_of_day(self.now)
        self.transport = transport
        self.details: List[str] = []

    async def run(self) -> Dict[str, Any]:
        restaurants = await self.dao.fetch_restaurants()
        steps = (
            ("low stock", lambda: self.process_low_stock(restaurants)),
            ("reminders", self.process_reminders),
            ("digests", self.process_digests),
            ("overdue schedules", self.process_overdue_schedules),
            ("shrink", lambda: self.process_shrink(restaurants)),
        )
        for name, step in steps:
            try:
                await step()
            except Exception:
                logger.exception("Notification step '%s' failed", name)
        return {"success": True, "processed": len(self.details), "details": self.details}

    async def _resolve_recipients(self, restaurant_id: str, mode: Optional[str], custom_ids: Sequence[str]) -> List[str]:
        if mode == "CUSTOM" and custom_ids:
            return list(custom_ids)
        return await self.dao.fetch_member_ids(restaurant_id, resolve_recipient_roles(mode))

    async def _email(self, to: str, subject: str, html: str) -> bool:
        try:
            await email_service.send_email(to, subject, html, transport=self.transport)
        except email_service.EmailDeliveryError as exc:
            logger.warning("Notification email to %s failed: %s", to, exc)
            return False
        return True

    async def process_low_stock(self, restaurants: Sequence[Dict[str, Any]]) -> None:
        for restaurant in restaurants:
            sessions = await self.dao.fetch_approved_sessions(restaurant["id"])
            seen_lists = set()
            latest_sessions = []
            for session in sessions:
                if session.get("inventory_list_id") in seen_lists:
                    continue
                seen_lists.add(session.get("inventory_list_id"))
                latest_sessions.append(session)

            for session in latest_sessions:
                items = await self.dao.fetch_session_items([session["id"]])
                alert_items = classify_alert_items(items)
                if not alert_items:
                    continue

                master = await self.dao.fetch_master_preference(restaurant["id"]) or {}
                custom_ids = [r["user_id"] for r in master.get("alert_recipients") or [] if r.get("user_id")]
                recipients = await self._resolve_recipients(
                    restaurant["id"],
                    master.get("recipients_mode") or "OWNERS_MANAGERS",
                    custom_ids,
                )

                for user_id in recipients:
                    preference = await self.dao.fetch_user_preference(restaurant["id"], user_id)
                    filtered = filter_items_for_user(alert_items, preference)
                    if not filtered:
                        continue
                    if await self.dao.has_notification_since(
                        restaurant["id"], "LOW_STOCK", self.today, user_id=user_id
                    ):
                        continue

                    notification = build_low_stock_notification(restaurant, session.get("location_id"), user_id, filtered)
                    in_app = (preference or {}).get("channel_in_app", True) is not False
                    if in_app:
                        await self.dao.insert_notifications([notification])

                    if wants_immediate_email(preference):
                        profile = await self.dao.fetch_profile(user_id) or {}
                        if profile.get("email"):
                            location_name = await self.dao.fetch_location_name(session.get("location_id"))
                            html = email_service.render_low_stock_alert(
                                restaurant.get("name") or "Restaurant",
                                location_name,
                                filtered,
                                self.now.isoformat(),
                            )
                            if await self._email(profile["email"], f"⚠️ Low Stock Alert — {restaurant.get('name')}", html):
                                self.details.append(f"Sent alert email to {profile['email']} for {restaurant.get('name')}")
                                if not in_app:
                                    # Email-only users still need today's LOW_STOCK row, already read and emailed.
                                    stamp = self.now.isoformat()
                                    await self.dao.insert_notifications(
                                        [{**notification, "emailed_at": stamp, "read_at": stamp}]
                                    )

    async def process_reminders(self) -> None:
        for reminder in await self.dao.fetch_enabled_reminders():
            if not reminder_is_due(reminder, self.now):
                continue

            restaurant_id = reminder["restaurant_id"]
            restaurant_name = (reminder.get("restaurants") or {}).get("name")
            custom_ids = [t["user_id"] for t in reminder.get("reminder_targets") or [] if t.get("user_id")]
            recipients = await self._resolve_recipients(
                restaurant_id,
                reminder.get("recipients_mode") or "OWNERS_MANAGERS",
                custom_ids,
            )

            for user_id in recipients:
                if await self.dao.has_notification_since(restaurant_id, "REMINDER", self.today, user_id=user_id):
                    continue
                await self.dao.insert_notifications(
                    [
                        {
                            "restaurant_id": restaurant_id,
                            "location_id": reminder.get("location_id"),
                            "user_id": user_id,
                            "type": "REMINDER",
                            "title": reminder.get("name"),
                            "message": f"Time to enter inventory for {restaurant_name or 'your restaurant'}",
                            "severity": "INFO",
                            "data": {"reminder_id": reminder.get("id")},
                        }
                    ]
                )

                preference = await self.dao.fetch_user_preference(restaurant_id, user_id)
                if not wants_immediate_email(preference):
                    continue
                profile = await self.dao.fetch_profile(user_id) or {}
                if not profile.get("email"):
                    continue
                html = email_service.render_inventory_reminder(
                    restaurant_name or "Restaurant",
                    (reminder.get("locations") or {}).get("name"),
                    reminder.get("name") or "",
                    self.now.isoformat(),
                )
                if await self._email(profile["email"], f"⏰ Reminder: {reminder.get('name')}", html):
                    self.details.append(f"Sent reminder email to {profile['email']}")

            list_id = reminder.get("inventory_list_id")
            if list_id and reminder.get("auto_create_session"):
                if not await self.dao.has_session_since(restaurant_id, list_id, self.today):
                    name = session_name_for(reminder.get("name") or "Inventory", self.now)
                    await self.dao.create_session(
                        {
                            "restaurant_id": restaurant_id,
                            "inventory_list_id": list_id,
                            "location_id": reminder.get("location_id") or None,
                            "name": name,
                            "status": "IN_PROGRESS",
                        }
                    )
                    self.details.append(f"Auto-created session: {name}")

    async def process_digests(self) -> None:
        since = self.now - timedelta(hours=24)
        for preference in await self.dao.fetch_digest_preferences():
            if not digest_is_due(preference, self.now):
                continue
            pending = await self.dao.fetch_pending_notifications(preference["user_id"], preference["restaurant_id"], since)
            if not pending:
                continue
            profile = await self.dao.fetch_profile(preference["user_id"]) or {}
            if not profile.get("email"):
                continue

            items = [item for n in pending for item in ((n.get("data") or {}).get("items") or [])]
            if not items:
                continue
            restaurant_name = await self.dao.fetch_restaurant_name(preference["restaurant_id"])
            html = email_service.render_daily_digest(
                profile.get("full_name") or "Team Member",
                [{"restaurant_name": restaurant_name or "Restaurant", "location_name": None, "items": items}],
            )
            if not await self._email(profile["email"], "📋 Daily Inventory Digest", html):
                continue
            await self.dao.mark_emailed([n["id"] for n in pending], self.now)
            self.details.append(f"Sent digest to {profile['email']}")

    async def process_overdue_schedules(self) -> None:
        for schedule in await self.dao.fetch_overdue_schedules():
            lock_after_hours = float(schedule["lock_after_hours"])
            cutoff = self.now - timedelta(hours=lock_after_hours)
            stale = await self.dao.fetch_stale_sessions(schedule["restaurant_id"], schedule["inventory_list_id"], cutoff)
            for session in stale:
                if await self.dao.has_overdue_notification(schedule["restaurant_id"], session["id"]):
                    continue
                managers = await self.dao.fetch_member_ids(schedule["restaurant_id"], MANAGER_ROLES)
                await self.dao.insert_notifications(
                    [
                        {
                            "restaurant_id": schedule["restaurant_id"],
                            "user_id": user_id,
                            "type": "SCHEDULE_OVERDUE",
                            "title": "Inventory overdue",
                            "message": f"{session.get('name')} has been in progress for over {schedule['lock_after_hours']} hours",
                            "severity": "WARNING",
                            "data": {"session_id": session["id"], "reminder_id": schedule.get("id")},
                        }
                        for user_id in managers
                    ]
                )
                self.details.append(f"Sent overdue notification for session: {session.get('name')}")

    async def process_shrink(self, restaurants: Sequence[Dict[str, Any]]) -> None:
        for restaurant in restaurants:
            sessions = await self.dao.fetch_approved_sessions(restaurant["id"], limit=SHRINK_SESSION_COUNT)
            if len(sessions) < 2:
                continue
            if await self.dao.has_notification_since(restaurant["id"], SHRINK_TYPES, self.today):
                continue

            ordered_ids = chronological_ids(sessions)
            items = await self.dao.fetch_session_items(ordered_ids)
            if not items:
                continue
            anomalies = [a.model_dump() for a in detect_usage_anomalies(items, ordered_ids)]
            if not anomalies:
                continue

            managers = await self.dao.fetch_member_ids(restaurant["id"], MANAGER_ROLES)
            rows = [row for user_id in managers for row in build_shrink_notifications(restaurant, user_id, anomalies)]
            await self.dao.insert_notifications(rows)
            self.details.append(f"Shrink check: {len(anomalies)} anomalies for {restaurant.get('name')}")


async def process_notifications(
    dao: SupabaseNotificationDAO,
    *,
    now: Optional[datetime] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    return await NotificationProcessor(dao, now=now, transport=transport).run()


__all__ = [
    "NotificationProcessor",
    "SupabaseNotificationDAO",
    "build_low_stock_notification",
    "build_shrink_notifications",
    "classify_alert_items",
    "digest_is_due",
    "filter_items_for_user",
    "process_notifications",
    "reminder_is_due",
    "resolve_recipient_roles",
    "session_name_for",
    "utc_hour_for",
    "wants_immediate_email",
]
