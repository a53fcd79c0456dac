"""PostgREST data access for a single restaurant's inventory rows."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence
from uuid import UUID

from fastapi import HTTPException

from restaurantiq.services.postgrest_client import PostgrestDAO

RECEIVED_PURCHASE_STATUSES = ("RECEIVED", "POSTED", "COMPLETE")
SESSION_ITEM_COLUMNS = "session_id,item_name,current_stock,par_level,unit,pack_size,unit_cost"


class SupabaseInventoryDAO(PostgrestDAO):
    """DAO relying on Supabase/PostgREST for one restaurant's inventory data."""

    def __init__(
        self,
        restaurant_id: UUID,
        access_token: str,
        *,
        api_key: Optional[str] = None,
    ):
        super().__init__(access_token, api_key=api_key)
        self.restaurant_id = restaurant_id
        self.restaurant_id_str = str(restaurant_id)

    # Sessions

    async def fetch_approved_sessions(
        self,
        *,
        limit: int,
        location_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Most recent approved sessions, newest first."""

        def _request() -> List[Dict[str, Any]]:
            with self._client() as client:
                query = (
                    client.table("inventory_sessions")
                    .select("id,approved_at,location_id,inventory_list_id")
                    .eq("restaurant_id", self.restaurant_id_str)
                    .eq("status", "APPROVED")
                    .not_.is_("approved_at", "null")
                )
                if location_id:
                    query = query.eq("location_id", location_id)
                return query.order("approved_at", desc=True).limit(limit).execute().data or []

        return await self._execute(_request, context="fetch approved sessions")

    async def fetch_session(self, session_id: UUID) -> Optional[Dict[str, Any]]:
        def _request() -> Optional[Dict[str, Any]]:
            with self._client() as client:
                rows = (
                    client.table("inventory_sessions")
                    .select("id,name,status,inventory_list_id,location_id,approved_at")
                    .eq("restaurant_id", self.restaurant_id_str)
                    .eq("id", str(session_id))
                    .limit(1)
                    .execute()
                ).data or []
                return rows[0] if rows else None

        return await self._execute(_request, context="fetch session")

    async def fetch_session_items(self, session_ids: Sequence[Any]) -> List[Dict[str, Any]]:
        ids = [str(session_id) for session_id in session_ids if session_id]
        if not ids:
            return []

        def _request() -> List[Dict[str, Any]]:
            with self._client() as client:
                return (
                    client.table("inventory_session_items")
                    .select(SESSION_ITEM_COLUMNS)
                    .in_("session_id", ids)
                    .execute()
                ).data or []

        return await self._execute(_request, context="fetch session items")

    async def update_session(self, session_id: UUID, fields: Dict[str, Any]) -> None:
        payload = dict(fields)
        payload["updated_at"] = datetime.now(timezone.utc).isoformat()

        def _request() -> None:
            with self._client(prefer="return=minimal") as client:
                (
                    client.table("inventory_sessions")
                    .update(payload)
                    .eq("restaurant_id", self.restaurant_id_str)
                    .eq("id", str(session_id))
                    .execute()
                )

        await self._execute(_request, context="update session")

    # PAR guides and smart orders

    async def fetch_latest_par_map(self, inventory_list_id: Optional[str]) -> tuple[Optional[str], Dict[str, float]]:
        """Return the latest PAR guide id for the list and its item -> PAR map."""

        if not inventory_list_id:
            return None, {}

        def _request() -> tuple[Optional[str], Dict[str, float]]:
            with self._client() as client:
                guides = (
                    client.table("par_guides")
                    .select("id")
                    .eq("restaurant_id", self.restaurant_id_str)
                    .eq("inventory_list_id", str(inventory_list_id))
                    .order("updated_at", desc=True)
                    .limit(1)
                    .execute()
                ).data or []
                if not guides:
                    return None, {}
                guide_id = guides[0]["id"]
                rows = (
                    client.table("par_guide_items")
                    .select("item_name,par_level")
                    .eq("par_guide_id", guide_id)
                    .execute()
                ).data or []
                par_map: Dict[str, float] = {}
                for row in rows:
                    if row.get("item_name") is None:
                        continue
                    par_map[row["item_name"]] = float(row.get("par_level") or 0)
                return guide_id, par_map

        return await self._execute(_request, context="fetch par guide")

    async def create_smart_order_run(
        self,
        header: Dict[str, Any],
        lines: Sequence[Dict[str, Any]],
    ) -> Dict[str, Any]:
        """Persist a smart order run and its lines, returning the run row."""

        def _request() -> Dict[str, Any]:
            with self._client(prefer="return=representation") as client:
                run_rows = (
                    client.table("smart_order_runs")
                    .insert({"restaurant_id": self.restaurant_id_str, **header})
                    .execute()
                ).data or []
                if not run_rows:
                    raise HTTPException(status_code=502, detail="Could not create smart order run.")
                run = run_rows[0]
                if lines:
                    client.table("smart_order_run_items").insert(
                        [{"run_id": run["id"], **line} for line in lines]
                    ).execute()
                return run

        return await self._execute(_request, context="create smart order run")

    async def fetch_smart_order_run(self, run_id: UUID) -> Optional[Dict[str, Any]]:
        def _request() -> Optional[Dict[str, Any]]:
            with self._client() as client:
                runs = (
                    client.table("smart_order_runs")
                    .select("id,session_id,inventory_list_id,par_guide_id,created_at")
                    .eq("restaurant_id", self.restaurant_id_str)
                    .eq("id", str(run_id))
                    .limit(1)
                    .execute()
                ).data or []
                if not runs:
                    return None
                run = runs[0]
                run["items"] = (
                    client.table("smart_order_run_items")
                    .select("item_name,suggested_order,risk,current_stock,par_level,unit_cost,pack_size")
                    .eq("run_id", str(run_id))
                    .execute()
                ).data or []
                return run

        return await self._execute(_request, context="fetch smart order run")

    # Notifications

    async def fetch_in_app_alert_preference(self) -> Optional[Dict[str, Any]]:
        def _request() -> Optional[Dict[str, Any]]:
            with self._client() as client:
                rows = (
                    client.table("notification_preferences")
                    .select("recipients_mode,alert_recipients(user_id)")
                    .eq("restaurant_id", self.restaurant_id_str)
                    .eq("channel_in_app", True)
                    .limit(1)
                    .execute()
                ).data or []
                return rows[0] if rows else None

        return await self._execute(_request, context="fetch alert preference")

    async def fetch_members(self) -> List[Dict[str, Any]]:
        def _request() -> List[Dict[str, Any]]:
            with self._client() as client:
                return (
                    client.table("restaurant_members")
                    .select("user_id,role")
                    .eq("restaurant_id", self.restaurant_id_str)
                    .execute()
                ).data or []

        return await self._execute(_request, context="fetch members")

    async def insert_notifications(self, rows: Sequence[Dict[str, Any]]) -> None:
        if not rows:
            return

        def _request() -> None:
            with self._client(prefer="return=minimal") as client:
                client.table("notifications").insert(list(rows)).execute()

        await self._execute(_request, context="insert notifications")

    # Catalog and purchase history

    async def fetch_catalog_items(self) -> List[Dict[str, Any]]:
        def _request() -> List[Dict[str, Any]]:
            with self._client() as client:
                return (
                    client.table("inventory_catalog_items")
                    .select("id,item_name,product_number,vendor_sku,brand_name")
                    .eq("restaurant_id", self.restaurant_id_str)
                    .execute()
                ).data or []

        return await self._execute(_request, context="fetch catalog items")

    async def fetch_purchase_items_between(
        self,
        start: Any,
        end: Any,
        *,
        location_id: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Quantities received on invoices created between two approvals."""

        def _request() -> List[Dict[str, Any]]:
            with self._client() as client:
                query = (
                    client.table("purchase_history")
                    .select("id")
                    .eq("restaurant_id", self.restaurant_id_str)
                    .in_("invoice_status", list(RECEIVED_PURCHASE_STATUSES))
                    .gte("created_at", str(start))
                    .lte("created_at", str(end))
                )
                if location_id:
                    query = query.eq("location_id", location_id)
                purchase_ids = [row["id"] for row in query.execute().data or [] if row.get("id")]
                if not purchase_ids:
                    return []
                return (
                    client.table("purchase_history_items")
                    .select("item_name,quantity")
                    .in_("purchase_history_id", purchase_ids)
                    .execute()
                ).data or []

        return await self._execute(_request, context="fetch purchases between sessions")

    async def fetch_received_purchases(self, *, location_id: Optional[str] = None) -> tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
        """Received purchases and their catalog-linked items."""

        def _request() -> tuple[List[Dict[str, Any]], List[Dict[str, Any]]]:
            with self._client() as client:
                query = (
                    client.table("purchase_history")
                    .select("id,created_at,invoice_date")
                    .eq("restaurant_id", self.restaurant_id_str)
                    .in_("invoice_status", list(RECEIVED_PURCHASE_STATUSES))
                )
                if location_id:
                    query = query.eq("location_id", location_id)
                purchases = query.execute().data or []
                purchase_ids = [row["id"] for row in purchases if row.get("id")]
                if not purchase_ids:
                    return purchases, []
                items = (
                    client.table("purchase_history_items")
                    .select("catalog_item_id,purchase_history_id")
                    .in_("purchase_history_id", purchase_ids)
                    .not_.is_("catalog_item_id", "null")
                    .execute()
                ).data or []
                return purchases, items

        return await self._execute(_request, context="fetch received purchases")

    async def save_purchase(
        self,
        header: Dict[str, Any],
        items: Sequence[Dict[str, Any]],
        *,
        purchase_id: Optional[UUID] = None,
    ) -> str:
        """Insert or replace a purchase history record and its items."""

        def _request() -> str:
            with self._client(prefer="return=representation") as client:
                payload = {"restaurant_id": self.restaurant_id_str, **header}
                if purchase_id:
                    resolved_id = str(purchase_id)
                    (
                        client.table("purchase_history")
                        .update(payload)
                        .eq("restaurant_id", self.restaurant_id_str)
                        .eq("id", resolved_id)
                        .execute()
                    )
                    client.table("purchase_history_items").delete().eq("purchase_history_id", resolved_id).execute()
                else:
                    rows = client.table("purchase_history").insert(payload).execute().data or []
                    if not rows:
                        raise HTTPException(status_code=502, detail="Could not save invoice.")
                    resolved_id = str(rows[0]["id"])
                client.table("purchase_history_items").insert(
                    [{"purchase_history_id": resolved_id, **item} for item in items]
                ).execute()
                return resolved_id

        return await self._execute(_request, context="save purchase")


__all__ = ["SupabaseInventoryDAO", "RECEIVED_PURCHASE_STATUSES"]
