"""
Supabase service layer for database operations.
Handles reads and writes for pos_events and meal_lifecycle_events.

Expected schema (per restaurant rows, never deleted):
    pos_events: id uuid pk, restaurant_id, vendor, vendor_event_id, event_type,
        table_id, timestamp, metadata jsonb, raw_payload jsonb, processed bool,
        linked_reservation_id, stored_at, processed_at,
        UNIQUE (restaurant_id, vendor, vendor_event_id)
    meal_lifecycle_events: id uuid pk, restaurant_id, reservation_id,
        event_type, timestamp, metadata jsonb, created_at
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from uuid import UUID

import structlog
from supabase import Client, create_client

from app.config import settings
from app.models.pos import MealLifecycleEvent, PosEvent

logger = structlog.get_logger()

POS_EVENTS_TABLE = "pos_events"
MEAL_LIFECYCLE_TABLE = "meal_lifecycle_events"
POS_EVENT_UNIQUE_KEY = "restaurant_id,vendor,vendor_event_id"


class SupabaseService:
    """Service for interacting with Supabase database."""

    def __init__(self, client: Optional[Client] = None):
        """Initialize Supabase client."""
        self.client: Client = client or create_client(
            settings.supabase_url, settings.supabase_service_key
        )

    def _serialize_datetimes(self, data: Any) -> Any:
        """
        Recursively convert datetime objects to ISO format strings.
        Also converts UUID objects to strings.
        """
        if isinstance(data, dict):
            return {k: self._serialize_datetimes(v) for k, v in data.items()}
        elif isinstance(data, list):
            return [self._serialize_datetimes(item) for item in data]
        elif isinstance(data, datetime):
            return data.isoformat()
        elif isinstance(data, UUID):
            return str(data)
        else:
            return data

    # POS Events

    def get_pos_event_by_key(
        self, restaurant_id: str, vendor: str, vendor_event_id: str
    ) -> Optional[PosEvent]:
        """
        Get a POS event by its idempotency key.

        Args:
            restaurant_id: Restaurant the event belongs to
            vendor: Vendor tag (e.g., 'TOAST')
            vendor_event_id: Vendor-assigned event id

        Returns:
            PosEvent if found, None otherwise
        """
        try:
            # Don't use .single() - it throws exception on 0 rows
            result = (
                self.client.table(POS_EVENTS_TABLE)
                .select("*")
                .eq("restaurant_id", restaurant_id)
                .eq("vendor", vendor)
                .eq("vendor_event_id", vendor_event_id)
                .limit(1)
                .execute()
            )

            if result.data and len(result.data) > 0:
                return PosEvent(**result.data[0])
            return None
        except Exception as e:
            logger.error(
                "Failed to get POS event by key",
                restaurant_id=restaurant_id,
                vendor=vendor,
                vendor_event_id=vendor_event_id,
                error=str(e),
            )
            raise

    def insert_pos_event(self, event: PosEvent) -> Optional[PosEvent]:
        """
        Insert a POS event unless its idempotency key already exists.

        The insert ignores unique-key conflicts, so two concurrent deliveries
        of the same event can never both create a row.

        Args:
            event: Canonical event to persist

        Returns:
            The stored PosEvent, or None if the key already existed
        """
        row = self._serialize_datetimes(event.to_row())
        row["processed"] = False
        row["linked_reservation_id"] = None
        row["stored_at"] = datetime.now(timezone.utc).isoformat()

        try:
            result = (
                self.client.table(POS_EVENTS_TABLE)
                .upsert(row, on_conflict=POS_EVENT_UNIQUE_KEY, ignore_duplicates=True)
                .execute()
            )

            if result.data:
                return PosEvent(**result.data[0])
            return None
        except Exception as e:
            logger.error(
                "Failed to insert POS event",
                restaurant_id=event.restaurant_id,
                vendor=event.vendor.value,
                vendor_event_id=event.vendor_event_id,
                error=str(e),
            )
            raise

    def mark_pos_event_processed(
        self, restaurant_id: str, event_id: str, reservation_id: str
    ) -> None:
        """
        Mark a POS event as processed and link it to its reservation.

        Args:
            restaurant_id: Restaurant the event belongs to
            event_id: Stored event id
            reservation_id: Reservation the event was applied to
        """
        try:
            self.client.table(POS_EVENTS_TABLE).update(
                {
                    "processed": True,
                    "processed_at": datetime.now(timezone.utc).isoformat(),
                    "linked_reservation_id": reservation_id,
                }
            ).eq("id", str(event_id)).eq("restaurant_id", restaurant_id).execute()
            logger.debug(
                "Marked POS event processed",
                event_id=str(event_id),
                reservation_id=reservation_id,
            )
        except Exception as e:
            logger.error(
                "Failed to mark POS event processed",
                event_id=str(event_id),
                error=str(e),
            )
            raise

    def get_unprocessed_pos_events(
        self, restaurant_id: str, limit: int = 100
    ) -> List[PosEvent]:
        """
        Get POS events that were never applied to a reservation.
        Used by reconciliation tooling, oldest first.

        Args:
            restaurant_id: Restaurant to query
            limit: Maximum number of events to return

        Returns:
            List of unprocessed PosEvent objects
        """
        try:
            result = (
                self.client.table(POS_EVENTS_TABLE)
                .select("*")
                .eq("restaurant_id", restaurant_id)
                .eq("processed", False)
                .order("timestamp")
                .limit(limit)
                .execute()
            )

            return [PosEvent(**row) for row in result.data] if result.data else []
        except Exception as e:
            logger.error(
                "Failed to get unprocessed POS events",
                restaurant_id=restaurant_id,
                error=str(e),
            )
            raise

    # Meal Lifecycle

    def insert_meal_lifecycle_event(
        self, lifecycle_event: MealLifecycleEvent
    ) -> MealLifecycleEvent:
        """
        Append an event to a reservation's meal timeline.

        Args:
            lifecycle_event: FIRST_DRINK / ENTREES_ORDERED milestone

        Returns:
            Stored MealLifecycleEvent
        """
        row: Dict[str, Any] = self._serialize_datetimes(
            lifecycle_event.model_dump(mode="json", exclude={"id", "created_at"})
        )

        try:
            result = self.client.table(MEAL_LIFECYCLE_TABLE).insert(row).execute()

            if result.data:
                return MealLifecycleEvent(**result.data[0])
            raise Exception("No data returned from insert")
        except Exception as e:
            logger.error(
                "Failed to store meal lifecycle event",
                reservation_id=lifecycle_event.reservation_id,
                event_type=lifecycle_event.event_type.value,
                error=str(e),
            )
            raise
