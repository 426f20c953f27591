"""
Idempotent storage of canonical POS events.
Vendor webhook delivery is at-least-once; this is where retries collapse
into a single stored event per (restaurant_id, vendor, vendor_event_id).
"""

from dataclasses import dataclass
from typing import List, Optional

import structlog

from app.models.pos import MealLifecycleEvent, PosEvent
from app.services.supabase_service import SupabaseService

logger = structlog.get_logger()


class EventStoreError(Exception):
    """Raised when an event cannot be durably stored or updated."""

    pass


@dataclass
class StoreResult:
    """Outcome of storing a POS event."""

    event_id: str
    created: bool
    event: PosEvent

    @property
    def duplicate(self) -> bool:
        return not self.created


class PosEventStore:
    """Persist canonical POS events exactly once."""

    def __init__(self, supabase_service: Optional[SupabaseService] = None):
        self.supabase_service = supabase_service or SupabaseService()

    def store(self, event: PosEvent) -> StoreResult:
        """
        Store an event unless it was already stored.

        A duplicate performs no write and returns the existing id. The insert
        itself ignores unique-key conflicts, so a delivery racing another copy
        of the same event re-reads the winner instead of creating a second row.

        Args:
            event: Normalized event

        Returns:
            StoreResult with the event id and whether this call created it

        Raises:
            EventStoreError: If the storage backend fails
        """
        restaurant_id, vendor, vendor_event_id = event.idempotency_key

        try:
            existing = self.supabase_service.get_pos_event_by_key(
                restaurant_id, vendor, vendor_event_id
            )
            if existing is not None:
                logger.info(
                    "Duplicate POS event ignored",
                    event_id=existing.id,
                    restaurant_id=restaurant_id,
                    vendor_event_id=vendor_event_id,
                )
                return StoreResult(event_id=str(existing.id), created=False, event=existing)

            stored = self.supabase_service.insert_pos_event(event)
            if stored is None:
                # Lost the race to a concurrent delivery of the same event
                existing = self.supabase_service.get_pos_event_by_key(
                    restaurant_id, vendor, vendor_event_id
                )
                if existing is None:
                    raise EventStoreError(
                        f"POS event {vendor}/{vendor_event_id} neither inserted nor found"
                    )
                logger.info(
                    "Concurrent duplicate POS event resolved",
                    event_id=existing.id,
                    vendor_event_id=vendor_event_id,
                )
                return StoreResult(event_id=str(existing.id), created=False, event=existing)
        except EventStoreError:
            raise
        except Exception as e:
            raise EventStoreError(f"Failed to store POS event: {str(e)}") from e

        logger.info(
            "Stored POS event",
            event_id=stored.id,
            event_type=stored.event_type.value,
            restaurant_id=restaurant_id,
        )
        return StoreResult(event_id=str(stored.id), created=True, event=stored)

    def mark_processed(self, restaurant_id: str, event_id: str, reservation_id: str) -> None:
        """Set processed=true and the linked reservation; the only post-insert mutation."""
        try:
            self.supabase_service.mark_pos_event_processed(
                restaurant_id, event_id, reservation_id
            )
        except Exception as e:
            raise EventStoreError(f"Failed to mark POS event processed: {str(e)}") from e

    def list_unprocessed(self, restaurant_id: str, limit: int = 100) -> List[PosEvent]:
        """Events still waiting to be linked to a reservation."""
        try:
            return self.supabase_service.get_unprocessed_pos_events(restaurant_id, limit=limit)
        except Exception as e:
            raise EventStoreError(f"Failed to list unprocessed POS events: {str(e)}") from e

    def append_lifecycle_event(self, lifecycle_event: MealLifecycleEvent) -> MealLifecycleEvent:
        """Append a milestone to a reservation's meal timeline."""
        try:
            return self.supabase_service.insert_meal_lifecycle_event(lifecycle_event)
        except Exception as e:
            raise EventStoreError(f"Failed to store meal lifecycle event: {str(e)}") from e
