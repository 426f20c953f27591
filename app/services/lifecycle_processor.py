"""
Meal lifecycle processor.
Applies a stored POS event to the reservation it belongs to:

    SEATED                         -> reservation SEATED (table + seated time recorded)
    CHECK_CLOSED                   -> reservation COMPLETED, then valet "check dropped"
    FIRST_DRINK / ENTREES_ORDERED  -> meal timeline entry, no status change
    TABLE_STATUS_CHANGED           -> nothing beyond linking the stored event

Event ordering is not enforced: a CHECK_CLOSED may be applied before the
SEATED event for the same table has been correlated.
"""

import asyncio
import weakref
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Set

import structlog

from app.config import settings
from app.models.pos import (
    MEAL_TIMELINE_EVENT_TYPES,
    MealLifecycleEvent,
    PosEvent,
    PosEventType,
    ReservationStatus,
)
from app.services.correlator import ReservationCorrelator
from app.services.event_store import PosEventStore
from app.services.reservation_ledger import POS_EVENT_SOURCE, ReservationLedgerClient
from app.services.valet_service import ValetServiceClient
from app.utils.retry import retry_with_backoff

logger = structlog.get_logger()


class ProcessingOutcome(str, Enum):
    """What happened to an event after it was stored."""

    APPLIED = "APPLIED"  # Linked to a reservation and applied
    UNLINKED = "UNLINKED"  # Correlation miss, stored for reconciliation
    DUPLICATE = "DUPLICATE"  # Already stored, not processed again
    FAILED = "FAILED"  # Stored, but applying it raised


@dataclass
class ProcessingResult:
    outcome: ProcessingOutcome
    reservation_id: Optional[str] = None
    new_status: Optional[ReservationStatus] = None
    lifecycle_event_id: Optional[str] = None
    error: Optional[str] = None


class MealLifecycleProcessor:
    """Drive reservation status and the meal timeline from canonical POS events."""

    def __init__(
        self,
        event_store: PosEventStore,
        correlator: ReservationCorrelator,
        ledger: ReservationLedgerClient,
        valet: ValetServiceClient,
        valet_max_attempts: Optional[int] = None,
        valet_retry_delay: Optional[float] = None,
        valet_retry_multiplier: Optional[float] = None,
    ):
        self.event_store = event_store
        self.correlator = correlator
        self.ledger = ledger
        self.valet = valet
        self.valet_max_attempts = valet_max_attempts or settings.valet_max_attempts
        self.valet_retry_delay = (
            settings.retry_initial_delay_seconds
            if valet_retry_delay is None
            else valet_retry_delay
        )
        self.valet_retry_multiplier = (
            settings.retry_backoff_multiplier
            if valet_retry_multiplier is None
            else valet_retry_multiplier
        )
        # One lock per reservation so transitions for it never interleave
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )
        self._side_effects: Set[asyncio.Task] = set()

    def _lock_for(self, reservation_id: str) -> asyncio.Lock:
        lock = self._locks.get(reservation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[reservation_id] = lock
        return lock

    async def process(
        self,
        event: PosEvent,
        event_id: str,
        reservation_id: Optional[str] = None,
    ) -> ProcessingResult:
        """
        Apply a stored event to its reservation.

        Args:
            event: Canonical event as stored
            event_id: Stored event id (marked processed on success)
            reservation_id: Known reservation, skips correlation when given

        Returns:
            ProcessingResult (UNLINKED on a correlation miss, never raised)

        Raises:
            Exception: Ledger or storage failures while applying a linked event
        """
        if reservation_id is None:
            reservation_id = await self.correlator.find_reservation(
                event.restaurant_id, event.table_id, event.timestamp
            )

        if reservation_id is None:
            logger.warning(
                "POS event cannot be linked to reservation",
                event_id=event_id,
                event_type=event.event_type.value,
                restaurant_id=event.restaurant_id,
                table_id=event.table_id,
            )
            return ProcessingResult(outcome=ProcessingOutcome.UNLINKED)

        async with self._lock_for(reservation_id):
            result = await self._apply(event, event_id, reservation_id)
            self.event_store.mark_processed(event.restaurant_id, event_id, reservation_id)

        logger.info(
            "POS event applied",
            event_id=event_id,
            event_type=event.event_type.value,
            reservation_id=reservation_id,
            new_status=result.new_status.value if result.new_status else None,
        )
        return result

    async def _apply(
        self, event: PosEvent, event_id: str, reservation_id: str
    ) -> ProcessingResult:
        metadata = event.metadata
        result = ProcessingResult(
            outcome=ProcessingOutcome.APPLIED, reservation_id=reservation_id
        )

        if event.event_type == PosEventType.SEATED:
            await self.ledger.update_status(
                event.restaurant_id,
                reservation_id,
                ReservationStatus.SEATED,
                source=POS_EVENT_SOURCE,
                metadata={
                    "pos_vendor": event.vendor.value,
                    "pos_event_id": event_id,
                    "table_id": event.table_id,
                    "seated_at": metadata.get("seated_at") or event.timestamp.isoformat(),
                },
            )
            result.new_status = ReservationStatus.SEATED

        elif event.event_type == PosEventType.CHECK_CLOSED:
            await self.ledger.update_status(
                event.restaurant_id,
                reservation_id,
                ReservationStatus.COMPLETED,
                source=POS_EVENT_SOURCE,
                metadata={
                    "pos_vendor": event.vendor.value,
                    "pos_event_id": event_id,
                    "check_id": metadata.get("check_id"),
                    "total": metadata.get("total"),
                    "completed_at": metadata.get("paid_at") or event.timestamp.isoformat(),
                },
            )
            result.new_status = ReservationStatus.COMPLETED
            self._dispatch_check_dropped(event.restaurant_id, event.table_id, reservation_id)

        elif event.event_type in MEAL_TIMELINE_EVENT_TYPES:
            lifecycle_event = self.event_store.append_lifecycle_event(
                MealLifecycleEvent(
                    restaurant_id=event.restaurant_id,
                    reservation_id=reservation_id,
                    event_type=event.event_type,
                    timestamp=event.timestamp,
                    metadata={
                        **metadata,
                        "vendor": event.vendor.value,
                        "pos_event_id": event_id,
                    },
                )
            )
            result.lifecycle_event_id = lifecycle_event.id

        return result

    def _dispatch_check_dropped(
        self, restaurant_id: str, table_id: Optional[str], reservation_id: str
    ) -> None:
        """Notify the valet service in the background; never delays the transition."""
        task = asyncio.create_task(
            self._notify_valet(restaurant_id, table_id, reservation_id)
        )
        self._side_effects.add(task)
        task.add_done_callback(self._side_effects.discard)

    async def _notify_valet(
        self, restaurant_id: str, table_id: Optional[str], reservation_id: str
    ) -> None:
        notify = retry_with_backoff(
            max_attempts=self.valet_max_attempts,
            initial_delay=self.valet_retry_delay,
            multiplier=self.valet_retry_multiplier,
        )(self.valet.handle_check_dropped)

        try:
            await notify(restaurant_id, table_id, reservation_id)
        except Exception as e:
            # The COMPLETED transition is never rolled back
            logger.error(
                "Valet check-dropped notification failed",
                restaurant_id=restaurant_id,
                table_id=table_id,
                reservation_id=reservation_id,
                error=str(e),
            )

    @property
    def pending_side_effects(self) -> int:
        return len(self._side_effects)

    async def wait_for_side_effects(self) -> None:
        """Wait for in-flight valet notifications (shutdown, tests)."""
        if self._side_effects:
            await asyncio.gather(*list(self._side_effects), return_exceptions=True)
