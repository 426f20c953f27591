"""
POS webhook pipeline: normalize -> store -> process.
Durability of the normalized event comes first; once it is stored the
webhook is acknowledged even if the lifecycle transition fails softly.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog

from app.integrations.registry import NormalizerRegistry
from app.models.pos import PosEvent
from app.services.event_store import PosEventStore
from app.services.lifecycle_processor import (
    MealLifecycleProcessor,
    ProcessingOutcome,
    ProcessingResult,
)
from app.utils.logger import bind_webhook_context

logger = structlog.get_logger()


@dataclass
class WebhookResult:
    """Result of handling one POS webhook delivery."""

    event_id: str
    duplicate: bool
    event: PosEvent
    processing: ProcessingResult

    @property
    def outcome(self) -> ProcessingOutcome:
        return self.processing.outcome

    def to_response(self) -> Dict[str, Any]:
        return {
            "status": "success",
            "event_id": self.event_id,
            "duplicate": self.duplicate,
            "event_type": self.event.event_type.value,
            "outcome": self.outcome.value,
            "linked_reservation_id": self.processing.reservation_id,
        }


class PosEventService:
    """Entry point for POS webhooks from every vendor."""

    def __init__(
        self,
        registry: NormalizerRegistry,
        event_store: PosEventStore,
        processor: MealLifecycleProcessor,
    ):
        self.registry = registry
        self.event_store = event_store
        self.processor = processor

    async def handle_webhook(
        self,
        vendor: str,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        reservation_id: Optional[str] = None,
    ) -> WebhookResult:
        """
        Normalize, store and process one webhook delivery.

        Args:
            vendor: Vendor tag from the endpoint (e.g., 'toast')
            payload: Parsed webhook payload
            headers: Request headers
            reservation_id: Known reservation, skips correlation

        Returns:
            WebhookResult once the event is durably stored

        Raises:
            PosEventValidationError: Unsupported vendor or malformed payload
            EventStoreError: The event could not be stored
        """
        received_at = datetime.now(timezone.utc)
        bind_webhook_context(vendor)
        event = self.registry.normalize(
            payload, vendor, headers=headers or {}, received_at=received_at
        )
        bind_webhook_context(
            event.vendor.value,
            restaurant_id=event.restaurant_id,
            vendor_event_id=event.vendor_event_id,
        )

        logger.info(
            "Normalized POS event",
            vendor=event.vendor.value,
            vendor_event_id=event.vendor_event_id,
            event_type=event.event_type.value,
            restaurant_id=event.restaurant_id,
            table_id=event.table_id,
        )

        stored = self.event_store.store(event)

        if stored.duplicate:
            # The first delivery already drove (or attempted) the transition
            return WebhookResult(
                event_id=stored.event_id,
                duplicate=True,
                event=stored.event,
                processing=ProcessingResult(
                    outcome=ProcessingOutcome.DUPLICATE,
                    reservation_id=stored.event.linked_reservation_id,
                ),
            )

        try:
            processing = await self.processor.process(
                event, stored.event_id, reservation_id=reservation_id
            )
        except Exception as e:
            logger.error(
                "Failed to process stored POS event",
                event_id=stored.event_id,
                event_type=event.event_type.value,
                restaurant_id=event.restaurant_id,
                error=str(e),
            )
            processing = ProcessingResult(outcome=ProcessingOutcome.FAILED, error=str(e))

        return WebhookResult(
            event_id=stored.event_id,
            duplicate=False,
            event=stored.event,
            processing=processing,
        )

    def list_unprocessed(self, restaurant_id: str, limit: int = 100) -> List[PosEvent]:
        """Stored events not yet linked to a reservation."""
        return self.event_store.list_unprocessed(restaurant_id, limit=limit)

    async def close(self):
        """Drain background valet notifications and close HTTP clients."""
        await self.processor.wait_for_side_effects()
        await self.processor.ledger.close()
        await self.processor.valet.close()


def build_pos_event_service() -> PosEventService:
    """Wire the pipeline against the configured Supabase, ledger and valet service."""
    from app.integrations.registry import normalizer_registry
    from app.services.correlator import ReservationCorrelator
    from app.services.reservation_ledger import ReservationLedgerClient
    from app.services.valet_service import ValetServiceClient

    event_store = PosEventStore()
    ledger = ReservationLedgerClient()
    processor = MealLifecycleProcessor(
        event_store=event_store,
        correlator=ReservationCorrelator(ledger),
        ledger=ledger,
        valet=ValetServiceClient(),
    )
    return PosEventService(normalizer_registry, event_store, processor)
