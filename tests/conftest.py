"""Shared fixtures: in-memory storage, fake collaborators and vendor payloads."""

from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone

import pytest

from app.integrations.classification import MenuClassifier
from app.integrations.registry import NormalizerRegistry
from app.models.pos import MealLifecycleEvent, PosEvent, Reservation, ReservationStatus
from app.services.correlator import ReservationCorrelator
from app.services.event_store import PosEventStore
from app.services.lifecycle_processor import MealLifecycleProcessor
from app.services.pos_event_service import PosEventService

RESTAURANT_ID = "rest_1"
SEATED_AT = datetime(2024, 5, 1, 19, 0, tzinfo=timezone.utc)


class FakeSupabaseService:
    """In-memory stand-in for SupabaseService with the same unique key."""

    def __init__(self):
        self.pos_events: dict[tuple, PosEvent] = {}
        self.lifecycle_events: list[MealLifecycleEvent] = []
        self.insert_calls = 0
        self._ids = itertools.count(1)

    def get_pos_event_by_key(self, restaurant_id, vendor, vendor_event_id):
        return self.pos_events.get((restaurant_id, vendor, vendor_event_id))

    def insert_pos_event(self, event):
        self.insert_calls += 1
        key = event.idempotency_key
        if key in self.pos_events:
            return None
        stored = event.model_copy(
            update={"id": f"evt_{next(self._ids)}", "stored_at": datetime.now(timezone.utc)}
        )
        self.pos_events[key] = stored
        return stored

    def mark_pos_event_processed(self, restaurant_id, event_id, reservation_id):
        for key, event in self.pos_events.items():
            if event.id == event_id and event.restaurant_id == restaurant_id:
                self.pos_events[key] = event.model_copy(
                    update={
                        "processed": True,
                        "linked_reservation_id": reservation_id,
                        "processed_at": datetime.now(timezone.utc),
                    }
                )

    def get_unprocessed_pos_events(self, restaurant_id, limit=100):
        events = [
            e
            for e in self.pos_events.values()
            if e.restaurant_id == restaurant_id and not e.processed
        ]
        return sorted(events, key=lambda e: e.timestamp)[:limit]

    def insert_meal_lifecycle_event(self, lifecycle_event):
        stored = lifecycle_event.model_copy(
            update={"id": f"mle_{next(self._ids)}", "created_at": datetime.now(timezone.utc)}
        )
        self.lifecycle_events.append(stored)
        return stored

    def by_vendor_event_id(self, vendor_event_id):
        for event in self.pos_events.values():
            if event.vendor_event_id == vendor_event_id:
                return event
        return None


class FakeLedger:
    """Reservation ledger that records status updates."""

    def __init__(self, reservations=None):
        self.reservations: list[Reservation] = list(reservations or [])
        self.status_updates: list[dict] = []
        self.window_queries: list[dict] = []
        self.fail_lookups = False

    async def update_status(
        self, restaurant_id, reservation_id, new_status, source="POS_EVENT", metadata=None
    ):
        self.status_updates.append(
            {
                "restaurant_id": restaurant_id,
                "reservation_id": reservation_id,
                "status": new_status,
                "source": source,
                "metadata": metadata or {},
            }
        )
        return {"id": reservation_id, "status": new_status.value}

    async def get_reservations_in_window(self, restaurant_id, start_time, end_time, status=None):
        self.window_queries.append(
            {"restaurant_id": restaurant_id, "start": start_time, "end": end_time, "status": status}
        )
        if self.fail_lookups:
            raise ConnectionError("ledger unavailable")
        return [
            r
            for r in self.reservations
            if start_time <= r.start_at <= end_time and (status is None or r.status == status)
        ]

    async def close(self):
        pass


class FakeValet:
    """Valet service that can fail a number of times before succeeding."""

    def __init__(self, failures=0):
        self.failures = failures
        self.attempts = 0
        self.calls: list[tuple] = []

    async def handle_check_dropped(self, restaurant_id, table_id, reservation_id):
        self.attempts += 1
        if self.failures > 0:
            self.failures -= 1
            raise ConnectionError("valet unavailable")
        self.calls.append((restaurant_id, table_id, reservation_id))
        return {"ok": True}

    async def close(self):
        pass


def make_reservation(
    reservation_id="res_1",
    table_id="12",
    status=ReservationStatus.SEATED,
    start_at=SEATED_AT,
    seated_at=SEATED_AT,
):
    return Reservation(
        id=reservation_id,
        status=status,
        start_at=start_at,
        table_id=table_id,
        seated_at=seated_at,
    )


@pytest.fixture()
def classifier() -> MenuClassifier:
    return MenuClassifier(
        category_table={"beverages": "DRINK", "entrees": "ENTREE", "mains": "ENTREE"},
        drink_keywords=["drink", "beverage"],
        entree_keywords=["entree", "main"],
    )


@pytest.fixture()
def registry(classifier) -> NormalizerRegistry:
    return NormalizerRegistry(classifier=classifier)


@pytest.fixture()
def supabase() -> FakeSupabaseService:
    return FakeSupabaseService()


@pytest.fixture()
def event_store(supabase) -> PosEventStore:
    return PosEventStore(supabase_service=supabase)


@pytest.fixture()
def ledger() -> FakeLedger:
    return FakeLedger([make_reservation()])


@pytest.fixture()
def valet() -> FakeValet:
    return FakeValet()


@pytest.fixture()
def correlator(ledger) -> ReservationCorrelator:
    return ReservationCorrelator(ledger, window=timedelta(hours=1), correlate_without_table=False)


@pytest.fixture()
def processor(event_store, correlator, ledger, valet) -> MealLifecycleProcessor:
    return MealLifecycleProcessor(
        event_store=event_store,
        correlator=correlator,
        ledger=ledger,
        valet=valet,
        valet_max_attempts=3,
        valet_retry_delay=0,
        valet_retry_multiplier=0,
    )


@pytest.fixture()
def pos_service(registry, event_store, processor) -> PosEventService:
    return PosEventService(registry, event_store, processor)


# ── Vendor payloads ───────────────────────────────────────────────────────


@pytest.fixture()
def toast_order_payload() -> dict:
    return {
        "eventType": "order.created",
        "eventId": "toast-order-1",
        "timestamp": "2024-05-01T19:10:00Z",
        "data": {
            "restaurantId": RESTAURANT_ID,
            "id": "order_1",
            "table": {"guid": "12"},
            "items": [
                {"id": "sel_1", "name": "Ribeye", "tags": ["Entrees"], "quantity": 1},
            ],
        },
    }


@pytest.fixture()
def toast_check_closed_payload() -> dict:
    return {
        "eventType": "check.closed",
        "eventId": "toast-check-1",
        "timestamp": "2024-05-01T19:50:00Z",
        "data": {
            "restaurantId": RESTAURANT_ID,
            "id": "check_1",
            "tableId": "12",
            "total": 87.5,
            "closedAt": "2024-05-01T19:49:30Z",
        },
    }


@pytest.fixture()
def toast_seated_payload() -> dict:
    return {
        "eventType": "table.seated",
        "eventId": "toast-seat-1",
        "timestamp": "2024-05-01T19:01:00Z",
        "data": {"restaurantId": RESTAURANT_ID, "id": "12", "name": "Patio 12"},
    }


@pytest.fixture()
def square_payment_payload() -> dict:
    return {
        "merchant_id": "MERCHANT_1",
        "type": "payment.created",
        "event_id": "sq-evt-1",
        "created_at": "2024-05-01T20:20:00Z",
        "data": {
            "type": "payment",
            "id": "pay_1",
            "object": {
                "payment": {
                    "id": "pay_1",
                    "location_id": RESTAURANT_ID,
                    "order_id": "sq_order_1",
                    "status": "COMPLETED",
                    "amount_money": {"amount": 4599, "currency": "USD"},
                    "updated_at": "2024-05-01T20:19:00Z",
                }
            },
        },
    }


@pytest.fixture()
def clover_seated_payload() -> dict:
    return {
        "type": "TABLE_SEATED",
        "id": "clv-evt-1",
        "merchantId": RESTAURANT_ID,
        "timestamp": 1714590000000,
        "data": {"id": "12", "name": "Booth 12"},
    }
