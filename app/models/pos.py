"""
Pydantic models for canonical POS events and the meal lifecycle.
These models represent the structure of data stored in Supabase and the
projection of reservations read from the reservation ledger.
"""
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PosVendor(str, Enum):
    """Point-of-sale vendors that can deliver webhooks."""
    TOAST = "TOAST"
    SQUARE = "SQUARE"
    CLOVER = "CLOVER"


class PosEventType(str, Enum):
    """Canonical event types every vendor payload is normalized into."""
    SEATED = "SEATED"
    FIRST_DRINK = "FIRST_DRINK"
    ENTREES_ORDERED = "ENTREES_ORDERED"
    CHECK_CLOSED = "CHECK_CLOSED"
    TABLE_STATUS_CHANGED = "TABLE_STATUS_CHANGED"


# Event types that only append to the meal timeline
MEAL_TIMELINE_EVENT_TYPES = (PosEventType.FIRST_DRINK, PosEventType.ENTREES_ORDERED)


class ReservationStatus(str, Enum):
    """Reservation statuses owned by the reservation ledger."""
    BOOKED = "BOOKED"
    CONFIRMED = "CONFIRMED"
    CHECKED_IN = "CHECKED_IN"
    SEATED = "SEATED"
    CANCELLED = "CANCELLED"
    NO_SHOW = "NO_SHOW"
    COMPLETED = "COMPLETED"


class PosEvent(BaseModel):
    """Model for pos_events table (canonical, vendor-agnostic event)."""
    id: Optional[str] = None
    vendor: PosVendor
    vendor_event_id: str
    event_type: PosEventType
    restaurant_id: str
    table_id: Optional[str] = None
    timestamp: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)
    raw_payload: Dict[str, Any] = Field(default_factory=dict)
    processed: bool = False
    linked_reservation_id: Optional[str] = None
    stored_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    @property
    def idempotency_key(self) -> tuple:
        """(restaurant_id, vendor, vendor_event_id) - unique per real-world occurrence."""
        return (self.restaurant_id, self.vendor.value, self.vendor_event_id)

    def to_row(self) -> Dict[str, Any]:
        """Serialize for insertion; storage assigns id and timestamps."""
        return self.model_dump(
            mode="json",
            exclude={"id", "stored_at", "processed_at"},
        )


class MealLifecycleEvent(BaseModel):
    """Model for meal_lifecycle_events table (append-only meal timeline)."""
    id: Optional[str] = None
    restaurant_id: str
    reservation_id: str
    event_type: PosEventType
    timestamp: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None


class Reservation(BaseModel):
    """Read-only projection of a reservation held by the reservation ledger."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: str
    status: ReservationStatus
    start_at: datetime = Field(alias="startAt")
    table_id: Optional[str] = Field(default=None, alias="tableId")
    seated_at: Optional[datetime] = Field(default=None, alias="seatedAt")
    party_size: Optional[int] = Field(default=None, alias="partySize")
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("start_at", "seated_at")
    @classmethod
    def _assume_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("id", "table_id", mode="before")
    @classmethod
    def _stringify_ids(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value
