"""
Pydantic models for Toast webhook payloads.
Toast sends an envelope with eventType/timestamp and the affected entity under data.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict

from app.integrations.base import PosWebhookEnvelope, first_present


class ToastSelection(BaseModel):
    """Toast menu item selection (order line item)."""

    model_config = ConfigDict(extra="allow")

    id: str | int | None = None
    guid: str | int | None = None
    name: str | None = None
    displayName: str | None = None
    category: Any = None
    salesCategory: Any = None
    tags: list[Any] | None = None
    quantity: Any = None

    def labels(self) -> list[Any]:
        """Labels the menu classifier looks at. The item name only counts when untagged."""
        labels = [self.category, self.salesCategory, *(self.tags or [])]
        if any(label not in (None, "") for label in labels):
            return labels
        return [self.name, self.displayName]


class ToastWebhook(PosWebhookEnvelope):
    """Toast webhook envelope."""

    eventType: str | None = None
    type: str | None = None
    id: str | int | None = None
    eventId: str | int | None = None
    guid: str | int | None = None
    timestamp: Any = None
    createdAt: Any = None
    data: dict[str, Any] | None = None

    def get_event_type(self) -> str | None:
        return self.eventType or self.type

    def get_data(self) -> dict[str, Any]:
        if self.data is not None:
            return self.data
        # Some Toast integrations post the entity itself without an envelope
        return self.model_dump(exclude_none=True)

    def get_event_id(self) -> str | None:
        event_id = first_present(self.id, self.eventId, self.guid)
        return str(event_id) if event_id is not None else None

    def get_event_time(self) -> Any:
        return self.timestamp or self.createdAt
