"""
Pydantic models for Clover webhook payloads.
Clover collections arrive either as plain lists or wrapped as {"elements": [...]}.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict

from app.integrations.base import PosWebhookEnvelope, first_present


def unwrap_elements(value: Any) -> list[Any]:
    """Return Clover collection items whether or not they are wrapped in elements."""
    if isinstance(value, dict):
        value = value.get("elements")
    return list(value) if isinstance(value, list) else []


class CloverLineItem(BaseModel):
    """Clover order line item. Price is in cents."""

    model_config = ConfigDict(extra="allow")

    id: str | int | None = None
    name: str | None = None
    alternateName: str | None = None
    price: Any = None  # Cents
    tags: Any = None  # list of names or {"elements": [{"name": ...}]}

    def labels(self) -> list[Any]:
        """Labels the menu classifier looks at."""
        return [self.name, self.alternateName, *unwrap_elements(self.tags)]


class CloverWebhook(PosWebhookEnvelope):
    """Clover POS event envelope: type + data."""

    type: str | None = None
    eventType: str | None = None
    id: str | int | None = None
    eventId: str | int | None = None
    merchantId: str | int | None = None
    timestamp: Any = None
    createdTime: Any = None
    data: dict[str, Any] | None = None
    object: dict[str, Any] | None = None

    def get_event_type(self) -> str | None:
        return first_present(self.type, self.eventType)

    def get_data(self) -> dict[str, Any]:
        if self.data is not None:
            return self.data
        if self.object is not None:
            return self.object
        return self.model_dump(exclude_none=True)

    def get_event_id(self) -> str | None:
        return first_present(self.id, self.eventId)

    def get_event_time(self) -> Any:
        return first_present(self.timestamp, self.createdTime)
