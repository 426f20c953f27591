"""
Pydantic models for Square webhook payloads.
Handles order, payment and table events; the entity lives under data.object.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict

from app.integrations.base import PosWebhookEnvelope, cents_to_dollars, first_present


class SquareMoney(BaseModel):
    """Square Money object - amount is in CENTS (smallest currency unit)."""

    amount: int  # Amount in cents (e.g., 4599 = $45.99)
    currency: str = "USD"

    @property
    def dollars(self) -> float | None:
        return cents_to_dollars(self.amount)


class SquareOrderLineItem(BaseModel):
    """Square order line item."""

    model_config = ConfigDict(extra="allow")

    uid: str | int | None = None
    name: str | None = None
    variation_name: str | None = None
    catalog_object_id: str | int | None = None
    item_type: str | None = None  # "ITEM", "CUSTOM_AMOUNT", "GIFT_CARD"
    quantity: Any = None  # Decimal string, though integers are seen too

    @property
    def is_menu_item(self) -> bool:
        # Square omits item_type for regular catalog items in some payloads
        return self.item_type in (None, "ITEM")

    def labels(self) -> list[Any]:
        """Labels the menu classifier looks at."""
        return [self.name, self.variation_name, self.catalog_object_id]


class SquareEventData(BaseModel):
    """data block of a Square webhook: type, id and the wrapped object."""

    model_config = ConfigDict(extra="allow")

    type: str | None = None  # "payment", "order", ...
    id: str | int | None = None
    object: dict[str, Any] | None = None


class SquareWebhook(PosWebhookEnvelope):
    """Square webhook envelope."""

    merchant_id: str | int | None = None
    location_id: str | int | None = None
    type: str | None = None
    event_type: str | None = None
    event_id: str | int | None = None
    id: str | int | None = None
    created_at: Any = None
    timestamp: Any = None
    data: SquareEventData | None = None

    def get_event_type(self) -> str | None:
        return self.type or self.event_type

    def get_data(self) -> dict[str, Any]:
        """
        Return the affected entity.

        Square wraps the entity under its type name
        (data.object.payment, data.object.order_created); unwrap it when present.
        """
        if self.data is None or self.data.object is None:
            return self.data.model_dump(exclude_none=True) if self.data else {}

        obj = self.data.object
        if self.data.type and isinstance(obj.get(self.data.type), dict):
            return obj[self.data.type]
        if len(obj) == 1:
            only = next(iter(obj.values()))
            if isinstance(only, dict):
                return only
        return obj

    def get_event_id(self) -> str | None:
        return first_present(self.event_id, self.id)

    def get_event_time(self) -> Any:
        return first_present(self.created_at, self.timestamp)
