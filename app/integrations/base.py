"""
Base POS normalizer interface.
Every POS vendor integration implements this interface so the webhook
receiver can turn any vendor payload into a canonical PosEvent.
"""

import hashlib
import json
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

import structlog
from pydantic import BaseModel, ConfigDict, ValidationError

from app.integrations.classification import MenuClassifier, default_classifier
from app.models.pos import PosEvent, PosEventType, PosVendor

logger = structlog.get_logger()


class PosEventValidationError(Exception):
    """Raised when a webhook payload cannot be normalized (malformed or missing fields)."""

    pass


class UnsupportedVendorError(PosEventValidationError):
    """Raised when no normalizer is registered for a vendor tag."""

    def __init__(self, vendor: str, available: list[str] | None = None):
        self.vendor = vendor
        self.available = available or []
        super().__init__(f"Unsupported POS vendor: {vendor}")


def parse_timestamp(value: Any) -> datetime | None:
    """
    Parse a vendor timestamp into a timezone-aware UTC datetime.

    Accepts datetimes, ISO-8601 strings (with or without trailing Z) and
    epoch numbers. Numbers above 1e11 are treated as milliseconds (Clover).

    Returns:
        Parsed datetime, or None if the value is missing or unparseable
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        seconds = value / 1000.0 if value > 1e11 else float(value)
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.isdigit():
            return parse_timestamp(int(text))
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def cents_to_dollars(amount: Any) -> float | None:
    """Convert an integer amount in cents (Square, Clover) to dollars."""
    if amount is None or amount == "":
        return None
    try:
        return round(float(amount) / 100.0, 2)
    except (TypeError, ValueError):
        return None


def to_float(value: Any) -> float | None:
    """Coerce a dollar amount to float, None when missing or unparseable."""
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def first_present(*values: Any) -> Any:
    """Return the first value that is not None or an empty string."""
    for value in values:
        if value is not None and value != "":
            return value
    return None


def as_list(value: Any) -> list[Any]:
    """Return value if it is a list, else an empty list."""
    return value if isinstance(value, list) else []


def get_header(headers: dict[str, str], name: str) -> str | None:
    """Case-insensitive header lookup."""
    target = name.lower()
    for key, value in headers.items():
        if key.lower() == target:
            return value
    return None


def payload_digest(payload: dict[str, Any]) -> str:
    """Stable digest of a payload, used when the vendor sends no event id."""
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:32]


class PosWebhookEnvelope(BaseModel):
    """
    Common accessors over a vendor webhook envelope.
    Vendor models override these to point at their own field names.
    """

    model_config = ConfigDict(extra="allow")

    def get_event_type(self) -> str | None:
        return None

    def get_data(self) -> dict[str, Any]:
        return {}

    def get_event_id(self) -> str | None:
        return None

    def get_event_time(self) -> Any:
        return None


class BasePosNormalizer(ABC):
    """Base class that all POS vendor normalizers must implement."""

    vendor: PosVendor

    def __init__(self, classifier: MenuClassifier | None = None):
        self.classifier = classifier or default_classifier()

    def get_name(self) -> str:
        """
        Return the registry name for this vendor.

        Returns:
            Lower-case vendor name (e.g., 'toast', 'square', 'clover')
        """
        return self.vendor.value.lower()

    @abstractmethod
    def verify_signature(
        self,
        payload: bytes,
        headers: dict[str, str],
        request_url: str | None = None,
    ) -> bool:
        """
        Verify webhook signature for authenticity.

        Args:
            payload: Raw webhook payload bytes
            headers: Request headers dictionary (lower-cased keys)
            request_url: Full request URL, for vendors that sign it

        Returns:
            True if signature is valid, False otherwise
        """
        pass

    @abstractmethod
    def parse_envelope(self, payload: dict[str, Any]) -> PosWebhookEnvelope:
        """
        Validate the vendor webhook envelope.

        Args:
            payload: Parsed webhook payload

        Returns:
            Vendor envelope model
        """
        pass

    @abstractmethod
    def extract_restaurant_id(
        self, headers: dict[str, str], payload: dict[str, Any]
    ) -> str | None:
        """
        Extract restaurant identifier from webhook.

        Args:
            headers: Request headers
            payload: Parsed webhook payload

        Returns:
            Restaurant identifier string, or None if not found
        """
        pass

    @abstractmethod
    def get_supported_events(self) -> list[str]:
        """
        Return list of vendor event types with a dedicated mapping.
        Other event types are still accepted and kept as TABLE_STATUS_CHANGED.
        """
        pass

    @abstractmethod
    def map_event(
        self, event_type: str | None, data: dict[str, Any]
    ) -> tuple[PosEventType, dict[str, Any]]:
        """
        Map a vendor event type and its data object to a canonical type and metadata.

        Returns:
            Tuple of (canonical_event_type, metadata)
        """
        pass

    def _envelope(self, payload: Any) -> PosWebhookEnvelope:
        if not isinstance(payload, dict):
            raise PosEventValidationError(
                f"{self.vendor.value} payload must be a JSON object"
            )
        try:
            return self.parse_envelope(payload)
        except ValidationError as e:
            raise PosEventValidationError(
                f"Malformed {self.vendor.value} payload: {e.errors(include_url=False)}"
            ) from e

    def normalize(
        self,
        payload: dict[str, Any],
        headers: dict[str, str] | None = None,
        received_at: datetime | None = None,
    ) -> PosEvent:
        """
        Normalize a raw vendor payload to a canonical PosEvent.

        Args:
            payload: Parsed webhook payload
            headers: Request headers (some vendors carry the restaurant there)
            received_at: Receipt time, used when the vendor sends no timestamp

        Returns:
            Canonical PosEvent (never with an unrecognized event type)

        Raises:
            PosEventValidationError: If the payload is malformed or has no restaurant id
        """
        envelope = self._envelope(payload)
        headers = headers or {}

        restaurant_id = self.extract_restaurant_id(headers, payload)
        if not restaurant_id:
            raise PosEventValidationError(
                f"{self.vendor.value} payload is missing a restaurant identifier"
            )

        vendor_type = envelope.get_event_type()
        if vendor_type not in self.get_supported_events():
            logger.info(
                "Unmapped POS event type, keeping as TABLE_STATUS_CHANGED",
                vendor=self.vendor.value,
                vendor_event_type=vendor_type,
            )
        event_type, metadata = self.map_event(vendor_type, envelope.get_data())

        vendor_event_id = envelope.get_event_id()
        if not vendor_event_id:
            vendor_event_id = f"{self.get_name()}_{payload_digest(payload)}"
            logger.info(
                "POS payload has no event id, using payload digest",
                vendor=self.vendor.value,
                vendor_event_id=vendor_event_id,
            )

        timestamp = parse_timestamp(envelope.get_event_time())
        if timestamp is None:
            timestamp = received_at or datetime.now(timezone.utc)

        # Milestone times default to the event time and are stored as ISO strings
        for key in ("paid_at", "seated_at"):
            if key in metadata:
                milestone = parse_timestamp(metadata[key]) or timestamp
                metadata[key] = milestone.isoformat()

        table_id = metadata.get("table_id")

        return PosEvent(
            vendor=self.vendor,
            vendor_event_id=str(vendor_event_id),
            event_type=event_type,
            restaurant_id=str(restaurant_id),
            table_id=str(table_id) if table_id is not None else None,
            timestamp=timestamp,
            metadata=metadata,
            raw_payload=payload,
        )

    def _unclassified(
        self, event_type: str | None, data: dict[str, Any], **extra: Any
    ) -> tuple[PosEventType, dict[str, Any]]:
        """Keep an event the mapping cannot classify instead of dropping it."""
        metadata = {
            "original_event_type": event_type,
            "original_data": data,
        }
        metadata.update({k: v for k, v in extra.items() if v is not None})
        return PosEventType.TABLE_STATUS_CHANGED, metadata

    def _classify_order(self, labelled_items: list[list[Any]]) -> PosEventType | None:
        """Entree classification wins over drink when an order carries both."""
        if self.classifier.has_entree(labelled_items):
            return PosEventType.ENTREES_ORDERED
        if self.classifier.has_drink(labelled_items):
            return PosEventType.FIRST_DRINK
        return None
