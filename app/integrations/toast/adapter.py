"""
Toast POS normalizer.
Implements BasePosNormalizer for Toast order, check and table webhooks.
Webhook auth: Toast-Signature header, base64 HMAC-SHA256 of the raw body.
"""

import base64
import hashlib
import hmac
from typing import Any, Dict, List, Optional, Tuple

import structlog
from pydantic import ValidationError

from app.config import settings
from app.integrations.base import (
    BasePosNormalizer,
    as_list,
    first_present,
    get_header,
    to_float,
)
from app.integrations.toast.models import ToastSelection, ToastWebhook
from app.models.pos import PosEventType, PosVendor

logger = structlog.get_logger()

ORDER_EVENTS = ("order.created", "order.updated")
CHECK_CLOSED_EVENTS = ("check.closed", "check.paid")
SEATING_EVENTS = ("table.status", "table.seated")


def _ref_id(value: Any) -> Optional[str]:
    """Toast references are either plain ids or {"id"/"guid": ...} objects."""
    if isinstance(value, dict):
        return first_present(value.get("id"), value.get("guid"))
    return value


class ToastNormalizer(BasePosNormalizer):
    """Toast normalizer implementing BasePosNormalizer."""

    vendor = PosVendor.TOAST

    def verify_signature(
        self,
        payload: bytes,
        headers: Dict[str, str],
        request_url: Optional[str] = None,
    ) -> bool:
        """
        Verify Toast webhook signature using HMAC SHA256.

        Args:
            payload: Raw request body bytes
            headers: Request headers (Toast-Signature)
            request_url: Unused, Toast signs the body only

        Returns:
            True if signature is valid, False otherwise
        """
        signature = get_header(headers, "Toast-Signature")
        if not signature:
            logger.warning("No signature provided for Toast webhook")
            return False

        if not settings.toast_webhook_secret:
            logger.warning("TOAST_WEBHOOK_SECRET not configured")
            return False

        calculated = base64.b64encode(
            hmac.new(
                settings.toast_webhook_secret.encode("utf-8"),
                payload,
                hashlib.sha256,
            ).digest()
        ).decode("utf-8")

        return hmac.compare_digest(calculated, signature.strip())

    def parse_envelope(self, payload: Dict[str, Any]) -> ToastWebhook:
        return ToastWebhook.model_validate(payload)

    def extract_restaurant_id(
        self, headers: Dict[str, str], payload: Dict[str, Any]
    ) -> Optional[str]:
        """Restaurant comes from the entity, falling back to Toast's restaurant header."""
        data = self._envelope(payload).get_data()
        return first_present(
            data.get("restaurantId"),
            data.get("locationId"),
            data.get("restaurantGuid"),
            get_header(headers, "Toast-Restaurant-External-ID"),
        )

    def get_supported_events(self) -> List[str]:
        return [*ORDER_EVENTS, *CHECK_CLOSED_EVENTS, *SEATING_EVENTS]

    def _selections(
        self, data: Dict[str, Any]
    ) -> Tuple[List[ToastSelection], List[Dict[str, Any]]]:
        """
        Line items from data.items, or from every check's selections.

        Returns the readable selections and the raw dicts that failed validation,
        which are still kept on the event.
        """
        raw_items = data.get("items")
        if raw_items is None:
            raw_items = [
                selection
                for check in as_list(data.get("checks"))
                if isinstance(check, dict)
                for selection in as_list(check.get("selections"))
            ]

        selections, unreadable = [], []
        for item in as_list(raw_items):
            if not isinstance(item, dict):
                continue
            try:
                selections.append(ToastSelection.model_validate(item))
            except ValidationError as e:
                logger.debug("Unreadable Toast selection kept unclassified", error=str(e))
                unreadable.append(item)
        return selections, unreadable

    def map_event(
        self, event_type: Optional[str], data: Dict[str, Any]
    ) -> Tuple[PosEventType, Dict[str, Any]]:
        table_id = first_present(_ref_id(data.get("table")), data.get("tableId"))

        if event_type in ORDER_EVENTS:
            selections, unreadable = self._selections(data)
            items = [s.model_dump(exclude_none=True) for s in selections] + unreadable
            metadata = {
                "order_id": first_present(data.get("id"), data.get("orderId"), data.get("guid")),
                "items": items,
                "table_id": table_id,
                "check_id": first_present(_ref_id(data.get("check")), data.get("checkId")),
            }
            canonical = self._classify_order([s.labels() for s in selections])
            if canonical is None:
                return self._unclassified(event_type, data, **metadata)
            return canonical, metadata

        if event_type in CHECK_CLOSED_EVENTS:
            metadata = {
                "check_id": first_present(data.get("id"), data.get("checkId"), data.get("guid")),
                "table_id": table_id,
                "total": to_float(first_present(data.get("total"), data.get("amount"))),
                "paid_at": first_present(data.get("closedAt"), data.get("paidAt")),
            }
            return PosEventType.CHECK_CLOSED, metadata

        if event_type in SEATING_EVENTS:
            metadata = {
                "table_id": first_present(data.get("id"), data.get("tableId"), data.get("guid")),
                "table_name": first_present(data.get("name"), data.get("tableName")),
                "seated_at": data.get("seatedAt"),
            }
            return PosEventType.SEATED, metadata

        return self._unclassified(event_type, data, table_id=table_id)
