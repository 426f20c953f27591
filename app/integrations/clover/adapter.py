"""
Clover POS normalizer.
Implements BasePosNormalizer for Clover order, payment and table events.
Webhook auth: X-Clover-Auth static comparison (no body HMAC).
"""

import secrets
from typing import Any, Dict, List, Optional, Tuple

import structlog
from pydantic import ValidationError

from app.config import settings
from app.integrations.base import (
    BasePosNormalizer,
    cents_to_dollars,
    first_present,
    get_header,
    to_float,
)
from app.integrations.clover.models import CloverLineItem, CloverWebhook, unwrap_elements
from app.models.pos import PosEventType, PosVendor

logger = structlog.get_logger()

ORDER_EVENTS = ("ORDER_CREATED", "ORDER_UPDATED", "LINE_ITEM_ADDED")
PAYMENT_EVENTS = ("PAYMENT_CREATED", "PAYMENT_UPDATED")
TABLE_EVENTS = ("TABLE_UPDATED", "TABLE_SEATED")

PAID_STATUSES = ("PAID", "AUTHORIZED")


def _ref_id(value: Any) -> Optional[str]:
    """Clover references are {"id": ...} objects."""
    if isinstance(value, dict):
        return value.get("id")
    return value


class CloverNormalizer(BasePosNormalizer):
    """Clover normalizer. Webhook verification via X-Clover-Auth (static compare)."""

    vendor = PosVendor.CLOVER

    def verify_signature(
        self,
        payload: bytes,
        headers: Dict[str, str],
        request_url: Optional[str] = None,
    ) -> bool:
        """
        Verify webhook using X-Clover-Auth header.
        Clover does NOT sign the body; compare header value with configured auth code.
        """
        signature = get_header(headers, "X-Clover-Auth")
        if not signature or not str(signature).strip():
            return False
        if not settings.clover_webhook_auth_code:
            logger.warning("CLOVER_WEBHOOK_AUTH_CODE not configured")
            return False
        return secrets.compare_digest(
            signature.strip(),
            settings.clover_webhook_auth_code.strip(),
        )

    def parse_envelope(self, payload: Dict[str, Any]) -> CloverWebhook:
        return CloverWebhook.model_validate(payload)

    def extract_restaurant_id(
        self, headers: Dict[str, str], payload: Dict[str, Any]
    ) -> Optional[str]:
        """Clover merchants are restaurants."""
        envelope = self._envelope(payload)
        data = envelope.get_data()
        return first_present(
            data.get("merchantId"),
            data.get("merchant_id"),
            _ref_id(data.get("merchant")),
            data.get("restaurantId"),
            envelope.merchantId,
        )

    def get_supported_events(self) -> List[str]:
        return [*ORDER_EVENTS, *PAYMENT_EVENTS, *TABLE_EVENTS]

    def _line_items(
        self, data: Dict[str, Any]
    ) -> Tuple[List[CloverLineItem], List[Dict[str, Any]]]:
        """Readable line items, plus the raw dicts that failed validation."""
        raw_items = unwrap_elements(data.get("lineItems")) or unwrap_elements(data.get("items"))
        line_items, unreadable = [], []
        for item in raw_items:
            if not isinstance(item, dict):
                continue
            try:
                line_items.append(CloverLineItem.model_validate(item))
            except ValidationError as e:
                logger.debug("Unreadable Clover line item kept unclassified", error=str(e))
                unreadable.append(item)
        return line_items, unreadable

    @staticmethod
    def _is_paid(data: Dict[str, Any]) -> bool:
        status = str(data.get("status") or "").upper()
        result = str(data.get("result") or "").upper()
        return status in PAID_STATUSES or result == "SUCCESS"

    def map_event(
        self, event_type: Optional[str], data: Dict[str, Any]
    ) -> Tuple[PosEventType, Dict[str, Any]]:
        table_id = first_present(_ref_id(data.get("table")), data.get("tableId"))

        if event_type in ORDER_EVENTS:
            line_items, unreadable = self._line_items(data)
            metadata = {
                "order_id": first_present(data.get("id"), data.get("orderId")),
                "items": [li.model_dump(exclude_none=True) for li in line_items] + unreadable,
                "table_id": table_id,
                "merchant_id": first_present(data.get("merchantId"), data.get("merchant_id")),
            }
            canonical = self._classify_order([li.labels() for li in line_items])
            if canonical is None:
                return self._unclassified(event_type, data, **metadata)
            return canonical, metadata

        if event_type in PAYMENT_EVENTS:
            if not self._is_paid(data):
                return self._unclassified(
                    event_type, data, payment_id=data.get("id"), table_id=table_id
                )
            amount = data.get("amount")
            metadata = {
                "payment_id": first_present(data.get("id"), data.get("paymentId")),
                "order_id": first_present(_ref_id(data.get("order")), data.get("orderId")),
                "table_id": table_id,
                "total": (
                    cents_to_dollars(amount)
                    if amount not in (None, "")
                    else to_float(data.get("totalAmount"))
                ),
                "paid_at": first_present(data.get("createdTime"), data.get("timestamp")),
            }
            return PosEventType.CHECK_CLOSED, metadata

        if event_type in TABLE_EVENTS:
            metadata = {
                "table_id": first_present(data.get("id"), data.get("tableId")),
                "table_name": first_present(data.get("name"), data.get("tableName")),
                "seated_at": first_present(data.get("seatedTime"), data.get("timestamp")),
            }
            return PosEventType.SEATED, metadata

        return self._unclassified(event_type, data, table_id=table_id)
