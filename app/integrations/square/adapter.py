"""
Square POS normalizer.
Implements BasePosNormalizer for Square order, payment and table webhooks.
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
from app.integrations.square.models import (
    SquareMoney,
    SquareOrderLineItem,
    SquareWebhook,
)
from app.models.pos import PosEventType, PosVendor

logger = structlog.get_logger()

ORDER_EVENTS = ("order.created", "order.updated", "order.fulfillment.updated")
PAYMENT_EVENTS = ("payment.created", "payment.updated")
TABLE_EVENTS = ("table.updated", "table.status.updated")

PAID_STATUSES = ("COMPLETED", "APPROVED")
SEATED_STATUSES = ("SEATED", "ACTIVE")


class SquareNormalizer(BasePosNormalizer):
    """Square normalizer implementing BasePosNormalizer."""

    vendor = PosVendor.SQUARE

    def verify_signature(
        self,
        payload: bytes,
        headers: Dict[str, str],
        request_url: Optional[str] = None,
    ) -> bool:
        """
        Verify Square webhook signature using HMAC SHA256.

        Args:
            payload: Raw request body bytes
            headers: Request headers (x-square-hmacsha256-signature)
            request_url: Full request URL; Square signs notification_url + body

        Returns:
            True if signature is valid, False otherwise
        """
        signature = get_header(headers, "x-square-hmacsha256-signature")
        if not signature:
            logger.warning("No signature provided for Square webhook")
            return False

        if not settings.square_webhook_secret:
            logger.warning("SQUARE_WEBHOOK_SECRET not configured")
            return False

        notification_url = settings.square_notification_url or request_url
        if not notification_url:
            logger.warning("No notification URL available for Square signature")
            return False

        # Square signs with HTTPS; proxies that terminate TLS hand us http://
        if notification_url.startswith("http://"):
            notification_url = notification_url.replace("http://", "https://", 1)

        calculated_hmac = base64.b64encode(
            hmac.new(
                settings.square_webhook_secret.encode("utf-8"),
                notification_url.encode("utf-8") + payload,
                hashlib.sha256,
            ).digest()
        ).decode("utf-8")

        return hmac.compare_digest(calculated_hmac, signature.strip())

    def parse_envelope(self, payload: Dict[str, Any]) -> SquareWebhook:
        return SquareWebhook.model_validate(payload)

    def extract_restaurant_id(
        self, headers: Dict[str, str], payload: Dict[str, Any]
    ) -> Optional[str]:
        """Square locations are restaurants; merchant id is the last resort."""
        envelope = self._envelope(payload)
        data = envelope.get_data()
        return first_present(
            data.get("location_id"),
            data.get("restaurant_id"),
            envelope.location_id,
            envelope.merchant_id,
        )

    def get_supported_events(self) -> List[str]:
        return [*ORDER_EVENTS, *PAYMENT_EVENTS, *TABLE_EVENTS]

    def _line_items(
        self, data: Dict[str, Any]
    ) -> Tuple[List[SquareOrderLineItem], List[Dict[str, Any]]]:
        """Readable line items, plus the raw dicts that failed validation."""
        line_items, unreadable = [], []
        for item in as_list(data.get("line_items")) or as_list(data.get("items")):
            if not isinstance(item, dict):
                continue
            try:
                line_items.append(SquareOrderLineItem.model_validate(item))
            except ValidationError as e:
                logger.debug("Unreadable Square line item kept unclassified", error=str(e))
                unreadable.append(item)
        return line_items, unreadable

    @staticmethod
    def _payment_total(data: Dict[str, Any]) -> Optional[float]:
        """amount_money is in cents; total_amount (legacy) is already in dollars."""
        amount_money = data.get("amount_money")
        if isinstance(amount_money, dict) and amount_money.get("amount") is not None:
            try:
                return SquareMoney.model_validate(amount_money).dollars
            except ValidationError:
                logger.warning("Unreadable Square amount_money", amount_money=amount_money)
        return to_float(data.get("total_amount"))

    def map_event(
        self, event_type: Optional[str], data: Dict[str, Any]
    ) -> Tuple[PosEventType, Dict[str, Any]]:
        status = str(data.get("status") or data.get("state") or "").upper()

        if event_type in ORDER_EVENTS:
            readable, unreadable = self._line_items(data)
            line_items = [li for li in readable if li.is_menu_item]
            metadata = {
                "order_id": first_present(data.get("id"), data.get("order_id")),
                "items": [li.model_dump(exclude_none=True) for li in line_items] + unreadable,
                "table_id": data.get("table_id"),
                "location_id": data.get("location_id"),
            }
            canonical = self._classify_order([li.labels() for li in line_items])
            if canonical is None:
                return self._unclassified(event_type, data, **metadata)
            return canonical, metadata

        if event_type in PAYMENT_EVENTS:
            if status not in PAID_STATUSES:
                return self._unclassified(
                    event_type, data, payment_id=data.get("id"), status=status or None
                )
            metadata = {
                "payment_id": first_present(data.get("id"), data.get("payment_id")),
                "order_id": data.get("order_id"),
                "table_id": data.get("table_id"),
                "total": self._payment_total(data),
                "paid_at": first_present(data.get("updated_at"), data.get("created_at")),
            }
            return PosEventType.CHECK_CLOSED, metadata

        if event_type in TABLE_EVENTS:
            table_id = first_present(data.get("id"), data.get("table_id"))
            if status not in SEATED_STATUSES:
                return self._unclassified(
                    event_type, data, table_id=table_id, status=status or None
                )
            metadata = {
                "table_id": table_id,
                "table_name": first_present(data.get("name"), data.get("table_name")),
                "seated_at": first_present(data.get("updated_at"), data.get("created_at")),
            }
            return PosEventType.SEATED, metadata

        return self._unclassified(event_type, data, table_id=data.get("table_id"))
