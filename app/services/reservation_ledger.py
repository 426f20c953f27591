"""
Reservation ledger API client.
The ledger is the system of record for reservation status; this service only
asks it to advance a status and reads the reservations it needs to correlate
POS events.

API:
- Update status: PATCH /restaurants/{restaurant_id}/reservations/{reservation_id}/status
- Reservations in window: GET /restaurants/{restaurant_id}/reservations?start=&end=&status=
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
import structlog

from app.config import settings
from app.models.pos import Reservation, ReservationStatus
from app.utils.retry import retry_with_backoff

logger = structlog.get_logger()

POS_EVENT_SOURCE = "POS_EVENT"


class ReservationLedgerError(Exception):
    """Base exception for reservation ledger API errors."""

    pass


class ReservationLedgerClient:
    """Client for the external reservation ledger."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize reservation ledger client.

        Args:
            base_url: Ledger base URL (defaults to settings)
            api_key: Bearer token for the ledger (defaults to settings)
            transport: Optional httpx transport (tests)
        """
        self.base_url = (base_url or settings.reservation_ledger_base_url).rstrip("/")
        api_key = api_key if api_key is not None else settings.reservation_ledger_api_key

        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(settings.http_timeout_seconds),
            headers=headers,
            transport=transport,
        )

    @retry_with_backoff(
        max_attempts=3,
        initial_delay=settings.retry_initial_delay_seconds,
        multiplier=settings.retry_backoff_multiplier,
    )
    async def update_status(
        self,
        restaurant_id: str,
        reservation_id: str,
        new_status: ReservationStatus,
        source: str = POS_EVENT_SOURCE,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Ask the ledger to move a reservation to a new status.
        The ledger applies its own consistency checks and ignores no-op changes.

        Args:
            restaurant_id: Restaurant ID
            reservation_id: Reservation ID
            new_status: Target status
            source: Origin of the change recorded in the status history
            metadata: Extra context stored with the status change

        Returns:
            Ledger response body
        """
        endpoint = f"/restaurants/{restaurant_id}/reservations/{reservation_id}/status"
        body = {
            "status": new_status.value,
            "source": source,
            "metadata": metadata or {},
        }

        logger.info(
            "Updating reservation status",
            restaurant_id=restaurant_id,
            reservation_id=reservation_id,
            new_status=new_status.value,
            source=source,
        )

        response = await self.client.patch(endpoint, json=body)
        response.raise_for_status()
        return response.json() if response.content else {}

    @retry_with_backoff(
        max_attempts=3,
        initial_delay=settings.retry_initial_delay_seconds,
        multiplier=settings.retry_backoff_multiplier,
    )
    async def get_reservations_in_window(
        self,
        restaurant_id: str,
        start_time: datetime,
        end_time: datetime,
        status: Optional[ReservationStatus] = None,
    ) -> List[Reservation]:
        """
        Get reservations whose start time falls inside a window.

        Args:
            restaurant_id: Restaurant ID
            start_time: Start of window (inclusive)
            end_time: End of window (inclusive)
            status: Optional status filter

        Returns:
            List of reservations ordered by start time
        """
        params = {"start": start_time.isoformat(), "end": end_time.isoformat()}
        if status is not None:
            params["status"] = status.value

        response = await self.client.get(
            f"/restaurants/{restaurant_id}/reservations", params=params
        )
        response.raise_for_status()

        data = response.json()
        rows = data.get("reservations", []) if isinstance(data, dict) else data

        reservations = []
        for row in rows or []:
            try:
                reservations.append(Reservation.model_validate(row))
            except ValueError as e:
                logger.warning(
                    "Skipping unreadable reservation from ledger",
                    restaurant_id=restaurant_id,
                    reservation_id=row.get("id") if isinstance(row, dict) else None,
                    error=str(e),
                )
        return reservations

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()
