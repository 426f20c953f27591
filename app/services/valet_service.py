"""
Valet service API client.
Tells the valet service a check was dropped so drivers can start bringing
the guest's car around.
"""

from typing import Any, Dict, Optional

import httpx
import structlog

from app.config import settings

logger = structlog.get_logger()


class ValetServiceClient:
    """Client for the external valet service."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.valet_service_base_url).rstrip("/")
        api_key = api_key if api_key is not None else settings.valet_service_api_key

        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"

        self.client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(settings.http_timeout_seconds),
            headers=headers,
            transport=transport,
        )

    async def handle_check_dropped(
        self,
        restaurant_id: str,
        table_id: Optional[str],
        reservation_id: Optional[str],
    ) -> Dict[str, Any]:
        """
        Notify the valet service that a table's check was closed.

        Args:
            restaurant_id: Restaurant ID
            table_id: POS table the check belonged to
            reservation_id: Reservation the check was linked to

        Returns:
            Valet service response body (e.g. the updated ticket id)
        """
        response = await self.client.post(
            f"/restaurants/{restaurant_id}/valet/check-dropped",
            json={"table_id": table_id, "reservation_id": reservation_id},
        )
        response.raise_for_status()

        logger.info(
            "Valet notified of dropped check",
            restaurant_id=restaurant_id,
            reservation_id=reservation_id,
            table_id=table_id,
        )
        return response.json() if response.content else {}

    async def close(self):
        """Close the HTTP client."""
        await self.client.aclose()
