"""
Best-effort correlation of POS events to reservations.

POS table identifiers are signals, not ground truth. The correlator looks at
SEATED reservations around the event time and prefers the one assigned to
the event's table; when the ledger tracks no table assignments it falls back
to the most recently seated reservation in the window.
"""

from datetime import datetime, timedelta
from typing import List, Optional

import structlog

from app.config import settings
from app.models.pos import Reservation, ReservationStatus
from app.services.reservation_ledger import ReservationLedgerClient

logger = structlog.get_logger()


class ReservationCorrelator:
    """Find the reservation a POS event belongs to."""

    def __init__(
        self,
        ledger: ReservationLedgerClient,
        window: Optional[timedelta] = None,
        correlate_without_table: Optional[bool] = None,
    ):
        self.ledger = ledger
        self.window = window or timedelta(minutes=settings.correlation_window_minutes)
        self.correlate_without_table = (
            settings.correlate_without_table
            if correlate_without_table is None
            else correlate_without_table
        )

    async def find_reservation(
        self,
        restaurant_id: str,
        table_id: Optional[str],
        timestamp: datetime,
    ) -> Optional[str]:
        """
        Find the SEATED reservation an event most likely belongs to.

        Never raises: a miss (or a ledger failure) returns None and the
        event is left unlinked for reconciliation.

        Args:
            restaurant_id: Restaurant the event came from
            table_id: POS table id, if the event carried one
            timestamp: Event time the ±window is centred on

        Returns:
            Reservation id, or None on a correlation miss
        """
        if not table_id and not self.correlate_without_table:
            logger.info(
                "POS event has no table, skipping correlation",
                restaurant_id=restaurant_id,
            )
            return None

        try:
            candidates = await self.ledger.get_reservations_in_window(
                restaurant_id,
                timestamp - self.window,
                timestamp + self.window,
                status=ReservationStatus.SEATED,
            )
        except Exception as e:
            logger.warning(
                "Reservation lookup failed, treating as correlation miss",
                restaurant_id=restaurant_id,
                table_id=table_id,
                error=str(e),
            )
            return None

        reservation = self._pick(candidates, table_id)
        if reservation is None:
            logger.info(
                "No reservation matched POS event",
                restaurant_id=restaurant_id,
                table_id=table_id,
                candidates=len(candidates),
            )
            return None

        logger.info(
            "Correlated POS event to reservation",
            restaurant_id=restaurant_id,
            table_id=table_id,
            reservation_id=reservation.id,
        )
        return reservation.id

    @staticmethod
    def _pick(candidates: List[Reservation], table_id: Optional[str]) -> Optional[Reservation]:
        # The ledger may ignore the status filter
        seated = [r for r in candidates if r.status == ReservationStatus.SEATED]
        if not seated:
            return None

        assigned = [r for r in seated if r.table_id]
        if assigned:
            if not table_id:
                return None
            matches = [r for r in assigned if str(r.table_id) == str(table_id)]
            return _most_recently_seated(matches)

        # No table assignments tracked upstream
        return _most_recently_seated(seated)


def _most_recently_seated(reservations: List[Reservation]) -> Optional[Reservation]:
    if not reservations:
        return None
    return max(reservations, key=lambda r: r.seated_at or r.start_at)
