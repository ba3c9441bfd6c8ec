"""
Flight registry - read-only view of airborne flights for the scheduler.

Only the flight session manager writes flights; the scheduler reads a
fresh snapshot at the start of every cycle. A flight that ends mid-cycle
simply does not appear in the next snapshot.
"""

import logging
from typing import List, Optional

from skysync.flights.store import SqlFlightStore
from skysync.models import AdvisoryMode, FlightSession

logger = logging.getLogger(__name__)


class FlightRegistry:
    """Queries over the durable flight store, by advisory mode."""

    def __init__(self, store: Optional[SqlFlightStore] = None):
        self._store = store or SqlFlightStore()

    def publishing_flights(self) -> List[FlightSession]:
        """Every flight in route-advisory or live-position mode."""
        return self._store.list_active(
            modes=[AdvisoryMode.ROUTE_ADVISORY, AdvisoryMode.LIVE_POSITION]
        )

    def route_flights(self) -> List[FlightSession]:
        """Route-advisory flights with a linked mission."""
        return [
            f for f in self._store.list_active(modes=[AdvisoryMode.ROUTE_ADVISORY])
            if f.mission_id
        ]

    def live_flights(self) -> List[FlightSession]:
        """Live-position flights with a recorded start coordinate."""
        return [
            f for f in self._store.list_active(modes=[AdvisoryMode.LIVE_POSITION])
            if f.start_position is not None
        ]

    def active_flights(self, company_id: Optional[str] = None) -> List[FlightSession]:
        """All active flights, optionally for one tenant."""
        return self._store.list_active(company_id=company_id)
