"""
Flight session manager - one pilot's flight lifecycle.

State machine per pilot:

    inactive --start--> active --end--> inactive

- start: rejected if the pilot already has a flight. Persists durably
  (queued when offline), mirrors locally, starts the position watch in
  live-position mode and publishes the advisory once, best-effort. Route
  boxes above the confirmation threshold need force.
- attach/refresh: reconcile with the durable store on (re)load and before
  every request, so a flight ended elsewhere is never reported here.
- end: stops the position watch before anything else, clears the
  mirror, removes the durable record (queued when offline). Published
  advisories are not withdrawn; they lapse once refreshes stop.

Advisory publication never gates the lifecycle: a failed publish still
leaves the flight started.
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from skysync.airspace.advisory import AdvisoryPublisher
from skysync.config import config
from skysync.exceptions import FlightAlreadyActiveError, StoreUnavailableError
from skysync.flights.position import PositionFix, PositionWatch, PushPositionSource
from skysync.flights.store import FlightSessionRepository
from skysync.flights.timer import ElapsedTimer
from skysync.models import AdvisoryMode, FlightSession, MissionLookup

logger = logging.getLogger(__name__)

Coordinate = Tuple[float, float]


@dataclass
class FlightSnapshot:
    """Read-only view of a pilot's flight for display."""
    active: bool
    mode: AdvisoryMode = AdvisoryMode.NONE
    flight_id: Optional[str] = None
    mission_id: Optional[str] = None
    start_time: Optional[datetime] = None
    elapsed_seconds: int = 0
    position: Optional[PositionFix] = None
    advisory_published: bool = False

    @property
    def elapsed_minutes(self) -> int:
        return self.elapsed_seconds // 60

    def to_dict(self) -> dict:
        return {
            'active': self.active,
            'mode': self.mode.value,
            'flight_id': self.flight_id,
            'mission_id': self.mission_id,
            'start_time': self.start_time.isoformat() if self.start_time else None,
            'elapsed_seconds': self.elapsed_seconds,
            'elapsed_minutes': self.elapsed_minutes,
            'elapsed_display': format_elapsed(self.elapsed_minutes),
            'position': self.position.to_dict() if self.position else None,
            'advisory_published': self.advisory_published,
        }


def format_elapsed(minutes: int) -> str:
    """Compact elapsed time, e.g. '1h 05m' or '12m'."""
    hours, mins = divmod(max(0, minutes), 60)
    if hours:
        return f'{hours}h {mins:02d}m'
    return f'{mins}m'


class FlightSessionManager:
    """
    Drives one pilot's flight session.

    Transitions are serialized by a per-manager lock, so two concurrent
    starts for the same pilot cannot both succeed; the unique pilot_id
    constraint covers managers in other processes.
    """

    def __init__(
        self,
        pilot_id: str,
        company_id: str,
        repository: Optional[FlightSessionRepository] = None,
        publisher: Optional[AdvisoryPublisher] = None,
        missions: Optional[MissionLookup] = None,
        position_source=None,
        default_position: Optional[Coordinate] = None,
        tick_interval: float = 1.0,
    ):
        self.pilot_id = pilot_id
        self.company_id = company_id
        self.repository = repository or FlightSessionRepository()
        self.publisher = publisher
        self.missions = missions or MissionLookup()
        self.position_source = position_source or PushPositionSource()
        self.tick_interval = tick_interval

        self._watch = PositionWatch(
            self.position_source,
            default_position or config.flights.default_position,
        )
        self._lock = threading.RLock()
        self._flight: Optional[FlightSession] = None
        self._timer: Optional[ElapsedTimer] = None

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _resume(self, flight: FlightSession) -> None:
        self._flight = flight
        if flight.mode == AdvisoryMode.LIVE_POSITION:
            self._watch.start()
        self._start_timer(flight.start_time)

    def _start_timer(self, start_time: datetime) -> None:
        self._stop_timer()
        self._timer = ElapsedTimer(start_time, interval=self.tick_interval)
        self._timer.start()

    def _stop_timer(self) -> None:
        if self._timer:
            self._timer.stop()
            self._timer = None

    def _route_for(self, mission_id: Optional[str]) -> Optional[List[Coordinate]]:
        if not mission_id:
            return None
        try:
            mission = self.missions.get(mission_id)
        except SQLAlchemyError as e:
            logger.warning(f'Could not snapshot route for mission {mission_id}: {e}')
            return None
        return mission.route if mission else None

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self._flight is not None

    @property
    def flight(self) -> Optional[FlightSession]:
        with self._lock:
            return self._flight

    def _adopt(self, flight: Optional[FlightSession]) -> None:
        """Make local state match the stored flight (or its absence)."""
        current = self._flight
        if flight is not None and current is not None and current.id == flight.id:
            self._flight = flight
            return

        self._watch.stop()
        self._stop_timer()
        self._flight = None
        if flight is not None:
            self._resume(flight)

    def attach(self) -> Optional[FlightSession]:
        """
        Reconcile with the durable store on client (re)attachment.

        Adopts the stored flight and resumes its watch and timer, or
        clears everything local when the store has none.
        """
        with self._lock:
            flight = self.repository.load(self.pilot_id)
            self._adopt(flight)

            if flight is None:
                logger.debug(f'No active flight for pilot {self.pilot_id}')
                return None

            logger.info(
                f'Resumed flight {flight.id} for pilot {self.pilot_id} '
                f'({flight.mode.value}, {flight.elapsed_seconds() // 60} min elapsed)'
            )
            return flight

    def refresh(self) -> Optional[FlightSession]:
        """
        Re-read the durable store and drop or replace a local flight that
        was ended or restarted elsewhere.

        Local state is kept as is while the store is unreachable.
        """
        with self._lock:
            try:
                flight = self.repository.current(self.pilot_id)
            except StoreUnavailableError:
                logger.debug(f'Store unreachable; keeping local state for pilot {self.pilot_id}')
                return self._flight

            previous = self._flight
            self._adopt(flight)
            if previous is not None and (flight is None or flight.id != previous.id):
                logger.info(f'Flight {previous.id} for pilot {self.pilot_id} was ended elsewhere')
            return flight

    def start_flight(
        self,
        mission_id: Optional[str] = None,
        mode: AdvisoryMode = AdvisoryMode.NONE,
        start_position: Optional[Coordinate] = None,
        device_id: Optional[str] = None,
        pilot_name: Optional[str] = None,
        route: Optional[List[Coordinate]] = None,
        drone_id: Optional[str] = None,
        publish: bool = True,
        force: bool = False,
    ) -> bool:
        """
        Start a flight for this pilot.

        Returns False when the pilot already has an active flight, or
        when live-position mode is requested without a start position.

        Raises:
            AdvisoryAreaError when the route box is refused, or needs
            confirmation and force is not set. Nothing is persisted.
        """
        mode = AdvisoryMode(mode)

        with self._lock:
            self.refresh()

            if self._flight is not None:
                logger.warning(f'Pilot {self.pilot_id} already has active flight {self._flight.id}')
                return False

            if mode == AdvisoryMode.LIVE_POSITION and start_position is None:
                logger.warning(f'Live-position flight for pilot {self.pilot_id} needs a start position')
                return False

            self.repository.sync()
            if self.repository.exists(self.pilot_id):
                logger.warning(f'Pilot {self.pilot_id} already has an active flight in the store')
                return False

            flight = FlightSession.new(
                pilot_id=self.pilot_id,
                company_id=self.company_id,
                mode=mode,
                start_position=start_position,
                mission_id=mission_id,
                route_snapshot=route or self._route_for(mission_id),
                device_id=device_id,
                pilot_name=pilot_name,
                drone_id=drone_id,
            )

            publishing = publish and mode != AdvisoryMode.NONE and self.publisher is not None
            if publishing:
                self.publisher.check_area(flight, force=force)

            try:
                durable = self.repository.save(flight)
            except FlightAlreadyActiveError:
                logger.warning(f'Pilot {self.pilot_id} already has an active flight in the store')
                return False

            self._resume(flight)

            if not durable:
                logger.warning(f'Flight {flight.id} started offline; durable write queued')
            logger.info(f'Started flight {flight.id} for pilot {self.pilot_id} ({mode.value})')

            if publishing:
                result = self.publisher.publish(flight)
                if result.success:
                    flight.advisory_published = True
                    self.repository.mark_published(flight)
                else:
                    logger.warning(f'Initial advisory for flight {flight.id} not published: {result.error}')

            return True

    def end_flight(self) -> Optional[int]:
        """
        End the active flight.

        Returns elapsed minutes, or None if no flight was active.
        """
        with self._lock:
            self.refresh()

            flight = self._flight
            if flight is None:
                return None

            # Must happen before returning so no fix lands after the session is gone
            self._watch.stop()
            self._stop_timer()

            elapsed_minutes = flight.elapsed_seconds() // 60
            self._flight = None

            if not self.repository.remove(flight):
                logger.warning(f'Flight {flight.id} ended offline; durable delete queued')

            if self.publisher:
                self.publisher.end(flight)

            logger.info(f'Ended flight {flight.id} for pilot {self.pilot_id} after {elapsed_minutes} min')
            return elapsed_minutes

    def sync(self):
        """Replay queued offline writes. Returns (synced, failed)."""
        return self.repository.sync()

    # -------------------------------------------------------------------------
    # Read-only views
    # -------------------------------------------------------------------------

    def current_position(self) -> Optional[PositionFix]:
        """Latest fix (or the default position) while watching, else None."""
        if not self._watch.running:
            return None
        return self._watch.current()

    def snapshot(self) -> FlightSnapshot:
        with self._lock:
            flight = self._flight
            if flight is None:
                return FlightSnapshot(active=False)

            elapsed = self._timer.elapsed_seconds if self._timer else flight.elapsed_seconds()
            return FlightSnapshot(
                active=True,
                mode=flight.mode,
                flight_id=flight.id,
                mission_id=flight.mission_id,
                start_time=flight.start_time,
                elapsed_seconds=elapsed,
                position=self.current_position(),
                advisory_published=flight.advisory_published,
            )

    def shutdown(self) -> None:
        """Release threads and subscriptions without ending the flight."""
        with self._lock:
            self._watch.stop()
            self._stop_timer()


class FlightSessionManagers:
    """
    Per-pilot managers for the HTTP surface.

    Managers are created and attached on first use and re-read the
    durable store on every later lookup, so several workers or devices
    serving the same pilot agree on whether a flight is active.
    """

    def __init__(
        self,
        repository: Optional[FlightSessionRepository] = None,
        publisher: Optional[AdvisoryPublisher] = None,
        missions: Optional[MissionLookup] = None,
    ):
        self.repository = repository or FlightSessionRepository()
        self.publisher = publisher
        self.missions = missions or MissionLookup()
        self._lock = threading.Lock()
        self._managers: Dict[str, FlightSessionManager] = {}

    def get(self, pilot_id: str, company_id: str) -> FlightSessionManager:
        with self._lock:
            manager = self._managers.get(pilot_id)
            created = manager is None
            if created:
                manager = FlightSessionManager(
                    pilot_id=pilot_id,
                    company_id=company_id,
                    repository=self.repository,
                    publisher=self.publisher,
                    missions=self.missions,
                )
                self._managers[pilot_id] = manager

        if created:
            manager.attach()
        else:
            manager.refresh()
        return manager

    def shutdown(self) -> None:
        with self._lock:
            managers = list(self._managers.values())
            self._managers.clear()
        for manager in managers:
            manager.shutdown()
