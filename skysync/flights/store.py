"""
Flight session storage.

Two cooperating stores behind one interface:

- SqlFlightStore: the durable active_flights table, single source of truth
- LocalMirror: a per-pilot JSON file used while the durable store is
  unreachable

FlightSessionRepository combines them with the offline queue. The mirror
is only ever read after reconciling against the durable store; it is
trusted on its own only when an unsynced create for the same session is
still waiting in the offline queue.
"""

import json
import logging
import re
from pathlib import Path
from typing import List, Optional, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, OperationalError

from skysync.config import config
from skysync.exceptions import FlightAlreadyActiveError, StoreUnavailableError
from skysync.flights.offline_queue import OfflineQueue, QueuedOperation
from skysync.models import ActiveFlight, AdvisoryMode, FlightSession
from skysync.models.base import SessionLocal

logger = logging.getLogger(__name__)


class SqlFlightStore:
    """
    Durable flight sessions in the active_flights table.

    Connectivity failures surface as StoreUnavailableError; a second
    session for the same pilot as FlightAlreadyActiveError.
    """

    def __init__(self, session_factory=None):
        self._session_factory = session_factory or SessionLocal

    def create(self, flight: FlightSession) -> None:
        try:
            with self._session_factory() as session:
                session.add(flight.to_row())
                session.commit()
        except IntegrityError as e:
            raise FlightAlreadyActiveError(flight.pilot_id) from e
        except OperationalError as e:
            raise StoreUnavailableError('create', e) from e

    def get(self, pilot_id: str) -> Optional[FlightSession]:
        try:
            with self._session_factory() as session:
                row = session.scalars(
                    select(ActiveFlight).where(ActiveFlight.pilot_id == pilot_id)
                ).first()
        except OperationalError as e:
            raise StoreUnavailableError('read', e) from e

        return FlightSession.from_row(row) if row else None

    def set_advisory_published(self, pilot_id: str, flight_id: str, published: bool) -> bool:
        """Record the publish outcome on the stored session. False if it is gone."""
        stmt = (
            update(ActiveFlight)
            .where(ActiveFlight.pilot_id == pilot_id, ActiveFlight.id == flight_id)
            .values(advisory_published=published)
        )
        try:
            with self._session_factory() as session:
                result = session.execute(stmt)
                session.commit()
        except OperationalError as e:
            raise StoreUnavailableError('update', e) from e

        return bool(result.rowcount)

    def delete(self, pilot_id: str, flight_id: Optional[str] = None) -> bool:
        """
        Remove the pilot's flight. With flight_id, only that session is
        removed, so a stale delete cannot end a newer flight.
        """
        stmt = delete(ActiveFlight).where(ActiveFlight.pilot_id == pilot_id)
        if flight_id:
            stmt = stmt.where(ActiveFlight.id == flight_id)

        try:
            with self._session_factory() as session:
                result = session.execute(stmt)
                session.commit()
        except OperationalError as e:
            raise StoreUnavailableError('delete', e) from e

        return bool(result.rowcount)

    def list_active(
        self,
        modes: Optional[Sequence[AdvisoryMode]] = None,
        company_id: Optional[str] = None,
    ) -> List[FlightSession]:
        stmt = select(ActiveFlight).order_by(ActiveFlight.start_time)
        if modes:
            stmt = stmt.where(ActiveFlight.mode.in_([m.value for m in modes]))
        if company_id:
            stmt = stmt.where(ActiveFlight.company_id == company_id)

        try:
            with self._session_factory() as session:
                rows = session.scalars(stmt).all()
        except OperationalError as e:
            raise StoreUnavailableError('list', e) from e

        return [FlightSession.from_row(row) for row in rows]


class LocalMirror:
    """
    Fast local copy of one pilot's active flight.

    One JSON file per pilot, so pilots sharing a device never see
    each other's state.
    """

    def __init__(self, directory: Optional[str] = None):
        self.directory = Path(directory or config.flights.local_cache_dir)

    def _path(self, pilot_id: str) -> Path:
        safe = re.sub(r'[^A-Za-z0-9_.-]', '_', pilot_id)
        return self.directory / f'active_flight_{safe}.json'

    def save(self, flight: FlightSession) -> None:
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            self._path(flight.pilot_id).write_text(json.dumps(flight.to_dict()), encoding='utf-8')
        except OSError as e:
            # The mirror is an optimization; the durable store still holds the flight
            logger.warning(f'Could not write local mirror for pilot {flight.pilot_id}: {e}')

    def load(self, pilot_id: str) -> Optional[FlightSession]:
        path = self._path(pilot_id)
        if not path.exists():
            return None
        try:
            return FlightSession.from_dict(json.loads(path.read_text(encoding='utf-8')))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f'Discarding unreadable local mirror for pilot {pilot_id}: {e}')
            self.delete(pilot_id)
            return None

    def delete(self, pilot_id: str) -> None:
        try:
            self._path(pilot_id).unlink(missing_ok=True)
        except OSError as e:
            logger.warning(f'Could not remove local mirror for pilot {pilot_id}: {e}')


class FlightSessionRepository:
    """
    Single interface over the durable store, local mirror and offline queue.

    All flight session reads and writes from the manager go through here.
    """

    def __init__(
        self,
        store: Optional[SqlFlightStore] = None,
        mirror: Optional[LocalMirror] = None,
        queue: Optional[OfflineQueue] = None,
    ):
        self.store = store or SqlFlightStore()
        self.mirror = mirror or LocalMirror()
        self.queue = queue or OfflineQueue()

    # -------------------------------------------------------------------------
    # Offline replay
    # -------------------------------------------------------------------------

    def _apply(self, op: QueuedOperation) -> bool:
        if op.operation == 'create':
            flight = FlightSession.from_dict(op.data)
            try:
                self.store.create(flight)
            except FlightAlreadyActiveError:
                existing = self.store.get(flight.pilot_id)
                if existing and existing.id != flight.id:
                    logger.error(
                        f'Dropping queued flight {flight.id} for pilot {flight.pilot_id}: '
                        f'durable store already holds {existing.id}'
                    )
                    self.mirror.delete(flight.pilot_id)
            return True

        if op.operation == 'delete':
            self.store.delete(op.pilot_id, op.data.get('id'))
            return True

        if op.operation == 'publish':
            self.store.set_advisory_published(op.pilot_id, op.data['id'], op.data['published'])
            return True

        logger.error(f'Unknown queued operation: {op.operation}')
        return False

    def sync(self):
        """Replay queued writes. Returns (synced, failed)."""
        return self.queue.replay(self._apply)

    # -------------------------------------------------------------------------
    # Session access
    # -------------------------------------------------------------------------

    def current(self, pilot_id: str) -> Optional[FlightSession]:
        """
        The pilot's flight as the durable store holds it right now.

        Replays queued writes first and refreshes or clears the mirror.

        Raises:
            StoreUnavailableError when the store cannot be read
        """
        self.sync()

        flight = self.store.get(pilot_id)
        if flight:
            self.mirror.save(flight)
        else:
            self.mirror.delete(pilot_id)
        return flight

    def load(self, pilot_id: str) -> Optional[FlightSession]:
        """
        Reconcile and return the pilot's active flight.

        Durable store wins. While it is unreachable, the mirror stands in
        only for a flight whose create is still queued.
        """
        try:
            return self.current(pilot_id)
        except StoreUnavailableError:
            pending = self.queue.pending_create(pilot_id)
            mirrored = self.mirror.load(pilot_id)
            if pending and mirrored and mirrored.id == pending.data.get('id'):
                logger.warning(f'Durable store unreachable; resuming unsynced flight {mirrored.id}')
                return mirrored
            logger.warning(f'Durable store unreachable; no unsynced flight for pilot {pilot_id}')
            return None

    def save(self, flight: FlightSession) -> bool:
        """
        Persist a new flight.

        Returns True if written durably, False if queued for replay.

        Raises:
            FlightAlreadyActiveError if the store already has one for the pilot
        """
        try:
            self.store.create(flight)
            queued = False
        except StoreUnavailableError:
            self.queue.add('create', flight.pilot_id, flight.to_dict(), description=flight.id)
            queued = True

        self.mirror.save(flight)
        return not queued

    def mark_published(self, flight: FlightSession) -> bool:
        """
        Persist flight.advisory_published everywhere.

        Returns True if written durably, False if queued for replay.
        """
        self.mirror.save(flight)
        try:
            self.store.set_advisory_published(flight.pilot_id, flight.id, flight.advisory_published)
            return True
        except StoreUnavailableError:
            self.queue.add(
                'publish',
                flight.pilot_id,
                {'id': flight.id, 'published': flight.advisory_published},
                description=flight.id,
            )
            return False

    def remove(self, flight: FlightSession) -> bool:
        """
        Remove a flight everywhere.

        Returns True if removed durably, False if queued for replay.
        """
        self.mirror.delete(flight.pilot_id)

        pending = self.queue.pending_create(flight.pilot_id)
        if pending and pending.data.get('id') == flight.id:
            # Never reached the store; dropping the create is enough
            self.queue.discard(pending.id)
            return True

        try:
            self.store.delete(flight.pilot_id, flight.id)
            return True
        except StoreUnavailableError:
            self.queue.add('delete', flight.pilot_id, {'id': flight.id}, description=flight.id)
            return False

    def exists(self, pilot_id: str) -> bool:
        """Whether the pilot has an active flight anywhere we can see."""
        try:
            if self.store.get(pilot_id):
                return True
        except StoreUnavailableError:
            return self.queue.pending_create(pilot_id) is not None or self.mirror.load(pilot_id) is not None
        return self.queue.pending_create(pilot_id) is not None
