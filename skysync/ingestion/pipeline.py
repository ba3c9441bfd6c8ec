"""
Refresh scheduler - keeps advisories alive and traffic fresh.

One background loop, one cycle per interval (default 60s). Each cycle:
1. Publish: refresh route advisories (flights with a linked mission)
2. Publish: refresh live-position advisories (flights with a start coordinate)
3. Ingest: fetch nearby traffic per flight location, merge, upsert once
4. Evict: drop beacons older than the TTL

Per-flight calls in steps 1-3 run on a bounded worker pool and are
joined with a per-call timeout. A timed-out call cannot be interrupted
once running, so before ingestion starts the scheduler waits up to one
more call timeout for overrunning publishes to finish; anything still
running after that is logged and left to complete in the background.
One flight's failure never stops the others or the eviction.

With viewer gating on, step 3 is skipped while no traffic map has sent
a heartbeat recently; eviction still runs.

The flight list is read fresh at the start of each cycle; a flight
that ends mid-cycle is simply absent from the next one.
"""

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeoutError, wait
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from skysync.airspace.advisory import AdvisoryPublisher, PublishResult
from skysync.airspace.client import SafeSkyClient
from skysync.config import config
from skysync.exceptions import StoreUnavailableError
from skysync.flights.registry import FlightRegistry
from skysync.ingestion.beacons import BeaconIngestor
from skysync.ingestion.viewers import ViewerHeartbeats
from skysync.models import AdvisoryMode, FlightSession, MissionLookup

logger = logging.getLogger(__name__)

Coordinate = Tuple[float, float]


@dataclass
class CycleReport:
    """Aggregated outcome of one refresh cycle."""
    started_at: float = field(default_factory=time.time)
    duration_ms: float = 0.0

    route_published: int = 0
    route_failed: int = 0
    live_published: int = 0
    live_failed: int = 0
    skipped: int = 0

    beacon_locations: int = 0
    beacon_failed: int = 0
    beacons_received: int = 0
    beacons_stored: int = 0
    beacons_evicted: int = 0
    beacons_skipped: bool = False
    overrunning: int = 0

    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not (self.route_failed or self.live_failed or self.beacon_failed or self.errors)

    def to_dict(self) -> dict:
        return {
            'started_at': self.started_at,
            'duration_ms': round(self.duration_ms, 2),
            'advisories': {
                'route_published': self.route_published,
                'route_failed': self.route_failed,
                'live_published': self.live_published,
                'live_failed': self.live_failed,
                'skipped': self.skipped,
            },
            'beacons': {
                'locations': self.beacon_locations,
                'failed': self.beacon_failed,
                'received': self.beacons_received,
                'stored': self.beacons_stored,
                'evicted': self.beacons_evicted,
                'skipped_no_viewers': self.beacons_skipped,
            },
            'overrunning': self.overrunning,
            'errors': list(self.errors),
        }


class RefreshScheduler:
    """
    Manages the refresh lifecycle.

    Coordinates the advisory publisher and beacon ingestor over the
    current set of airborne flights. Can run as a background thread.
    """

    def __init__(
        self,
        publisher: Optional[AdvisoryPublisher] = None,
        ingestor: Optional[BeaconIngestor] = None,
        registry: Optional[FlightRegistry] = None,
        missions: Optional[MissionLookup] = None,
        max_workers: Optional[int] = None,
        call_timeout: Optional[float] = None,
        viewers: Optional[ViewerHeartbeats] = None,
        require_viewers: Optional[bool] = None,
    ):
        """
        Initialize the scheduler.

        Args:
            publisher: Advisory publisher (created from config if None)
            ingestor: Beacon ingestor (created from config if None)
            registry: Read-only view of active flights
            missions: Mission lookup for beacon query locations
            max_workers: Upper bound on concurrent per-flight calls
            call_timeout: Seconds to wait for one flight's work item
            viewers: Map viewer heartbeats for gating beacon fetches
            require_viewers: Skip beacon fetches while no map is open
                             (defaults to BEACON_REQUIRE_VIEWERS)
        """
        client = None
        if publisher is None or ingestor is None:
            client = SafeSkyClient.from_config()

        self.missions = missions or MissionLookup()
        self.publisher = publisher or AdvisoryPublisher(client, missions=self.missions)
        self.ingestor = ingestor or BeaconIngestor(client)
        self.registry = registry or FlightRegistry()
        self.max_workers = max_workers or config.scheduler.max_workers
        self.call_timeout = call_timeout or config.scheduler.call_timeout_seconds
        self.viewers = viewers or ViewerHeartbeats()
        self.require_viewers = config.beacons.require_viewers if require_viewers is None else require_viewers

        # State tracking
        self._stop_event = threading.Event()
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()
        self._overrun: List[Future] = []
        self._last_cycle_time: float = 0
        self._cycle_count: int = 0
        self._error_count: int = 0
        self._last_report: Optional[CycleReport] = None

        # Callbacks for external integration
        self._on_cycle_callbacks: List[Callable[[CycleReport], None]] = []

    def add_cycle_callback(self, callback: Callable[[CycleReport], None]) -> None:
        """
        Register callback to be invoked after each cycle.

        Callback receives the cycle's report.
        """
        self._on_cycle_callbacks.append(callback)

    # -------------------------------------------------------------------------
    # Worker pool
    # -------------------------------------------------------------------------

    def _pool(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self.max_workers,
                    thread_name_prefix='refresh-worker',
                )
            return self._executor

    def _run_parallel(self, fn: Callable, items: list, label: str) -> list:
        """
        Run fn over items on the pool and join them.

        Returns one (item, result, error) triple per item, in order.
        A raised exception or timeout becomes the error string.
        """
        if not items:
            return []

        pool = self._pool()
        futures = [(item, pool.submit(fn, item)) for item in items]

        outcomes = []
        for item, future in futures:
            try:
                outcomes.append((item, future.result(timeout=self.call_timeout), None))
            except FutureTimeoutError:
                if not future.cancel():
                    self._overrun.append(future)
                logger.error(f'{label} timed out after {self.call_timeout}s')
                outcomes.append((item, None, 'timeout'))
            except Exception as e:
                logger.error(f'{label} failed: {e}')
                outcomes.append((item, None, str(e)))
        return outcomes

    # -------------------------------------------------------------------------
    # Cycle steps
    # -------------------------------------------------------------------------

    def _settle_overrun(self, report: CycleReport) -> None:
        """Give timed-out calls one more call_timeout to finish."""
        if not self._overrun:
            return

        _, pending = wait(self._overrun, timeout=self.call_timeout)
        self._overrun = []
        report.overrunning = len(pending)
        if pending:
            logger.warning(f'{len(pending)} timed-out call(s) still running; continuing the cycle')

    def _snapshot(self, query: Callable[[], List[FlightSession]], report: CycleReport) -> List[FlightSession]:
        try:
            return query()
        except (StoreUnavailableError, SQLAlchemyError) as e:
            logger.error(f'Could not read active flights: {e}')
            report.errors.append(f'registry: {e}')
            return []

    def _publish_all(self, flights: List[FlightSession], label: str) -> Tuple[int, int, int]:
        """Returns (published, failed, skipped)."""
        published = failed = skipped = 0

        for flight, result, error in self._run_parallel(self.publisher.publish, flights, label):
            if error is not None:
                failed += 1
            elif isinstance(result, PublishResult) and result.skipped:
                skipped += 1
            elif isinstance(result, PublishResult) and result.success:
                published += 1
            else:
                failed += 1

        return published, failed, skipped

    def location_for(self, flight: FlightSession) -> Optional[Coordinate]:
        """
        Traffic query location for one flight.

        Live start coordinate, else the route's first point, else the
        mission's stored coordinates. None when nothing is known.
        """
        if flight.mode == AdvisoryMode.LIVE_POSITION and flight.start_position:
            return flight.start_position

        mission = None
        try:
            mission = self.missions.get(flight.mission_id)
        except SQLAlchemyError as e:
            logger.warning(f'Mission lookup failed for flight {flight.id}: {e}')

        route = (mission.route if mission else None) or flight.route_snapshot
        if route:
            return tuple(route[0])
        if mission and mission.location:
            return mission.location
        return flight.start_position

    def _ingest_beacons(self, flights: List[FlightSession], report: CycleReport) -> None:
        if self.require_viewers and not self.viewers.any_active():
            logger.info('No active map viewers; skipping traffic fetch')
            report.beacons_skipped = True
            return

        locations = []
        for flight in flights:
            location = self.location_for(flight)
            if location is None:
                logger.debug(f'No traffic query location for flight {flight.id}')
                continue
            if location not in locations:
                locations.append(location)

        report.beacon_locations = len(locations)

        batches = []
        for location, batch, error in self._run_parallel(self.ingestor.fetch, locations, 'Beacon fetch'):
            if error is not None or batch is None:
                report.beacon_failed += 1
                continue
            report.beacons_received += len(batch)
            batches.append(batch)

        report.beacons_stored = self.ingestor.store(self.ingestor.merge(batches))

    def run_cycle(self) -> CycleReport:
        """Execute one refresh cycle."""
        report = CycleReport()
        start = time.perf_counter()
        self._overrun = []

        # Steps 1 and 2: advisory refresh
        route_flights = self._snapshot(self.registry.route_flights, report)
        report.route_published, report.route_failed, route_skipped = self._publish_all(
            route_flights, 'Route advisory refresh'
        )

        live_flights = self._snapshot(self.registry.live_flights, report)
        report.live_published, report.live_failed, live_skipped = self._publish_all(
            live_flights, 'Live advisory refresh'
        )
        report.skipped = route_skipped + live_skipped

        # Step 3: nearby traffic
        self._settle_overrun(report)
        try:
            self._ingest_beacons(self._snapshot(self.registry.publishing_flights, report), report)
        except Exception as e:
            logger.error(f'Beacon ingestion error: {e}')
            report.errors.append(f'ingestion: {e}')

        # Step 4: eviction always runs
        report.beacons_evicted = self.ingestor.evict()
        if self.require_viewers:
            self.viewers.prune()

        report.duration_ms = (time.perf_counter() - start) * 1000
        self._last_cycle_time = time.time()
        self._cycle_count += 1
        if not report.ok:
            self._error_count += 1
        self._last_report = report

        logger.info(
            f'Refresh cycle: {report.route_published + report.live_published} advisories published, '
            f'{report.route_failed + report.live_failed} failed, {report.skipped} skipped; '
            f'{report.beacons_stored} beacons stored, {report.beacons_evicted} evicted '
            f'({report.duration_ms:.0f}ms)'
        )

        for callback in self._on_cycle_callbacks:
            try:
                callback(report)
            except Exception as e:
                logger.error(f'Cycle callback error: {e}')

        return report

    # -------------------------------------------------------------------------
    # Background loop
    # -------------------------------------------------------------------------

    def run_continuous(self, interval: Optional[float] = None) -> None:
        """
        Run refresh loop continuously.

        This method blocks - use start_background() for non-blocking.
        """
        interval = interval or config.scheduler.interval_seconds
        self._running = True
        self._stop_event.clear()

        logger.info(f'Starting refresh scheduler (interval={interval}s, workers={self.max_workers})')

        while not self._stop_event.is_set():
            try:
                self.run_cycle()
            except Exception as e:
                self._error_count += 1
                logger.error(f'Refresh cycle error: {e}')
            self._stop_event.wait(interval)

        self._running = False
        logger.info('Refresh scheduler stopped')

    def start_background(self, interval: Optional[float] = None) -> None:
        """Start the refresh loop in a background thread."""
        if self._thread and self._thread.is_alive():
            logger.warning('Refresh scheduler already running')
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self.run_continuous,
            args=(interval,),
            daemon=True,
            name='refresh-scheduler',
        )
        self._thread.start()
        logger.info('Background refresh started')

    def stop(self) -> None:
        """Stop the background loop and release the worker pool."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=5)
            self._thread = None
        self._running = False

        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=False, cancel_futures=True)
                self._executor = None

    @property
    def stats(self) -> dict:
        """Get scheduler statistics."""
        return {
            'cycle_count': self._cycle_count,
            'error_count': self._error_count,
            'last_cycle_time': self._last_cycle_time,
            'running': self._running,
            'max_workers': self.max_workers,
            'last_cycle': self._last_report.to_dict() if self._last_report else None,
        }
