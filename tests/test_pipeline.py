"""Tests for the refresh scheduler"""
import threading
import time
from unittest.mock import MagicMock

import pytest

from conftest import posted_payloads
from skysync.airspace import AdvisoryPublisher, PublishResult
from skysync.exceptions import StoreUnavailableError
from skysync.flights import FlightRegistry, FlightSessionManager
from skysync.ingestion import BeaconIngestor, BeaconReport, RefreshScheduler, ViewerHeartbeats
from skysync.models import AdvisoryMode, FlightSession, MissionInfo


def flight(pilot_id, mode, mission_id=None, start_position=None, route=None):
    return FlightSession.new(
        pilot_id=pilot_id,
        company_id='company-1',
        mode=mode,
        mission_id=mission_id,
        start_position=start_position,
        route_snapshot=route,
    )


@pytest.fixture
def route_a():
    return flight('pilot-a', AdvisoryMode.ROUTE_ADVISORY, mission_id='mission-a', route=[(59.9, 10.7), (59.95, 10.8)])


@pytest.fixture
def route_b():
    return flight('pilot-b', AdvisoryMode.ROUTE_ADVISORY, mission_id='mission-b', route=[(60.4, 5.3)])


@pytest.fixture
def live_c():
    return flight('pilot-c', AdvisoryMode.LIVE_POSITION, start_position=(63.43, 10.39))


@pytest.fixture
def stub_registry(route_a, route_b, live_c):
    registry = MagicMock(spec=FlightRegistry)
    registry.route_flights.return_value = [route_a, route_b]
    registry.live_flights.return_value = [live_c]
    registry.publishing_flights.return_value = [route_a, route_b, live_c]
    return registry


@pytest.fixture
def stub_publisher():
    publisher = MagicMock(spec=AdvisoryPublisher)
    publisher.publish.side_effect = lambda f: PublishResult(f.id, f'AVS_{f.id[:8]}', success=True)
    return publisher


@pytest.fixture
def stub_ingestor():
    ingestor = MagicMock(spec=BeaconIngestor)
    ingestor.fetch.side_effect = lambda location: [
        BeaconReport(id=f'B-{location[0]}', latitude=location[0], longitude=location[1], seen_at=time.time())
    ]
    ingestor.merge.side_effect = BeaconIngestor.merge
    ingestor.store.side_effect = lambda reports: len(reports)
    ingestor.evict.return_value = 2
    return ingestor


@pytest.fixture
def no_missions():
    missions = MagicMock()
    missions.get.return_value = None
    return missions


@pytest.fixture
def scheduler(stub_publisher, stub_ingestor, stub_registry, no_missions):
    scheduler = RefreshScheduler(
        publisher=stub_publisher,
        ingestor=stub_ingestor,
        registry=stub_registry,
        missions=no_missions,
        max_workers=2,
        call_timeout=2,
    )
    yield scheduler
    scheduler.stop()


class TestRunCycle:
    """Tests for one refresh cycle"""

    def test_publishes_every_flight(self, scheduler, stub_publisher, route_a, route_b, live_c):
        report = scheduler.run_cycle()

        published = {call.args[0].id for call in stub_publisher.publish.call_args_list}
        assert published == {route_a.id, route_b.id, live_c.id}
        assert report.route_published == 2
        assert report.live_published == 1
        assert report.ok is True

    def test_fetches_each_location_and_stores_once(self, scheduler, stub_ingestor):
        report = scheduler.run_cycle()

        fetched = {call.args[0] for call in stub_ingestor.fetch.call_args_list}
        assert fetched == {(59.9, 10.7), (60.4, 5.3), (63.43, 10.39)}
        stub_ingestor.store.assert_called_once()
        assert report.beacons_stored == 3

    def test_evicts_once_after_ingestion(self, scheduler, stub_ingestor):
        order = []
        stub_ingestor.store.side_effect = lambda reports: order.append('store') or len(reports)
        stub_ingestor.evict.side_effect = lambda: order.append('evict') or 0

        scheduler.run_cycle()
        assert order == ['store', 'evict']

    def test_publish_before_ingest(self, scheduler, stub_publisher, stub_ingestor):
        order = []
        stub_publisher.publish.side_effect = lambda f: order.append('publish') or PublishResult(f.id, 'AVS', True)
        stub_ingestor.fetch.side_effect = lambda location: order.append('fetch') or []

        scheduler.run_cycle()
        assert order.index('fetch') > max(i for i, step in enumerate(order) if step == 'publish')

    def test_one_failing_flight_does_not_stop_others(self, scheduler, stub_publisher, stub_ingestor, route_a):
        def publish(f):
            if f.id == route_a.id:
                raise RuntimeError('unexpected')
            return PublishResult(f.id, 'AVS', success=True)

        stub_publisher.publish.side_effect = publish
        report = scheduler.run_cycle()

        assert report.route_failed == 1
        assert report.route_published == 1
        assert report.live_published == 1
        stub_ingestor.evict.assert_called_once()
        assert report.ok is False

    def test_failed_results_and_skips_are_counted(self, scheduler, stub_publisher, route_b):
        def publish(f):
            if f.id == route_b.id:
                return PublishResult(f.id, 'AVS', success=False, skipped=True)
            return PublishResult(f.id, 'AVS', success=False, error='API error: 500')

        stub_publisher.publish.side_effect = publish
        report = scheduler.run_cycle()

        assert report.skipped == 1
        assert report.route_failed == 1
        assert report.live_failed == 1

    def test_slow_flight_times_out(self, stub_publisher, stub_ingestor, stub_registry, no_missions, route_a):
        release = threading.Event()

        def publish(f):
            if f.id == route_a.id:
                release.wait(timeout=5)
            return PublishResult(f.id, 'AVS', success=True)

        stub_publisher.publish.side_effect = publish
        scheduler = RefreshScheduler(
            publisher=stub_publisher,
            ingestor=stub_ingestor,
            registry=stub_registry,
            missions=no_missions,
            max_workers=4,
            call_timeout=0.1,
        )
        try:
            report = scheduler.run_cycle()
        finally:
            release.set()
            scheduler.stop()

        assert report.route_failed == 1
        assert report.route_published == 1
        stub_ingestor.evict.assert_called_once()
        assert report.overrunning == 1

    def test_overrunning_publish_finishes_before_fetch(self, stub_publisher, stub_ingestor, stub_registry, no_missions, route_a):
        order = []

        def publish(f):
            if f.id == route_a.id:
                time.sleep(0.3)
                order.append('publish')
            return PublishResult(f.id, 'AVS', success=True)

        stub_publisher.publish.side_effect = publish
        stub_ingestor.fetch.side_effect = lambda location: order.append('fetch') or []
        scheduler = RefreshScheduler(
            publisher=stub_publisher,
            ingestor=stub_ingestor,
            registry=stub_registry,
            missions=no_missions,
            max_workers=4,
            call_timeout=0.2,
        )
        try:
            report = scheduler.run_cycle()
        finally:
            scheduler.stop()

        assert report.route_failed == 1
        assert report.overrunning == 0
        assert order[0] == 'publish'
        assert order.count('fetch') == 3

    def test_failed_fetch_is_isolated(self, scheduler, stub_ingestor):
        stub_ingestor.fetch.side_effect = lambda location: None if location == (60.4, 5.3) else []
        report = scheduler.run_cycle()

        assert report.beacon_locations == 3
        assert report.beacon_failed == 1
        stub_ingestor.store.assert_called_once()

    def test_unreachable_store_still_evicts(self, scheduler, stub_registry, stub_ingestor, stub_publisher):
        stub_registry.route_flights.side_effect = StoreUnavailableError('list')
        stub_registry.live_flights.side_effect = StoreUnavailableError('list')
        stub_registry.publishing_flights.side_effect = StoreUnavailableError('list')

        report = scheduler.run_cycle()

        stub_publisher.publish.assert_not_called()
        stub_ingestor.evict.assert_called_once()
        assert len(report.errors) == 3

    def test_no_flights(self, scheduler, stub_registry, stub_ingestor):
        stub_registry.route_flights.return_value = []
        stub_registry.live_flights.return_value = []
        stub_registry.publishing_flights.return_value = []

        report = scheduler.run_cycle()
        assert report.beacon_locations == 0
        stub_ingestor.evict.assert_called_once()

    def test_callbacks_and_stats(self, scheduler):
        reports = []
        scheduler.add_cycle_callback(reports.append)
        scheduler.add_cycle_callback(lambda r: 1 / 0)

        report = scheduler.run_cycle()

        assert reports == [report]
        stats = scheduler.stats
        assert stats['cycle_count'] == 1
        assert stats['last_cycle']['advisories']['route_published'] == 2


class TestViewerGate:
    """Tests for skipping traffic fetches while no map is open"""

    @pytest.fixture
    def gated(self, stub_publisher, stub_ingestor, stub_registry, no_missions):
        scheduler = RefreshScheduler(
            publisher=stub_publisher,
            ingestor=stub_ingestor,
            registry=stub_registry,
            missions=no_missions,
            viewers=ViewerHeartbeats(timeout_seconds=10),
            require_viewers=True,
            max_workers=2,
            call_timeout=2,
        )
        yield scheduler
        scheduler.stop()

    def test_no_viewers_skips_fetch_but_still_publishes_and_evicts(self, gated, stub_publisher, stub_ingestor):
        report = gated.run_cycle()

        stub_ingestor.fetch.assert_not_called()
        stub_ingestor.store.assert_not_called()
        stub_ingestor.evict.assert_called_once()
        assert stub_publisher.publish.call_count == 3
        assert report.to_dict()['beacons']['skipped_no_viewers'] is True

    def test_fresh_heartbeat_enables_fetch(self, gated, stub_ingestor):
        gated.viewers.beat('map-1')
        report = gated.run_cycle()

        assert stub_ingestor.fetch.call_count == 3
        assert report.beacons_skipped is False

    def test_stale_heartbeat_is_pruned(self, gated, stub_ingestor):
        gated.viewers.beat('map-1', now=time.time() - 60)
        gated.run_cycle()

        stub_ingestor.fetch.assert_not_called()
        assert gated.viewers.prune() == 0

    def test_ungated_by_default(self, scheduler, stub_ingestor):
        assert scheduler.require_viewers is False
        report = scheduler.run_cycle()

        assert stub_ingestor.fetch.call_count == 3
        assert report.beacons_skipped is False


class TestHeartbeats:
    """Tests for the viewer heartbeat table"""

    def test_beat_is_an_upsert(self):
        viewers = ViewerHeartbeats(timeout_seconds=10)
        viewers.beat('map-1', now=100.0)
        viewers.beat('map-1', now=200.0)

        assert viewers.any_active(now=205.0) is True
        assert viewers.any_active(now=215.0) is False

    def test_prune_only_removes_expired(self):
        viewers = ViewerHeartbeats(timeout_seconds=10)
        viewers.beat('old', now=100.0)
        viewers.beat('new', now=195.0)

        assert viewers.prune(now=200.0) == 1
        assert viewers.any_active(now=200.0) is True

    def test_unreadable_table_counts_as_active(self, flaky_sessions):
        flaky_sessions.online = False
        assert ViewerHeartbeats(session_factory=flaky_sessions).any_active() is True


class TestLocationFor:
    """Tests for traffic query locations"""

    def test_live_flight_uses_start_position(self, scheduler, live_c):
        assert scheduler.location_for(live_c) == (63.43, 10.39)

    def test_route_first_point(self, scheduler, route_a):
        assert scheduler.location_for(route_a) == (59.9, 10.7)

    def test_mission_route_preferred_over_snapshot(self, scheduler, no_missions, route_a):
        no_missions.get.return_value = MissionInfo('mission-a', 'A', route=[(61.0, 11.0)])
        assert scheduler.location_for(route_a) == (61.0, 11.0)

    def test_mission_location_fallback(self, scheduler, no_missions):
        no_missions.get.return_value = MissionInfo('mission-x', 'X', route=None, location=(62.0, 7.0))
        f = flight('pilot-x', AdvisoryMode.ROUTE_ADVISORY, mission_id='mission-x')
        assert scheduler.location_for(f) == (62.0, 7.0)

    def test_nothing_known(self, scheduler):
        f = flight('pilot-y', AdvisoryMode.ROUTE_ADVISORY, mission_id='mission-y')
        assert scheduler.location_for(f) is None


class TestBackground:
    """Tests for the background loop"""

    def test_runs_until_stopped(self, scheduler):
        ran = threading.Event()
        scheduler.add_cycle_callback(lambda report: ran.set())

        scheduler.start_background(interval=0.05)
        assert ran.wait(timeout=5)
        assert scheduler.stats['running'] is True

        scheduler.stop()
        assert scheduler.stats['running'] is False


class TestRouteScenario:
    """Start a route flight, then let the scheduler refresh it"""

    def test_refresh_reuses_advisory_id(self, repository, route_mission, safesky, http_session):
        publisher = AdvisoryPublisher(safesky)
        manager = FlightSessionManager(
            'pilot-1', 'company-1',
            repository=repository,
            publisher=publisher,
        )
        scheduler = RefreshScheduler(
            publisher=publisher,
            ingestor=BeaconIngestor(safesky),
            registry=FlightRegistry(repository.store),
        )

        try:
            assert manager.start_flight(mission_id=route_mission.id, mode=AdvisoryMode.ROUTE_ADVISORY)
            assert len(posted_payloads(http_session)) == 1

            report = scheduler.run_cycle()
        finally:
            scheduler.stop()
            manager.shutdown()

        payloads = posted_payloads(http_session)
        assert len(payloads) == 2
        ids = {p['features'][0]['properties']['id'] for p in payloads}
        assert ids == {'AVS_3f2a9c1e'}
        ring = payloads[1]['features'][0]['geometry']['coordinates'][0]
        assert len(ring) == 5
        assert report.route_published == 1
        assert report.beacon_locations == 1
