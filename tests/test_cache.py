"""Tests for the beacon read cache"""
import time

import pytest

from skysync.cache import BeaconCache, haversine_distance
from skysync.ingestion import BeaconIngestor, BeaconReport


@pytest.fixture
def stored(mock_client):
    now = time.time()
    BeaconIngestor(mock_client).store({
        'A': BeaconReport('A', 63.44, 10.40, seen_at=now),
        'B': BeaconReport('B', 59.91, 10.75, seen_at=now - 30),
    })


class TestHaversine:
    """Tests for great-circle distance"""

    def test_same_point(self):
        assert haversine_distance(63.43, 10.39, 63.43, 10.39) == pytest.approx(0, abs=0.001)

    def test_oslo_to_trondheim(self):
        assert haversine_distance(59.91, 10.75, 63.43, 10.39) == pytest.approx(392, abs=10)


class TestBeaconCache:
    """Tests for cache refresh and reads"""

    def test_refresh_loads_table(self, stored):
        cache = BeaconCache(ttl_seconds=60)
        assert cache.refresh_from_database() == 2
        by_id = {b.id: b for b in cache.get_all()}
        assert by_id['A'].latitude == 63.44
        assert 'missing' not in by_id

    def test_get_all_refreshes_when_stale(self, stored):
        cache = BeaconCache(ttl_seconds=60)
        assert [b.id for b in cache.get_all()] == ['A', 'B']
        assert cache.stats['misses'] == 1

        cache.get_all()
        assert cache.stats['hits'] == 1

    def test_fresh_snapshot_is_not_reloaded(self, stored, mock_client):
        cache = BeaconCache(ttl_seconds=60)
        cache.refresh_from_database()

        BeaconIngestor(mock_client).store({'C': BeaconReport('C', 60.0, 10.0, seen_at=time.time())})
        assert len(cache.get_all()) == 2

        cache.refresh_from_database()
        assert len(cache.get_all()) == 3

    def test_radius_filter(self, stored):
        cache = BeaconCache(ttl_seconds=60)
        near = cache.get_all(center_lat=59.9, center_lon=10.7, radius_km=10)
        assert [b.id for b in near] == ['B']

    def test_to_dict(self, stored):
        cache = BeaconCache(ttl_seconds=60)
        entry = cache.get_all()[0].to_dict()
        assert entry['position']['latitude'] == 63.44
        assert entry['age_seconds'] >= 0

    def test_clear(self, stored):
        cache = BeaconCache(ttl_seconds=60)
        cache.refresh_from_database()
        cache.clear()
        assert cache.stats['entries'] == 0
