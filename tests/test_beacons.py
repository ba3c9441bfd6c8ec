"""Tests for beacon ingestion, deduplication and eviction"""
from unittest.mock import patch

import pytest
import requests
from sqlalchemy import func, select

from conftest import make_response
from skysync.airspace.client import BoundingBox
from skysync.ingestion import BeaconIngestor, BeaconReport
from skysync.models import Beacon
from skysync.models.base import SessionLocal


def beacon_rows():
    with SessionLocal() as session:
        return {row.id: row for row in session.scalars(select(Beacon)).all()}


def report(beacon_id, seen_at, lat=60.0, lon=10.0, **kwargs):
    return BeaconReport(id=beacon_id, latitude=lat, longitude=lon, seen_at=seen_at, **kwargs)


class TestBeaconReport:
    """Tests for raw record parsing"""

    def test_parses_fields(self):
        parsed = BeaconReport.from_raw({
            'id': 'X123',
            'latitude': '59.91',
            'longitude': 10.75,
            'altitude': 450,
            'course': 270,
            'ground_speed': 41.2,
            'beacon_type': 'GLIDER',
            'callsign': 'LN-GXA',
        }, seen_at=1000.0)

        assert parsed.id == 'X123'
        assert parsed.latitude == 59.91
        assert parsed.altitude == 450.0
        assert parsed.beacon_type == 'GLIDER'
        assert parsed.seen_at == 1000.0

    def test_fallback_id_from_position(self):
        parsed = BeaconReport.from_raw({'latitude': 59.5, 'longitude': 10.25}, seen_at=1.0)
        assert parsed.id == 'beacon_59.5_10.25'

    @pytest.mark.parametrize('raw', [
        {'id': 'A'},
        {'id': 'A', 'latitude': None, 'longitude': 10.0},
        {'id': 'A', 'latitude': 'north', 'longitude': 10.0},
        'not-a-record',
    ])
    def test_records_without_position_are_dropped(self, raw):
        assert BeaconReport.from_raw(raw, seen_at=1.0) is None


class TestViewport:
    """Tests for traffic query viewports"""

    def test_viewport_order_is_nw_then_se(self):
        bbox = BoundingBox.from_center_radius(60.0, 10.0, 111.0)
        lat_nw, lon_nw, lat_se, lon_se = (float(v) for v in bbox.to_viewport().split(','))
        assert lat_nw == pytest.approx(61.0)
        assert lat_se == pytest.approx(59.0)
        assert lon_nw < 10.0 < lon_se

    def test_client_sends_signed_viewport_query(self, safesky, http_session):
        safesky.get_beacons_near((60.0, 10.0), 50)
        call = http_session.request.call_args
        assert call.args[0] == 'GET'
        assert '/v1/beacons?viewport=' in call.args[1]
        assert 'X-SS-Signature' in call.kwargs['headers']

    def test_client_raises_on_error_status(self, safesky, http_session):
        http_session.request.side_effect = None
        http_session.request.return_value = make_response(500, {'error': 'boom'})
        with pytest.raises(requests.HTTPError):
            safesky.get_beacons_near((60.0, 10.0), 50)


class TestMerge:
    """Tests for per-pass deduplication"""

    def test_later_sighting_wins(self):
        merged = BeaconIngestor.merge([
            [report('X123', 1000.0, lat=60.0)],
            [report('X123', 1005.0, lat=60.1)],
        ])
        assert list(merged) == ['X123']
        assert merged['X123'].seen_at == 1005.0
        assert merged['X123'].latitude == 60.1

    def test_earlier_batch_with_later_timestamp_wins(self):
        merged = BeaconIngestor.merge([
            [report('X123', 1005.0, lat=60.1)],
            [report('X123', 1000.0, lat=60.0)],
        ])
        assert merged['X123'].latitude == 60.1

    def test_tie_goes_to_later_batch(self):
        merged = BeaconIngestor.merge([
            [report('X123', 1000.0, lat=60.0)],
            [report('X123', 1000.0, lat=60.2)],
        ])
        assert merged['X123'].latitude == 60.2

    def test_skips_failed_batches(self):
        merged = BeaconIngestor.merge([None, [report('A', 1.0)], []])
        assert list(merged) == ['A']


class TestIngest:
    """Tests for fetch, merge and store"""

    def test_overlapping_beacon_stored_once_with_later_timestamp(self, mock_client):
        """Two flights' queries both return X123"""
        mock_client.get_beacons_near.side_effect = [
            [{'id': 'X123', 'latitude': 59.90, 'longitude': 10.70}, {'id': 'B1', 'latitude': 59.0, 'longitude': 10.0}],
            [{'id': 'X123', 'latitude': 59.91, 'longitude': 10.71}],
        ]
        ingestor = BeaconIngestor(mock_client)

        with patch('skysync.ingestion.beacons.time') as mock_time:
            mock_time.time.side_effect = [1000.0, 1005.0]
            result = ingestor.ingest([(59.90, 10.70), (59.95, 10.80)])

        assert result.locations == 2
        assert result.received == 3
        assert result.stored == 2

        rows = beacon_rows()
        assert sorted(rows) == ['B1', 'X123']
        assert rows['X123'].updated_at == 1005.0
        assert rows['X123'].latitude == 59.91

    def test_upsert_refreshes_existing_row(self, mock_client):
        ingestor = BeaconIngestor(mock_client)
        ingestor.store({'X123': report('X123', 1000.0, callsign='OLD')})
        ingestor.store({'X123': report('X123', 1060.0, callsign='NEW')})

        with SessionLocal() as session:
            assert session.scalar(select(func.count()).select_from(Beacon)) == 1
        row = beacon_rows()['X123']
        assert row.updated_at == 1060.0
        assert row.callsign == 'NEW'

    def test_failed_fetch_does_not_stop_others(self, mock_client):
        mock_client.get_beacons_near.side_effect = [
            requests.Timeout('slow'),
            [{'id': 'B2', 'latitude': 60.0, 'longitude': 11.0}],
        ]
        result = BeaconIngestor(mock_client).ingest([(59.0, 10.0), (60.0, 11.0)])

        assert result.failed == 1
        assert result.stored == 1
        assert 'B2' in beacon_rows()

    def test_fetch_returns_none_on_failure(self, mock_client):
        mock_client.get_beacons_near.side_effect = requests.ConnectionError('down')
        assert BeaconIngestor(mock_client).fetch((59.0, 10.0)) is None

    def test_store_nothing(self, mock_client):
        assert BeaconIngestor(mock_client).store({}) == 0


class TestEviction:
    """Tests for TTL eviction"""

    def test_strictly_older_than_ttl_is_removed(self, mock_client):
        now = 10_000.0
        ingestor = BeaconIngestor(mock_client, ttl_seconds=60)
        ingestor.store({
            'stale': report('stale', now - 61),
            'boundary': report('boundary', now - 60),
            'fresh': report('fresh', now - 10),
        })

        assert ingestor.evict(now=now) == 1
        assert sorted(beacon_rows()) == ['boundary', 'fresh']

    def test_refreshed_row_survives_same_pass(self, mock_client):
        now = 10_000.0
        ingestor = BeaconIngestor(mock_client, ttl_seconds=60)
        ingestor.store({'X123': report('X123', now - 300)})

        # Re-ingested in the same cycle before eviction
        ingestor.store({'X123': report('X123', now)})
        assert ingestor.evict(now=now) == 0
        assert 'X123' in beacon_rows()

    def test_evict_empty_table(self, mock_client):
        assert BeaconIngestor(mock_client).evict() == 0
