"""
Beacon ingestion - nearby traffic from the airspace-safety network.

Pipeline stages (per refresh cycle):
1. Fetch: query traffic around each active flight's location
2. Merge: deduplicate across flights, keeping the latest sighting per id
3. Upsert: write each beacon once with its local freshness timestamp
4. Evict: delete rows strictly older than the TTL

Eviction compares write timestamps, never row identity, so a beacon
refreshed in the same cycle is protected by its new timestamp.
"""

import logging
import time
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Tuple

import requests
from sqlalchemy import delete
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from skysync.airspace.client import SafeSkyClient
from skysync.config import config
from skysync.exceptions import SigningError
from skysync.models import Beacon
from skysync.models.base import SessionLocal

logger = logging.getLogger(__name__)

Coordinate = Tuple[float, float]

UPDATABLE_COLUMNS = (
    'latitude',
    'longitude',
    'altitude',
    'course',
    'ground_speed',
    'vertical_speed',
    'beacon_type',
    'callsign',
    'updated_at',
)


def _optional_float(value) -> Optional[float]:
    if value is None or value == '':
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


@dataclass
class BeaconReport:
    """
    One traffic report as received in this cycle.

    seen_at is assigned locally when the report arrives.
    """
    id: str
    latitude: float
    longitude: float
    seen_at: float
    altitude: Optional[float] = None
    course: Optional[float] = None
    ground_speed: Optional[float] = None
    vertical_speed: Optional[float] = None
    beacon_type: Optional[str] = None
    callsign: Optional[str] = None

    @classmethod
    def from_raw(cls, raw: dict, seen_at: float) -> Optional['BeaconReport']:
        """
        Parse a raw network record.

        Returns None if the record has no usable position.
        """
        if not isinstance(raw, dict):
            return None

        latitude = _optional_float(raw.get('latitude'))
        longitude = _optional_float(raw.get('longitude'))
        if latitude is None or longitude is None:
            return None

        beacon_id = raw.get('id') or f'beacon_{latitude}_{longitude}'

        return cls(
            id=str(beacon_id),
            latitude=latitude,
            longitude=longitude,
            seen_at=seen_at,
            altitude=_optional_float(raw.get('altitude')),
            course=_optional_float(raw.get('course')),
            ground_speed=_optional_float(raw.get('ground_speed')),
            vertical_speed=_optional_float(raw.get('vertical_speed')),
            beacon_type=raw.get('beacon_type') or raw.get('type') or None,
            callsign=raw.get('callsign') or raw.get('call_sign') or None,
        )

    def to_row(self) -> dict:
        return {
            'id': self.id,
            'latitude': self.latitude,
            'longitude': self.longitude,
            'altitude': self.altitude,
            'course': self.course,
            'ground_speed': self.ground_speed,
            'vertical_speed': self.vertical_speed,
            'beacon_type': self.beacon_type,
            'callsign': self.callsign,
            'updated_at': self.seen_at,
        }


@dataclass
class IngestResult:
    """Counts for one ingestion pass."""
    locations: int = 0
    failed: int = 0
    received: int = 0
    stored: int = 0


class BeaconIngestor:
    """
    Fetches, deduplicates, stores and expires nearby traffic.

    fetch() is safe to call from several worker threads; store() and
    evict() each run in their own transaction.
    """

    def __init__(
        self,
        client: SafeSkyClient,
        ttl_seconds: Optional[int] = None,
        radius_km: Optional[float] = None,
        session_factory=None,
    ):
        self.client = client
        self.ttl_seconds = ttl_seconds or config.beacons.ttl_seconds
        self.radius_km = radius_km or config.beacons.radius_km
        self._session_factory = session_factory or SessionLocal

    def fetch(self, location: Coordinate) -> Optional[List[BeaconReport]]:
        """
        Fetch traffic around one location.

        Returns None on failure (logged); the caller moves on to the
        next location.
        """
        try:
            raw = self.client.get_beacons_near(location, self.radius_km)
        except (requests.RequestException, SigningError) as e:
            logger.error(f'Beacon fetch failed near ({location[0]:.4f}, {location[1]:.4f}): {e}')
            return None

        seen_at = time.time()
        reports = []
        for record in raw:
            report = BeaconReport.from_raw(record, seen_at)
            if report:
                reports.append(report)

        logger.debug(f'Received {len(reports)} beacons near ({location[0]:.4f}, {location[1]:.4f})')
        return reports

    @staticmethod
    def merge(batches: Iterable[Optional[List[BeaconReport]]]) -> Dict[str, BeaconReport]:
        """
        Deduplicate reports from several fetches.

        A beacon seen near two flights is kept once, with the later
        sighting (ties go to the later batch).
        """
        merged: Dict[str, BeaconReport] = {}
        for batch in batches:
            if not batch:
                continue
            for report in batch:
                existing = merged.get(report.id)
                if existing is None or report.seen_at >= existing.seen_at:
                    merged[report.id] = report
        return merged

    def _upsert_statement(self, dialect: str, rows: List[dict]):
        insert = pg_insert if dialect == 'postgresql' else sqlite_insert
        stmt = insert(Beacon).values(rows)
        return stmt.on_conflict_do_update(
            index_elements=['id'],
            set_={column: stmt.excluded[column] for column in UPDATABLE_COLUMNS},
        )

    def store(self, reports: Dict[str, BeaconReport]) -> int:
        """
        Upsert merged reports into the shared beacon table.

        Returns count of rows written, or 0 on database error.
        """
        if not reports:
            return 0

        rows = [report.to_row() for report in reports.values()]

        try:
            with self._session_factory() as session:
                dialect = session.get_bind().dialect.name
                session.execute(self._upsert_statement(dialect, rows))
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f'Beacon upsert failed: {e}')
            return 0

        logger.info(f'Upserted {len(rows)} beacons')
        return len(rows)

    def ingest(self, locations: Iterable[Coordinate]) -> IngestResult:
        """Fetch every location sequentially, then merge and store once."""
        result = IngestResult()
        batches = []
        for location in locations:
            result.locations += 1
            batch = self.fetch(location)
            if batch is None:
                result.failed += 1
                continue
            result.received += len(batch)
            batches.append(batch)

        result.stored = self.store(self.merge(batches))
        return result

    def evict(self, now: Optional[float] = None) -> int:
        """
        Delete beacons strictly older than the TTL.

        Rows exactly at the cutoff are kept. Returns count deleted,
        or 0 on database error.
        """
        cutoff = (now if now is not None else time.time()) - self.ttl_seconds

        try:
            with self._session_factory() as session:
                result = session.execute(
                    delete(Beacon).where(Beacon.updated_at < cutoff)
                )
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f'Beacon eviction failed: {e}')
            return 0

        deleted = result.rowcount or 0
        if deleted:
            logger.info(f'Evicted {deleted} stale beacons')
        return deleted
