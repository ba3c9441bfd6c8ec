"""
In-memory cache for nearby traffic reads.

The map display polls the beacon list far more often than the refresh
scheduler writes it. The cache holds the last snapshot of the beacon
table and is replaced atomically after each refresh cycle, or on read
once it is older than its TTL.
"""

import logging
import math
import threading
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy import select

from skysync.config import config
from skysync.models import Beacon
from skysync.models.base import SessionLocal

logger = logging.getLogger(__name__)


def haversine_distance(
    lat1: float, lon1: float,
    lat2: float, lon2: float
) -> float:
    """Great-circle distance between two points in kilometers."""
    R = 6371.0  # Earth radius in km

    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_lat / 2) ** 2 +
        math.cos(lat1_rad) * math.cos(lat2_rad) *
        math.sin(delta_lon / 2) ** 2
    )
    return R * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


@dataclass
class CachedBeacon:
    """Display-ready beacon."""
    id: str
    latitude: float
    longitude: float
    altitude: Optional[float]
    course: Optional[float]
    ground_speed: Optional[float]
    vertical_speed: Optional[float]
    beacon_type: Optional[str]
    callsign: Optional[str]
    updated_at: float

    @classmethod
    def from_row(cls, row: Beacon) -> 'CachedBeacon':
        return cls(
            id=row.id,
            latitude=row.latitude,
            longitude=row.longitude,
            altitude=row.altitude,
            course=row.course,
            ground_speed=row.ground_speed,
            vertical_speed=row.vertical_speed,
            beacon_type=row.beacon_type,
            callsign=row.callsign,
            updated_at=row.updated_at,
        )

    @property
    def age_seconds(self) -> float:
        return max(0.0, time.time() - self.updated_at)

    def distance_from(self, lat: float, lon: float) -> float:
        return haversine_distance(lat, lon, self.latitude, self.longitude)

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict for API responses."""
        return {
            'id': self.id,
            'callsign': self.callsign,
            'beacon_type': self.beacon_type,
            'position': {
                'latitude': self.latitude,
                'longitude': self.longitude,
                'altitude': self.altitude,
            },
            'motion': {
                'course': self.course,
                'ground_speed': self.ground_speed,
                'vertical_speed': self.vertical_speed,
            },
            'updated_at': self.updated_at,
            'age_seconds': round(self.age_seconds, 1),
        }


class BeaconCache:
    """
    Thread-safe in-memory snapshot of the beacon table.

    Provides fast read access for the API with refresh from the
    database.
    """

    def __init__(self, ttl_seconds: int = None, session_factory=None):
        self.ttl_seconds = ttl_seconds or config.beacons.cache_ttl_seconds
        self._session_factory = session_factory or SessionLocal

        self._cache: Dict[str, CachedBeacon] = {}
        self._lock = threading.RLock()
        self._last_refresh: float = 0

        # Statistics
        self._hits = 0
        self._misses = 0

    def refresh_from_database(self) -> int:
        """
        Replace the cache with the current beacon table.

        Returns count of beacons loaded.
        """
        with self._session_factory() as session:
            rows = session.scalars(select(Beacon)).all()

        new_cache = {row.id: CachedBeacon.from_row(row) for row in rows}

        with self._lock:
            self._cache = new_cache
            self._last_refresh = time.time()

        logger.debug(f'Beacon cache refreshed with {len(new_cache)} beacons')
        return len(new_cache)

    def _is_stale(self) -> bool:
        return time.time() - self._last_refresh >= self.ttl_seconds

    def get_all(
        self,
        center_lat: Optional[float] = None,
        center_lon: Optional[float] = None,
        radius_km: Optional[float] = None,
    ) -> List[CachedBeacon]:
        """
        All cached beacons, refreshed first if the snapshot is stale.

        With a center, results are sorted closest first and optionally
        limited to radius_km; otherwise they are sorted newest first.
        """
        with self._lock:
            stale = self._is_stale()
        if stale:
            self.refresh_from_database()
            self._misses += 1
        else:
            self._hits += 1

        with self._lock:
            result = list(self._cache.values())

        if center_lat is None or center_lon is None:
            result.sort(key=lambda b: b.updated_at, reverse=True)
            return result

        with_distance = [(b.distance_from(center_lat, center_lon), b) for b in result]
        if radius_km is not None:
            with_distance = [(d, b) for d, b in with_distance if d <= radius_km]
        with_distance.sort(key=lambda pair: pair[0])
        return [b for _, b in with_distance]

    def clear(self) -> None:
        """Clear entire cache."""
        with self._lock:
            self._cache.clear()
            self._last_refresh = 0

    @property
    def stats(self) -> dict:
        """Get cache statistics."""
        with self._lock:
            total = self._hits + self._misses
            return {
                'entries': len(self._cache),
                'hits': self._hits,
                'misses': self._misses,
                'hit_rate': self._hits / total if total > 0 else 0,
                'last_refresh': self._last_refresh,
            }


# Singleton instance
beacon_cache = BeaconCache()
