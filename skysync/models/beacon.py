"""
Beacon model - nearby traffic reported by the airspace-safety network.

A "hot" table shared by every flight: the ingestor upserts into it on
each refresh cycle and evicts rows whose freshness timestamp is older
than the TTL. The API layer reads it for map display.
"""

from typing import Optional

from sqlalchemy import String, Float, Index
from sqlalchemy.orm import Mapped, mapped_column

from skysync.models.base import Base


class Beacon(Base):
    """
    Latest known report for one traffic beacon.

    One row per beacon identifier (upsert pattern). updated_at is
    assigned locally when the report is fetched, never taken from
    the network.
    """

    __tablename__ = 'safesky_beacons'

    id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        comment='Network identifier or synthesized position fallback'
    )

    latitude: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        comment='Latitude in decimal degrees'
    )

    longitude: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        comment='Longitude in decimal degrees'
    )

    altitude: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment='Altitude in meters'
    )

    course: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment='Course in degrees (0-360)'
    )

    ground_speed: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment='Ground speed in m/s'
    )

    vertical_speed: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment='Vertical speed in m/s'
    )

    beacon_type: Mapped[Optional[str]] = mapped_column(
        String(40),
        nullable=True,
        comment='Traffic type (e.g. AIRCRAFT, UAV, GLIDER)'
    )

    callsign: Mapped[Optional[str]] = mapped_column(
        String(40),
        nullable=True,
        comment='Reported call sign'
    )

    updated_at: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        comment='Unix timestamp of last local refresh'
    )

    __table_args__ = (
        # Eviction query
        Index('ix_safesky_beacons_updated_at', 'updated_at'),
        Index('ix_safesky_beacons_location', 'latitude', 'longitude'),
    )

    def __repr__(self) -> str:
        return f'<Beacon {self.id} {self.callsign or "?"} @ {self.latitude:.4f},{self.longitude:.4f}>'

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict for API responses."""
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
            'updated_at': self.updated_at,
        }
