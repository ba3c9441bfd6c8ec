"""
ActiveFlight model - one row per pilot currently airborne.

This is the durable store behind flight sessions and the table the
refresh scheduler enumerates on every cycle.

Design notes:
- Unique on pilot_id: the database enforces at most one flight per pilot
- Written only by the pilot's own session manager
- Deleted when the flight ends; no history is kept here
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import String, Float, DateTime, Boolean, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column

from skysync.models.base import Base


class AdvisoryMode(str, Enum):
    """
    How a flight is announced to the airspace-safety network.

    - NONE: Not published
    - ROUTE_ADVISORY: Polygon around the linked mission's planned route
    - LIVE_POSITION: Point advisory around the pilot's start position
    """
    NONE = 'none'
    ROUTE_ADVISORY = 'route-advisory'
    LIVE_POSITION = 'live-position'


class ActiveFlight(Base):
    """
    Durable flight session record.

    Mirrors the FlightSession dataclass used by the rest of the system.
    """

    __tablename__ = 'active_flights'

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        comment='Flight session identifier (uuid4)'
    )

    pilot_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        comment='Owning pilot'
    )

    company_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        index=True,
        comment='Tenant / organization'
    )

    start_time: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        comment='Flight start (UTC)'
    )

    mission_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment='Linked mission'
    )

    mode: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=AdvisoryMode.NONE.value,
        comment='Advisory mode'
    )

    route_snapshot: Mapped[Optional[list]] = mapped_column(
        JSON,
        nullable=True,
        comment='Route as [[lat, lon], ...] at start time'
    )

    start_lat: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment='Start latitude (live-position mode)'
    )

    start_lng: Mapped[Optional[float]] = mapped_column(
        Float,
        nullable=True,
        comment='Start longitude (live-position mode)'
    )

    device_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment='External telemetry device'
    )

    pilot_name: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        comment='Display name used as advisory call sign'
    )

    drone_id: Mapped[Optional[str]] = mapped_column(
        String(64),
        nullable=True,
        comment='Aircraft flown'
    )

    advisory_published: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        comment='Whether the immediate publish on start was accepted'
    )

    __table_args__ = (
        # Scheduler enumeration by mode
        Index('ix_active_flights_mode', 'mode'),
    )

    def __repr__(self) -> str:
        return f'<ActiveFlight {self.pilot_id} {self.mode} since {self.start_time}>'
