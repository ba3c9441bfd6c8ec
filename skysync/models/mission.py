"""
Mission model - the slice of the mission record the advisory core reads.

Missions are created and edited elsewhere; this module only exposes
the planned route and fallback location through MissionLookup.
"""

from dataclasses import dataclass
from typing import Optional, List, Tuple

from sqlalchemy import String, Float, JSON
from sqlalchemy.orm import Mapped, mapped_column

from skysync.models.base import Base, SessionLocal

Coordinate = Tuple[float, float]


class Mission(Base):
    """Planned drone operation."""

    __tablename__ = 'missions'

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    title: Mapped[str] = mapped_column(String(200), nullable=False, default='')

    route: Mapped[Optional[dict]] = mapped_column(
        JSON,
        nullable=True,
        comment='{"coordinates": [{"lat": .., "lng": ..}, ...]}'
    )

    latitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    longitude: Mapped[Optional[float]] = mapped_column(Float, nullable=True)

    def __repr__(self) -> str:
        return f'<Mission {self.id} {self.title!r}>'


@dataclass
class MissionInfo:
    """Mission data as consumed by the publisher and scheduler."""
    id: str
    title: str
    route: Optional[List[Coordinate]] = None
    location: Optional[Coordinate] = None


def parse_route(raw: Optional[dict]) -> Optional[List[Coordinate]]:
    """
    Extract (lat, lon) pairs from a stored route document.

    Returns None when the document has no usable coordinates.
    """
    if not raw or not isinstance(raw, dict):
        return None

    points = []
    for point in raw.get('coordinates') or []:
        try:
            points.append((float(point['lat']), float(point['lng'])))
        except (KeyError, TypeError, ValueError):
            continue

    return points or None


class MissionLookup:
    """Read-only access to missions by identifier."""

    def __init__(self, session_factory=None):
        self._session_factory = session_factory or SessionLocal

    def get(self, mission_id: Optional[str]) -> Optional[MissionInfo]:
        if not mission_id:
            return None

        with self._session_factory() as session:
            mission = session.get(Mission, mission_id)

        if mission is None:
            return None

        location = None
        if mission.latitude is not None and mission.longitude is not None:
            location = (mission.latitude, mission.longitude)

        return MissionInfo(
            id=mission.id,
            title=mission.title or '',
            route=parse_route(mission.route),
            location=location,
        )
