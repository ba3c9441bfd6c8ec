"""
FlightSession - the in-process view of one pilot's airborne flight.

The durable record lives in the active_flights table (ActiveFlight);
this dataclass is what the manager, publisher and scheduler pass around,
and what the offline queue and local mirror serialize.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, List, Tuple

from skysync.models.active_flight import ActiveFlight, AdvisoryMode

Coordinate = Tuple[float, float]


def as_utc(value: datetime) -> datetime:
    """SQLite returns naive datetimes; all stored times are UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass
class FlightSession:
    """One pilot's active flight."""
    id: str
    pilot_id: str
    company_id: str
    start_time: datetime
    mode: AdvisoryMode = AdvisoryMode.NONE
    mission_id: Optional[str] = None
    route_snapshot: Optional[List[Coordinate]] = None
    start_lat: Optional[float] = None
    start_lng: Optional[float] = None
    device_id: Optional[str] = None
    pilot_name: Optional[str] = None
    drone_id: Optional[str] = None
    advisory_published: bool = False

    @classmethod
    def new(
        cls,
        pilot_id: str,
        company_id: str,
        mode: AdvisoryMode = AdvisoryMode.NONE,
        start_position: Optional[Coordinate] = None,
        **kwargs,
    ) -> 'FlightSession':
        """Create a session starting now."""
        start_lat, start_lng = start_position if start_position else (None, None)
        return cls(
            id=str(uuid.uuid4()),
            pilot_id=pilot_id,
            company_id=company_id,
            start_time=datetime.now(timezone.utc),
            mode=AdvisoryMode(mode),
            start_lat=start_lat,
            start_lng=start_lng,
            **kwargs,
        )

    @property
    def start_position(self) -> Optional[Coordinate]:
        if self.start_lat is None or self.start_lng is None:
            return None
        return (self.start_lat, self.start_lng)

    def elapsed_seconds(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.now(timezone.utc)
        return max(0, int((now - as_utc(self.start_time)).total_seconds()))

    # -------------------------------------------------------------------------
    # Conversions
    # -------------------------------------------------------------------------

    @classmethod
    def from_row(cls, row: ActiveFlight) -> 'FlightSession':
        route = None
        if row.route_snapshot:
            route = [(float(lat), float(lon)) for lat, lon in row.route_snapshot]

        return cls(
            id=row.id,
            pilot_id=row.pilot_id,
            company_id=row.company_id,
            start_time=as_utc(row.start_time),
            mode=AdvisoryMode(row.mode or AdvisoryMode.NONE.value),
            mission_id=row.mission_id,
            route_snapshot=route,
            start_lat=row.start_lat,
            start_lng=row.start_lng,
            device_id=row.device_id,
            pilot_name=row.pilot_name,
            drone_id=row.drone_id,
            advisory_published=bool(row.advisory_published),
        )

    def to_row(self) -> ActiveFlight:
        return ActiveFlight(
            id=self.id,
            pilot_id=self.pilot_id,
            company_id=self.company_id,
            start_time=self.start_time,
            mode=self.mode.value,
            mission_id=self.mission_id,
            route_snapshot=[list(p) for p in self.route_snapshot] if self.route_snapshot else None,
            start_lat=self.start_lat,
            start_lng=self.start_lng,
            device_id=self.device_id,
            pilot_name=self.pilot_name,
            drone_id=self.drone_id,
            advisory_published=self.advisory_published,
        )

    def to_dict(self) -> dict:
        """JSON-serializable form for the offline queue and API responses."""
        return {
            'id': self.id,
            'pilot_id': self.pilot_id,
            'company_id': self.company_id,
            'start_time': self.start_time.isoformat(),
            'mode': self.mode.value,
            'mission_id': self.mission_id,
            'route_snapshot': [list(p) for p in self.route_snapshot] if self.route_snapshot else None,
            'start_lat': self.start_lat,
            'start_lng': self.start_lng,
            'device_id': self.device_id,
            'pilot_name': self.pilot_name,
            'drone_id': self.drone_id,
            'advisory_published': self.advisory_published,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'FlightSession':
        route = data.get('route_snapshot')
        return cls(
            id=data['id'],
            pilot_id=data['pilot_id'],
            company_id=data['company_id'],
            start_time=as_utc(datetime.fromisoformat(data['start_time'])),
            mode=AdvisoryMode(data.get('mode') or AdvisoryMode.NONE.value),
            mission_id=data.get('mission_id'),
            route_snapshot=[(float(a), float(b)) for a, b in route] if route else None,
            start_lat=data.get('start_lat'),
            start_lng=data.get('start_lng'),
            device_id=data.get('device_id'),
            pilot_name=data.get('pilot_name'),
            drone_id=data.get('drone_id'),
            advisory_published=bool(data.get('advisory_published', False)),
        )
