"""
Advisory publisher - announces a drone flight to the airspace-safety network.

Builds the advisory shape for one flight session, wraps it in the
network's GeoJSON envelope and sends a signed POST. The advisory id is
derived from the session, so every refresh overwrites the same advisory
instead of creating a new one.

Two modes:
- route-advisory: polygon around the linked mission's planned route
- live-position: point + radius around the pilot's start coordinate

A publish never raises to its caller. Failures come back as a
PublishResult so one flight cannot break a refresh cycle for the others.

Route boxes are size-checked: above the confirmation threshold a new
flight must be started with force (check_area), and above the hard
limit the advisory is never sent, not even on refresh.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional, Tuple

import requests
from sqlalchemy.exc import SQLAlchemyError

from skysync.airspace.client import SafeSkyClient
from skysync.airspace.geometry import PointShape, PolygonShape, Shape, build_point, build_polygon
from skysync.config import config
from skysync.exceptions import AdvisoryAreaError, GeometryError, SigningError
from skysync.models import AdvisoryMode, FlightSession, MissionLookup

logger = logging.getLogger(__name__)

LARGE_ADVISORY = 'large_advisory'
ADVISORY_TOO_LARGE = 'advisory_too_large'


@dataclass
class PublishResult:
    """Outcome of one publish attempt."""
    flight_id: str
    advisory_id: str
    success: bool
    skipped: bool = False
    status_code: Optional[int] = None
    network_id: Optional[str] = None
    error: Optional[str] = None
    area_km2: Optional[float] = None

    def to_dict(self) -> dict:
        return {
            'flight_id': self.flight_id,
            'advisory_id': self.advisory_id,
            'success': self.success,
            'skipped': self.skipped,
            'status_code': self.status_code,
            'network_id': self.network_id,
            'error': self.error,
            'area_km2': round(self.area_km2, 1) if self.area_km2 is not None else None,
        }


def advisory_id_for(flight: FlightSession) -> str:
    """Deterministic advisory id: one advisory per mission, or per session."""
    source = flight.mission_id or flight.id
    return f'AVS_{source[:8]}'


class AdvisoryPublisher:
    """
    Publishes and refreshes advisories for flight sessions.

    Stateless apart from its collaborators; safe to call from
    several scheduler workers at once.
    """

    def __init__(
        self,
        client: SafeSkyClient,
        missions: Optional[MissionLookup] = None,
        max_altitude_m: Optional[int] = None,
        min_route_points: Optional[int] = None,
        call_sign_prefix: Optional[str] = None,
        large_area_km2: Optional[float] = None,
        max_area_km2: Optional[float] = None,
    ):
        self.client = client
        self.missions = missions or MissionLookup()
        self.max_altitude_m = max_altitude_m or config.advisory.max_altitude_m
        self.min_route_points = min_route_points or config.advisory.min_route_points
        self.call_sign_prefix = call_sign_prefix or config.advisory.call_sign_prefix
        self.large_area_km2 = large_area_km2 or config.advisory.large_area_km2
        self.max_area_km2 = max_area_km2 or config.advisory.max_area_km2

    def _skip(self, flight: FlightSession, reason: str, area_km2: Optional[float] = None) -> PublishResult:
        logger.warning(f'Skipping advisory for flight {flight.id}: {reason}')
        return PublishResult(
            flight_id=flight.id,
            advisory_id=advisory_id_for(flight),
            success=False,
            skipped=True,
            error=reason,
            area_km2=area_km2,
        )

    def _shape_for(self, flight: FlightSession) -> Optional[Tuple[Shape, str, str]]:
        """
        (shape, call sign, remarks) for a flight, or None when there is
        nothing to publish yet.

        Raises:
            GeometryError on invalid coordinates
        """
        if flight.mode == AdvisoryMode.ROUTE_ADVISORY:
            mission = self.missions.get(flight.mission_id)
            route = (mission.route if mission else None) or flight.route_snapshot
            if not route or len(route) < self.min_route_points:
                return None

            title = (mission.title if mission else '') or 'Drone operation'
            return build_polygon(route), f'{self.call_sign_prefix}: {title[:20]}', 'Drone operation - planned route'

        if flight.mode == AdvisoryMode.LIVE_POSITION:
            if flight.start_position is None:
                return None
            call_sign = flight.pilot_name or self.call_sign_prefix
            return build_point(flight.start_position), call_sign, 'Drone operation - live position'

        return None

    def _envelope(self, flight: FlightSession, shape: Shape, call_sign: str, remarks: str) -> dict:
        properties = {
            'id': advisory_id_for(flight),
            'call_sign': call_sign,
            'last_update': int(time.time()),
            'max_altitude': self.max_altitude_m,
            'remarks': remarks,
        }
        if isinstance(shape, PointShape):
            properties['max_distance'] = shape.radius_m

        return {
            'type': 'FeatureCollection',
            'features': [{
                'type': 'Feature',
                'properties': properties,
                'geometry': shape.to_geojson(),
            }],
        }

    def build_payload(self, flight: FlightSession) -> Optional[dict]:
        """
        Build the advisory envelope for a flight.

        Returns None when there is nothing to publish yet (no route,
        no start coordinate, or mode none).

        Raises:
            GeometryError on invalid coordinates
        """
        built = self._shape_for(flight)
        if built is None:
            return None
        return self._envelope(flight, *built)

    def check_area(self, flight: FlightSession, force: bool = False) -> Optional[float]:
        """
        Size gate for starting a route-advisory flight.

        Returns the box area in km2 (None when there is no box to check).
        Lookup and geometry problems are left for publish() to report.

        Raises:
            AdvisoryAreaError with code 'advisory_too_large' above the hard
            limit, or 'large_advisory' above the confirmation threshold
            unless force is set
        """
        if flight.mode != AdvisoryMode.ROUTE_ADVISORY:
            return None

        try:
            built = self._shape_for(flight)
        except (GeometryError, SQLAlchemyError) as e:
            logger.debug(f'Area check for flight {flight.id} deferred: {e}')
            return None
        if built is None:
            return None

        area = built[0].area_km2
        if area > self.max_area_km2:
            raise AdvisoryAreaError(ADVISORY_TOO_LARGE, area, self.max_area_km2)
        if area > self.large_area_km2 and not force:
            raise AdvisoryAreaError(LARGE_ADVISORY, area, self.large_area_km2)
        return area

    def publish(self, flight: FlightSession) -> PublishResult:
        """
        Create or refresh the advisory for one flight.

        Used both for the immediate publish on flight start and for
        every scheduler refresh.
        """
        advisory_id = advisory_id_for(flight)

        if flight.mode == AdvisoryMode.NONE:
            return self._skip(flight, 'advisory mode is none')

        try:
            built = self._shape_for(flight)
        except GeometryError as e:
            return self._skip(flight, str(e))
        except SQLAlchemyError as e:
            logger.error(f'Mission lookup failed for flight {flight.id}: {e}')
            return PublishResult(flight.id, advisory_id, success=False, error='mission lookup failed')

        if built is None:
            if flight.mode == AdvisoryMode.ROUTE_ADVISORY:
                return self._skip(flight, 'mission has no usable route')
            return self._skip(flight, 'no start coordinate recorded')

        shape = built[0]
        area_km2 = shape.area_km2 if isinstance(shape, PolygonShape) else None
        if area_km2 is not None and area_km2 > self.max_area_km2:
            return self._skip(flight, ADVISORY_TOO_LARGE, area_km2)

        payload = self._envelope(flight, *built)

        try:
            response = self.client.post_advisory(payload)
        except SigningError as e:
            logger.error(f'Advisory {advisory_id} not sent, signing failed: {e}')
            return PublishResult(flight.id, advisory_id, success=False, error=str(e))
        except requests.RequestException as e:
            logger.error(f'Advisory {advisory_id} publish failed: {e}')
            return PublishResult(flight.id, advisory_id, success=False, error=str(e))

        if not response.ok:
            logger.error(f'SafeSky rejected advisory {advisory_id}: {response.status_code} {response.data}')
            return PublishResult(
                flight.id,
                advisory_id,
                success=False,
                status_code=response.status_code,
                error=f'API error: {response.status_code}',
            )

        network_id = None
        if isinstance(response.data, dict):
            network_id = response.data.get('id') or response.data.get('advisory_id')

        logger.info(f'Published advisory {advisory_id} for flight {flight.id} ({flight.mode.value})')

        return PublishResult(
            flight.id,
            advisory_id,
            success=True,
            status_code=response.status_code,
            network_id=network_id,
            area_km2=area_km2,
        )

    def end(self, flight: FlightSession) -> PublishResult:
        """
        Stop announcing a flight.

        Advisories lapse on the network's side once refreshes stop, so
        no request is sent.
        """
        advisory_id = advisory_id_for(flight)
        if flight.mode != AdvisoryMode.NONE:
            logger.info(f'Advisory {advisory_id} will expire on the network once refreshes stop')
        return PublishResult(flight.id, advisory_id, success=True)
