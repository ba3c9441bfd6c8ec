"""
Airspace-safety network (SafeSky) REST client.

Handles communication with the network's public API, including:
- Request signing on every call (no client library)
- Advisory publication (signed POST of a GeoJSON FeatureCollection)
- Nearby traffic queries by viewport
- Bounded timeouts so a slow call cannot stall a refresh cycle

Viewport format for beacon queries:
    lat_nw,lon_nw,lat_se,lon_se
"""

import json
import logging
import math
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple
from urllib.parse import urlencode

import requests

from skysync.airspace.signing import RequestSigner
from skysync.config import config

logger = logging.getLogger(__name__)


@dataclass
class BoundingBox:
    """Geographic bounding box for traffic queries."""
    lat_min: float
    lat_max: float
    lon_min: float
    lon_max: float

    @classmethod
    def from_center_radius(
        cls,
        center_lat: float,
        center_lon: float,
        radius_km: float
    ) -> 'BoundingBox':
        """
        Create bounding box from center point and radius.

        Uses approximate conversion: 1 degree ≈ 111 km at equator.
        Adjusts for latitude to account for longitude convergence.
        """
        lat_delta = radius_km / 111.0
        # Clamp near the poles where cos() approaches zero
        lon_delta = min(radius_km / (111.0 * max(abs(math.cos(math.radians(center_lat))), 0.01)), 180.0)

        return cls(
            lat_min=max(center_lat - lat_delta, -90.0),
            lat_max=min(center_lat + lat_delta, 90.0),
            lon_min=center_lon - lon_delta,
            lon_max=center_lon + lon_delta,
        )

    def to_viewport(self) -> str:
        """North-west corner followed by south-east corner."""
        return f'{self.lat_max:.5f},{self.lon_min:.5f},{self.lat_min:.5f},{self.lon_max:.5f}'


@dataclass
class ApiResponse:
    """Status and decoded body of a network call."""
    status_code: int
    data: Any

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class SafeSkyClient:
    """
    Client for the airspace-safety network API.

    Every request is signed with fresh timestamp and nonce headers.
    Network errors propagate as requests exceptions; callers decide
    how to isolate them.
    """

    def __init__(
        self,
        signer: RequestSigner,
        base_url: str = 'https://sandbox-public-api.safesky.app',
        advisory_path: str = '/v1/advisory',
        beacons_path: str = '/v1/beacons',
        timeout: float = 10.0,
        user_agent: str = 'SkySync/1.0',
        session: Optional[requests.Session] = None,
    ):
        self.signer = signer
        self.base_url = base_url.rstrip('/')
        self.advisory_path = advisory_path
        self.beacons_path = beacons_path
        self.timeout = timeout

        self.session = session or requests.Session()
        self.session.headers.update({
            'Accept': 'application/json',
            'User-Agent': user_agent,
        })

    @classmethod
    def from_config(cls) -> 'SafeSkyClient':
        """Create client from application configuration."""
        return cls(
            signer=RequestSigner(config.safesky.secret),
            base_url=config.safesky.base_url,
            advisory_path=config.safesky.advisory_path,
            beacons_path=config.safesky.beacons_path,
            timeout=config.safesky.timeout_seconds,
            user_agent=config.safesky.user_agent,
        )

    def _request(self, method: str, path: str, body: str = '') -> ApiResponse:
        """
        Sign and send one request.

        Raises:
            SigningError if the request could not be signed (not sent)
            requests.RequestException on network errors
        """
        headers = self.signer.sign(method, path, body)
        if body:
            headers['Content-Type'] = 'application/json'

        url = f'{self.base_url}{path}'
        logger.debug(f'{method} {url}')

        response = self.session.request(
            method,
            url,
            data=body.encode('utf-8') if body else None,
            headers=headers,
            timeout=self.timeout,
        )

        try:
            data = response.json() if response.content else None
        except ValueError:
            data = {'raw': response.text}

        return ApiResponse(status_code=response.status_code, data=data)

    def post_advisory(self, payload: dict) -> ApiResponse:
        """Publish (create or overwrite) an advisory envelope."""
        body = json.dumps(payload, separators=(',', ':'))
        return self._request('POST', self.advisory_path, body)

    def get_beacons(self, bbox: BoundingBox) -> List[dict]:
        """
        Fetch traffic reports inside a viewport.

        Returns:
            Raw beacon records (may be empty)

        Raises:
            requests.HTTPError on non-success responses
            requests.RequestException on network errors
        """
        path = f'{self.beacons_path}?{urlencode({"viewport": bbox.to_viewport()})}'
        result = self._request('GET', path)

        if not result.ok:
            logger.error(f'SafeSky beacons error: {result.status_code}')
            raise requests.HTTPError(f'SafeSky beacons returned {result.status_code}')

        if not isinstance(result.data, list):
            logger.warning('SafeSky beacons response is not a list, ignoring')
            return []

        return result.data

    def get_beacons_near(
        self,
        center: Tuple[float, float],
        radius_km: float,
    ) -> List[dict]:
        """Convenience wrapper building the viewport from center + radius."""
        bbox = BoundingBox.from_center_radius(center[0], center[1], radius_km)
        return self.get_beacons(bbox)
