"""
Advisory geometry.

Turns a planned route or a single live position into the shape that is
published to the airspace-safety network:

- Several route points: the bounding box of all points, expanded by a
  fixed margin, emitted as a closed 5-point ring.
- One route point: a square of the same margin centered on it.
- A live position: a point with a fixed radius in meters.

The box is deliberately coarse. It is always convex, never
self-intersecting and always closed, at the cost of over-covering long
diagonal routes.
"""

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

import numpy as np

from skysync.config import config
from skysync.exceptions import GeometryError

# (latitude, longitude) in decimal degrees
Coordinate = Tuple[float, float]

KM_PER_DEGREE = 111.32


@dataclass(frozen=True)
class PolygonShape:
    """Closed ring of (lat, lon) coordinates; first point equals last."""
    ring: Tuple[Coordinate, ...]

    @property
    def bounds(self) -> Tuple[float, float, float, float]:
        """(lat_min, lat_max, lon_min, lon_max) of the ring."""
        lats = [lat for lat, _ in self.ring]
        lons = [lon for _, lon in self.ring]
        return min(lats), max(lats), min(lons), max(lons)

    def contains(self, coord: Coordinate) -> bool:
        """Bounding-box containment, which is exact for the rings built here."""
        lat_min, lat_max, lon_min, lon_max = self.bounds
        return lat_min <= coord[0] <= lat_max and lon_min <= coord[1] <= lon_max

    @property
    def area_km2(self) -> float:
        """Box area on a local equirectangular projection."""
        lat_min, lat_max, lon_min, lon_max = self.bounds
        height = (lat_max - lat_min) * KM_PER_DEGREE
        width = (lon_max - lon_min) * KM_PER_DEGREE * np.cos(np.radians((lat_min + lat_max) / 2))
        return float(height * width)

    def to_geojson(self) -> dict:
        return {
            'type': 'Polygon',
            'coordinates': [[[lon, lat] for lat, lon in self.ring]],
        }


@dataclass(frozen=True)
class PointShape:
    """Center point with a radius in meters."""
    center: Coordinate
    radius_m: int

    def to_geojson(self) -> dict:
        return {
            'type': 'Point',
            'coordinates': [self.center[1], self.center[0]],
        }


Shape = Union[PolygonShape, PointShape]


def _validate(coord: Sequence[float]) -> Coordinate:
    try:
        lat, lon = float(coord[0]), float(coord[1])
    except (TypeError, ValueError, IndexError) as e:
        raise GeometryError(f'Invalid coordinate: {coord!r}') from e

    if not (-90 <= lat <= 90) or not (-180 <= lon <= 180):
        raise GeometryError(f'Coordinate out of range: {coord!r}')
    return lat, lon


def _box_ring(lat_min: float, lat_max: float, lon_min: float, lon_max: float) -> Tuple[Coordinate, ...]:
    # Counter-clockwise in (lon, lat), closed
    return (
        (lat_min, lon_min),
        (lat_min, lon_max),
        (lat_max, lon_max),
        (lat_max, lon_min),
        (lat_min, lon_min),
    )


def build_polygon(coords: Sequence[Sequence[float]], margin_deg: Optional[float] = None) -> PolygonShape:
    """
    Build a closed bounding-box ring around route coordinates.

    Raises:
        GeometryError if coords is empty or holds invalid points
    """
    if coords is None or len(coords) == 0:
        raise GeometryError('Route has no coordinates')

    margin = config.advisory.margin_deg if margin_deg is None else margin_deg
    points = np.array([_validate(c) for c in coords], dtype=float)

    if len(points) == 1:
        lat, lon = points[0]
        return PolygonShape(ring=_box_ring(
            float(lat - margin), float(lat + margin),
            float(lon - margin), float(lon + margin),
        ))

    lat_min, lon_min = points.min(axis=0) - margin
    lat_max, lon_max = points.max(axis=0) + margin

    return PolygonShape(ring=_box_ring(
        float(lat_min), float(lat_max), float(lon_min), float(lon_max),
    ))


def build_point(coord: Sequence[float], radius_m: Optional[int] = None) -> PointShape:
    """Point advisory centered exactly on coord."""
    radius = config.advisory.point_radius_m if radius_m is None else radius_m
    return PointShape(center=_validate(coord), radius_m=int(radius))


def build_shape(
    route: Optional[Sequence[Sequence[float]]] = None,
    position: Optional[Sequence[float]] = None,
) -> Shape:
    """
    Pick the shape for a flight: polygon when a route is given,
    point when only a position is.
    """
    if route is not None:
        return build_polygon(route)
    if position is not None:
        return build_point(position)
    raise GeometryError('Either a route or a position is required')
