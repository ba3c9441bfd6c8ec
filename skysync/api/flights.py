"""
Flight session API endpoints.

Provides endpoints for:
- POST /api/flights/start - Start a flight for the calling pilot
- POST /api/flights/end - End the calling pilot's flight
- GET /api/flights/status - Elapsed time, mode and last position
- POST /api/flights/position - Push a GPS fix from the pilot's device
- GET /api/flights/active - Active flights for the calling tenant

Pilot and tenant come from the X-Pilot-Id and X-Company-Id headers;
authenticating them is left to the deployment in front of this service.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Optional, Tuple

from flask import Blueprint, current_app, jsonify, request

from skysync.exceptions import AdvisoryAreaError
from skysync.flights import FlightRegistry
from skysync.models import AdvisoryMode

logger = logging.getLogger(__name__)

flights_bp = Blueprint('flights', __name__, url_prefix='/api/flights')

PILOT_HEADER = 'X-Pilot-Id'
COMPANY_HEADER = 'X-Company-Id'


def _identity() -> Tuple[Optional[str], Optional[str]]:
    pilot_id = (request.headers.get(PILOT_HEADER) or '').strip() or None
    company_id = (request.headers.get(COMPANY_HEADER) or '').strip() or None
    return pilot_id, company_id


def _manager():
    """Manager for the calling pilot, or an error response."""
    pilot_id, company_id = _identity()
    if not pilot_id or not company_id:
        return None, (jsonify({'error': f'{PILOT_HEADER} and {COMPANY_HEADER} headers required'}), 400)
    return current_app.config['FLIGHT_MANAGERS'].get(pilot_id, company_id), None


def _parse_coordinate(value) -> Tuple[Optional[Tuple[float, float]], Optional[str]]:
    """
    Validate a {latitude, longitude} object.

    Returns (coordinate, error message).
    """
    if not isinstance(value, dict):
        return None, 'latitude and longitude required'

    lat = value.get('latitude')
    lon = value.get('longitude')
    if lat is None or lon is None:
        return None, 'latitude and longitude required'

    try:
        lat = float(lat)
        lon = float(lon)
    except (ValueError, TypeError):
        return None, 'Invalid latitude or longitude'

    # Validate ranges
    if not (-90 <= lat <= 90):
        return None, 'Latitude must be between -90 and 90'
    if not (-180 <= lon <= 180):
        return None, 'Longitude must be between -180 and 180'

    return (lat, lon), None


@flights_bp.route('/start', methods=['POST'])
def start_flight():
    """
    Start a flight.

    Body:
        mode: "none" | "route-advisory" | "live-position" (default "none")
        mission_id: linked mission (needed for route advisories)
        start_position: {"latitude": float, "longitude": float}
            (required for live-position)
        device_id, pilot_name, drone_id: optional identifiers
        force: confirm a large route advisory

    Returns 409 when the pilot already has an active flight, and 422
    with error "large_advisory" (retry with force) or
    "advisory_too_large" when the route box is too big.
    """
    manager, error = _manager()
    if error:
        return error

    data = request.get_json(silent=True) or {}

    try:
        mode = AdvisoryMode(data.get('mode') or AdvisoryMode.NONE.value)
    except ValueError:
        return jsonify({'error': f'Unknown advisory mode: {data.get("mode")}'}), 400

    start_position = None
    if data.get('start_position') is not None:
        start_position, message = _parse_coordinate(data['start_position'])
        if message:
            return jsonify({'error': message}), 400

    if mode == AdvisoryMode.LIVE_POSITION and start_position is None:
        return jsonify({'error': 'start_position required for live-position mode'}), 400

    try:
        started = manager.start_flight(
            mission_id=data.get('mission_id'),
            mode=mode,
            start_position=start_position,
            device_id=data.get('device_id'),
            pilot_name=data.get('pilot_name'),
            drone_id=data.get('drone_id'),
            force=bool(data.get('force')),
        )
    except AdvisoryAreaError as e:
        return jsonify({
            'success': False,
            'error': e.code,
            'area_km2': round(e.area_km2, 1),
            'limit_km2': e.limit_km2,
            'requires_confirmation': e.requires_confirmation,
        }), 422

    if not started:
        return jsonify({'success': False, 'error': 'Flight already active'}), 409

    return jsonify({
        'success': True,
        'flight': manager.snapshot().to_dict(),
    })


@flights_bp.route('/end', methods=['POST'])
def end_flight():
    """End the calling pilot's flight."""
    manager, error = _manager()
    if error:
        return error

    elapsed_minutes = manager.end_flight()
    if elapsed_minutes is None:
        return jsonify({'success': False, 'error': 'No active flight'}), 404

    return jsonify({
        'success': True,
        'elapsed_minutes': elapsed_minutes,
    })


@flights_bp.route('/status', methods=['GET'])
def flight_status():
    """Read-only snapshot of the calling pilot's flight."""
    start_time = time.perf_counter()

    manager, error = _manager()
    if error:
        return error

    snapshot = manager.snapshot()
    query_time_ms = (time.perf_counter() - start_time) * 1000

    return jsonify({
        'flight': snapshot.to_dict(),
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'query_time_ms': round(query_time_ms, 2),
    })


@flights_bp.route('/position', methods=['POST'])
def push_position():
    """
    Push a GPS fix into the pilot's position source.

    Body: {"latitude": float, "longitude": float, "accuracy_m": float?}

    Fixes are accepted at any time but only stored while a
    live-position flight is watching.
    """
    manager, error = _manager()
    if error:
        return error

    data = request.get_json(silent=True)
    if not data:
        return jsonify({'error': 'JSON body required'}), 400

    coordinate, message = _parse_coordinate(data)
    if message:
        return jsonify({'error': message}), 400

    accuracy = data.get('accuracy_m')
    try:
        accuracy = float(accuracy) if accuracy is not None else None
    except (ValueError, TypeError):
        return jsonify({'error': 'Invalid accuracy_m'}), 400

    manager.position_source.push(coordinate[0], coordinate[1], accuracy)
    position = manager.current_position()

    return jsonify({
        'success': True,
        'watching': position is not None,
        'position': position.to_dict() if position else None,
    })


@flights_bp.route('/active', methods=['GET'])
def active_flights():
    """Active flights for the calling tenant."""
    start_time = time.perf_counter()

    _, company_id = _identity()
    if not company_id:
        return jsonify({'error': f'{COMPANY_HEADER} header required'}), 400

    registry: FlightRegistry = current_app.config['FLIGHT_REGISTRY']
    flights = registry.active_flights(company_id=company_id)

    now = datetime.now(timezone.utc)
    result = []
    for flight in flights:
        entry = flight.to_dict()
        entry['elapsed_minutes'] = flight.elapsed_seconds(now) // 60
        result.append(entry)

    query_time_ms = (time.perf_counter() - start_time) * 1000

    return jsonify({
        'flights': result,
        'count': len(result),
        'timestamp': now.isoformat(),
        'query_time_ms': round(query_time_ms, 2),
    })
