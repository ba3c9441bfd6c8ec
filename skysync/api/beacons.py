"""
Nearby traffic API endpoints.

Provides endpoints for:
- GET /api/beacons - Current beacons from the read cache
- POST /api/beacons/heartbeat - Open map reports it is watching
"""

import logging
import time
from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, request

from skysync.cache import beacon_cache

logger = logging.getLogger(__name__)

beacons_bp = Blueprint('beacons', __name__, url_prefix='/api/beacons')


@beacons_bp.route('', methods=['GET'])
def get_beacons():
    """
    Get nearby traffic for map display.

    Query params:
        lat, lon: Optional center; results sorted closest first
        radius_km: Optional radius around the center
        limit: Max results (default: all)
    """
    start_time = time.perf_counter()

    # Unparseable values come back as None
    lat = request.args.get('lat', type=float)
    lon = request.args.get('lon', type=float)
    radius_km = request.args.get('radius_km', type=float)
    limit = request.args.get('limit', type=int)

    if (lat is None) != (lon is None):
        return jsonify({'error': 'lat and lon must be given together'}), 400

    beacons = beacon_cache.get_all(center_lat=lat, center_lon=lon, radius_km=radius_km)
    if limit:
        beacons = beacons[:limit]

    query_time_ms = (time.perf_counter() - start_time) * 1000

    return jsonify({
        'beacons': [b.to_dict() for b in beacons],
        'count': len(beacons),
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'query_time_ms': round(query_time_ms, 2),
    })


@beacons_bp.route('/heartbeat', methods=['POST'])
def heartbeat():
    """
    Mark a map as open.

    Body: {"viewer_id": "..."}
    """
    data = request.get_json(silent=True) or {}
    viewer_id = data.get('viewer_id')
    if not viewer_id or not isinstance(viewer_id, str):
        return jsonify({'success': False, 'error': 'viewer_id is required'}), 400

    current_app.config['VIEWER_HEARTBEATS'].beat(viewer_id)
    return jsonify({'success': True})
