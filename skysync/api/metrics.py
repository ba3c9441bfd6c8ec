"""
Metrics API endpoints.

Provides endpoints for:
- GET /api/metrics/status - System status and health
"""

import logging
import time
from datetime import datetime, timezone

from flask import Blueprint, jsonify, current_app

from skysync.cache import beacon_cache
from skysync.config import config
from skysync.models.base import database_reachable

logger = logging.getLogger(__name__)

metrics_bp = Blueprint('metrics', __name__, url_prefix='/api/metrics')


@metrics_bp.route('/status', methods=['GET'])
def get_system_status():
    """
    Get system health and status information.

    Returns:
    - Refresh scheduler status and last cycle report
    - Database connectivity
    - Beacon cache statistics
    - Configuration info
    """
    start_time = time.perf_counter()

    scheduler = current_app.config.get('REFRESH_SCHEDULER')
    scheduler_stats = scheduler.stats if scheduler else {'running': False}

    db_ok = database_reachable()

    managers = current_app.config.get('FLIGHT_MANAGERS')
    pending_writes = len(managers.repository.queue) if managers else 0

    query_time_ms = (time.perf_counter() - start_time) * 1000

    return jsonify({
        'status': 'healthy' if (db_ok and scheduler_stats.get('running')) else 'degraded',
        'database': {
            'connected': db_ok,
            'type': 'sqlite' if config.database.is_sqlite else 'postgresql',
        },
        'scheduler': scheduler_stats,
        'cache': beacon_cache.stats,
        'offline_queue': {
            'pending': pending_writes,
        },
        'config': {
            'refresh_interval': config.scheduler.interval_seconds,
            'max_workers': config.scheduler.max_workers,
            'beacon_ttl_seconds': config.beacons.ttl_seconds,
            'beacon_radius_km': config.beacons.radius_km,
            'safesky_configured': config.safesky.is_configured,
            'safesky_base_url': config.safesky.base_url,
        },
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'query_time_ms': round(query_time_ms, 2),
    })
