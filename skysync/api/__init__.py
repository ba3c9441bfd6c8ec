"""
API module for SkySync.

Provides REST endpoints for:
- Flight sessions (start, end, status, live position)
- Nearby traffic beacons
- System status
"""

from skysync.api.flights import flights_bp
from skysync.api.beacons import beacons_bp
from skysync.api.metrics import metrics_bp

__all__ = ['flights_bp', 'beacons_bp', 'metrics_bp']
