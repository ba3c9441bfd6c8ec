"""
Flight session module for SkySync.

Owns the per-pilot flight lifecycle:
- FlightSessionManager: start / attach / end transitions
- FlightSessionRepository: durable store + local mirror + offline queue
- FlightRegistry: read-only view used by the refresh scheduler
- PositionWatch: latest-fix subscription for live-position flights
"""

from skysync.flights.offline_queue import OfflineQueue, QueuedOperation
from skysync.flights.position import (
    LatestPosition,
    PositionFix,
    PositionWatch,
    PushPositionSource,
)
from skysync.flights.store import FlightSessionRepository, LocalMirror, SqlFlightStore
from skysync.flights.registry import FlightRegistry
from skysync.flights.timer import ElapsedTimer
from skysync.flights.manager import (
    FlightSessionManager,
    FlightSessionManagers,
    FlightSnapshot,
    format_elapsed,
)

__all__ = [
    'OfflineQueue',
    'QueuedOperation',
    'LatestPosition',
    'PositionFix',
    'PositionWatch',
    'PushPositionSource',
    'FlightSessionRepository',
    'LocalMirror',
    'SqlFlightStore',
    'FlightRegistry',
    'ElapsedTimer',
    'FlightSessionManager',
    'FlightSessionManagers',
    'FlightSnapshot',
    'format_elapsed',
]
