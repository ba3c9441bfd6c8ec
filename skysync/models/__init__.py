"""
Database models for SkySync.

Only the records the advisory core needs:
1. ActiveFlight - durable flight sessions (one per airborne pilot)
2. Beacon - shared nearby-traffic table with freshness timestamps
3. Mission - read-only route source for route advisories
4. MapViewer - heartbeats of open traffic maps
"""

from skysync.models.base import Base, engine, SessionLocal, database_reachable, init_db
from skysync.models.active_flight import ActiveFlight, AdvisoryMode
from skysync.models.beacon import Beacon
from skysync.models.map_viewer import MapViewer
from skysync.models.flight_session import FlightSession, as_utc
from skysync.models.mission import Mission, MissionInfo, MissionLookup, parse_route

__all__ = [
    'Base',
    'engine',
    'SessionLocal',
    'init_db',
    'database_reachable',
    'ActiveFlight',
    'AdvisoryMode',
    'Beacon',
    'MapViewer',
    'FlightSession',
    'as_utc',
    'Mission',
    'MissionInfo',
    'MissionLookup',
    'parse_route',
]
