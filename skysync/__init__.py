"""
SkySync Package.

Airspace-advisory and live-traffic synchronization for drone operations,
built with Flask, SQLAlchemy, requests and NumPy.

Modules:
    api/         REST endpoints for flight sessions, beacons and system status
    models/      SQLAlchemy ORM models (ActiveFlight, Beacon, Mission)
    airspace/    SafeSky request signing, advisory geometry and publishing
    ingestion/   Refresh scheduler and nearby traffic ingestion
    flights/     Flight session lifecycle, offline queue and position watch
    cache.py     Thread-safe in-memory beacon cache for map reads
    config.py    Centralized configuration from environment variables
"""

__version__ = '1.0.0'
