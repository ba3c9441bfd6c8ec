"""
Configuration management for SkySync.

Loads settings from environment variables with sensible defaults.
All configuration is centralized here to avoid magic strings scattered
throughout the codebase.
"""

import os
from dataclasses import dataclass
from typing import Optional, Tuple

from dotenv import load_dotenv

from skysync.exceptions import ConfigurationError

load_dotenv()


def _parse_location(value: str) -> Optional[Tuple[float, float]]:
    """Parse 'lat,lon' string into tuple, or None if empty/invalid."""
    if not value:
        return None
    try:
        lat, lon = value.split(',')
        return (float(lat.strip()), float(lon.strip()))
    except (ValueError, AttributeError):
        return None


@dataclass(frozen=True)
class SafeSkyConfig:
    """Airspace-safety network (SafeSky) API configuration."""
    secret: Optional[str] = os.getenv('SAFESKY_SECRET') or None
    base_url: str = os.getenv('SAFESKY_BASE_URL', 'https://sandbox-public-api.safesky.app')
    advisory_path: str = '/v1/advisory'
    beacons_path: str = '/v1/beacons'
    timeout_seconds: float = float(os.getenv('SAFESKY_TIMEOUT_SECONDS', '10'))
    user_agent: str = 'SkySync/1.0'

    @property
    def is_configured(self) -> bool:
        return bool(self.secret)


@dataclass(frozen=True)
class DatabaseConfig:
    """Database configuration."""
    url: str = os.getenv('DATABASE_URL', 'sqlite:///skysync.db')

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith('sqlite')


@dataclass(frozen=True)
class SchedulerConfig:
    """Refresh scheduler settings."""
    interval_seconds: int = int(os.getenv('REFRESH_INTERVAL_SECONDS', '60'))
    max_workers: int = int(os.getenv('REFRESH_MAX_WORKERS', '4'))

    # Upper bound for joining a single flight's work item
    call_timeout_seconds: float = float(os.getenv('REFRESH_CALL_TIMEOUT_SECONDS', '20'))

    # Exactly one process per deployment should run the loop
    enabled: bool = os.getenv('REFRESH_SCHEDULER_ENABLED', '1') == '1'


@dataclass(frozen=True)
class AdvisoryConfig:
    """Advisory shape and envelope settings."""
    margin_deg: float = 0.005  # ~500m at Norwegian latitudes
    point_radius_m: int = int(os.getenv('ADVISORY_POINT_RADIUS_M', '500'))
    max_altitude_m: int = int(os.getenv('ADVISORY_MAX_ALTITUDE_M', '120'))
    min_route_points: int = 1

    # Route boxes above large_area_km2 need explicit confirmation at start;
    # boxes above max_area_km2 are never published
    large_area_km2: float = float(os.getenv('ADVISORY_LARGE_AREA_KM2', '50'))
    max_area_km2: float = float(os.getenv('ADVISORY_MAX_AREA_KM2', '150'))
    call_sign_prefix: str = os.getenv('ADVISORY_CALL_SIGN_PREFIX', 'SkySync')


@dataclass(frozen=True)
class BeaconConfig:
    """Nearby traffic ingestion settings."""
    ttl_seconds: int = int(os.getenv('BEACON_TTL_SECONDS', '60'))
    radius_km: float = float(os.getenv('BEACON_RADIUS_KM', '100'))
    cache_ttl_seconds: int = int(os.getenv('BEACON_CACHE_TTL_SECONDS', '5'))

    # Skip the network query while no map has sent a heartbeat recently
    require_viewers: bool = os.getenv('BEACON_REQUIRE_VIEWERS', '0') == '1'
    viewer_timeout_seconds: int = int(os.getenv('BEACON_VIEWER_TIMEOUT_SECONDS', '10'))


@dataclass(frozen=True)
class FlightConfig:
    """Flight session settings."""
    local_cache_dir: str = os.getenv('LOCAL_CACHE_DIR', '.skysync_cache')
    max_replay_retries: int = 3

    # Used until the first position fix arrives
    default_position: Tuple[float, float] = (
        _parse_location(os.getenv('DEFAULT_POSITION', '')) or (63.7, 9.6)
    )


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration."""
    safesky: SafeSkyConfig
    database: DatabaseConfig
    scheduler: SchedulerConfig
    advisory: AdvisoryConfig
    beacons: BeaconConfig
    flights: FlightConfig

    # Flask settings
    secret_key: str
    debug: bool

    def validate(self) -> None:
        """Fail fast on configuration that makes every outbound call impossible."""
        if not self.safesky.is_configured:
            raise ConfigurationError('SAFESKY_SECRET is not configured')
        if self.scheduler.max_workers < 1:
            raise ConfigurationError('REFRESH_MAX_WORKERS must be at least 1')


def load_config() -> AppConfig:
    """Load all configuration."""
    return AppConfig(
        safesky=SafeSkyConfig(),
        database=DatabaseConfig(),
        scheduler=SchedulerConfig(),
        advisory=AdvisoryConfig(),
        beacons=BeaconConfig(),
        flights=FlightConfig(),
        secret_key=os.getenv('SECRET_KEY', 'dev-key-change-in-prod'),
        debug=os.getenv('FLASK_DEBUG', '0') == '1',
    )


# Singleton instance
config = load_config()
