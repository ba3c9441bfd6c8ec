"""
Exception hierarchy for SkySync.

Component-level failures (advisory publishing, beacon fetching) are
reported as result objects; these exceptions cover the cases that must
reach the caller synchronously.
"""

from typing import Optional


class SkySyncError(Exception):
    """Base exception for all SkySync errors."""

    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f'{self.message} (details: {self.details})'
        return self.message


class ConfigurationError(SkySyncError):
    """Raised at startup when required configuration is missing."""


class SigningError(SkySyncError):
    """
    Raised when request signing fails.

    The request must not be sent; there is no retry with stale
    credentials.
    """

    def __init__(self, message: str = 'Failed to sign request', original_error: Optional[Exception] = None):
        details = {}
        if original_error:
            details['original_error'] = str(original_error)
            details['original_error_type'] = type(original_error).__name__
        super().__init__(message, details)
        self.original_error = original_error


class GeometryError(SkySyncError, ValueError):
    """Raised when coordinates cannot form an advisory shape."""


class FlightAlreadyActiveError(SkySyncError):
    """Raised when a pilot starts a flight while one is already active."""

    def __init__(self, pilot_id: str):
        super().__init__('Flight already active for pilot', {'pilot_id': pilot_id})
        self.pilot_id = pilot_id


class StoreUnavailableError(SkySyncError):
    """
    Raised when the durable flight store cannot be reached.

    Callers queue the write for later replay instead of failing.
    """

    def __init__(self, operation: str, original_error: Optional[Exception] = None):
        details = {'operation': operation}
        if original_error:
            details['original_error'] = str(original_error)
        super().__init__('Durable store unavailable', details)
        self.operation = operation
        self.original_error = original_error


class AdvisoryAreaError(SkySyncError):
    """
    Raised when a route advisory box is too large to publish as is.

    code is 'large_advisory' when the pilot may confirm and retry with
    force, or 'advisory_too_large' when the area is refused outright.
    """

    def __init__(self, code: str, area_km2: float, limit_km2: float):
        super().__init__(
            f'Advisory area {area_km2:.1f} km2 exceeds {limit_km2:.0f} km2',
            {'code': code, 'area_km2': round(area_km2, 1), 'limit_km2': limit_km2},
        )
        self.code = code
        self.area_km2 = area_km2
        self.limit_km2 = limit_km2

    @property
    def requires_confirmation(self) -> bool:
        return self.code == 'large_advisory'
