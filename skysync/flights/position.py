"""
Live position watch.

A position source delivers fixes through callbacks at any time. The
watch writes each fix into a single-slot cell that only ever holds the
latest one; there is no history and no queue. Once stopped, late
callbacks are ignored.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)

Coordinate = Tuple[float, float]


@dataclass(frozen=True)
class PositionFix:
    """One GPS fix."""
    latitude: float
    longitude: float
    timestamp: float = field(default_factory=time.time)
    accuracy_m: Optional[float] = None
    is_default: bool = False

    @property
    def coordinate(self) -> Coordinate:
        return (self.latitude, self.longitude)

    def to_dict(self) -> dict:
        return {
            'latitude': self.latitude,
            'longitude': self.longitude,
            'timestamp': self.timestamp,
            'accuracy_m': self.accuracy_m,
            'is_default': self.is_default,
        }


class LatestPosition:
    """Thread-safe single-value cell."""

    def __init__(self):
        self._lock = threading.Lock()
        self._fix: Optional[PositionFix] = None

    def set(self, fix: PositionFix) -> None:
        with self._lock:
            self._fix = fix

    def get(self) -> Optional[PositionFix]:
        with self._lock:
            return self._fix

    def clear(self) -> None:
        with self._lock:
            self._fix = None


FixCallback = Callable[[PositionFix], None]


class Subscription:
    """Handle returned by a position source; cancel() stops delivery."""

    def __init__(self, cancel: Callable[[], None]):
        self._cancel = cancel
        self.active = True

    def cancel(self) -> None:
        if self.active:
            self.active = False
            self._cancel()


class PushPositionSource:
    """
    Position source fed from outside, e.g. the pilot's client posting
    fixes to the API.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._subscribers: List[FixCallback] = []

    def subscribe(self, callback: FixCallback) -> Subscription:
        with self._lock:
            self._subscribers.append(callback)

        def cancel():
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return Subscription(cancel)

    def push(self, latitude: float, longitude: float, accuracy_m: Optional[float] = None) -> None:
        fix = PositionFix(latitude=latitude, longitude=longitude, accuracy_m=accuracy_m)
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            callback(fix)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)


class PositionWatch:
    """
    Continuous subscription writing the latest fix into a cell.

    Until the first fix arrives, current() returns the default position
    so consumers always get a coordinate.
    """

    def __init__(self, source, default_position: Coordinate):
        self.source = source
        self.default_position = default_position
        self.cell = LatestPosition()

        self._lock = threading.Lock()
        self._subscription: Optional[Subscription] = None
        self._generation = 0

    @property
    def running(self) -> bool:
        with self._lock:
            return self._subscription is not None

    def start(self) -> None:
        with self._lock:
            if self._subscription is not None:
                return
            self._generation += 1
            generation = self._generation

        def on_fix(fix: PositionFix) -> None:
            with self._lock:
                if generation != self._generation:
                    return
                self.cell.set(fix)

        subscription = self.source.subscribe(on_fix)
        with self._lock:
            self._subscription = subscription
        logger.debug('Position watch started')

    def stop(self) -> None:
        """Stop synchronously; any callback still in flight is dropped."""
        with self._lock:
            subscription = self._subscription
            self._subscription = None
            self._generation += 1
            self.cell.clear()

        if subscription is not None:
            subscription.cancel()
            logger.debug('Position watch stopped')

    def current(self) -> PositionFix:
        fix = self.cell.get()
        if fix is not None:
            return fix
        lat, lon = self.default_position
        return PositionFix(latitude=lat, longitude=lon, is_default=True)
