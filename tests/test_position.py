"""Tests for the live position watch and elapsed timer"""
import threading
from datetime import datetime, timedelta, timezone

from skysync.flights import ElapsedTimer, LatestPosition, PositionFix, PositionWatch, PushPositionSource
from skysync.flights.position import Subscription


class StubbornSource:
    """Position source that keeps firing after its subscription is cancelled."""

    def __init__(self):
        self.callbacks = []

    def subscribe(self, callback):
        self.callbacks.append(callback)
        return Subscription(lambda: None)

    def fire(self, lat, lon):
        for callback in list(self.callbacks):
            callback(PositionFix(latitude=lat, longitude=lon))


class TestLatestPosition:
    """Tests for the single-slot cell"""

    def test_holds_only_latest(self):
        cell = LatestPosition()
        cell.set(PositionFix(60.0, 10.0))
        cell.set(PositionFix(60.1, 10.1))
        assert cell.get().coordinate == (60.1, 10.1)

    def test_clear(self):
        cell = LatestPosition()
        cell.set(PositionFix(60.0, 10.0))
        cell.clear()
        assert cell.get() is None


class TestPushPositionSource:
    """Tests for the pushed position source"""

    def test_delivers_to_subscribers(self):
        source = PushPositionSource()
        received = []
        source.subscribe(received.append)

        source.push(63.4, 10.4, accuracy_m=5.0)
        assert received[0].coordinate == (63.4, 10.4)
        assert received[0].accuracy_m == 5.0

    def test_cancel_stops_delivery(self):
        source = PushPositionSource()
        received = []
        subscription = source.subscribe(received.append)
        subscription.cancel()
        subscription.cancel()

        source.push(63.4, 10.4)
        assert received == []
        assert source.subscriber_count == 0


class TestPositionWatch:
    """Tests for the position watch"""

    def test_default_position_until_first_fix(self):
        watch = PositionWatch(PushPositionSource(), default_position=(63.7, 9.6))
        watch.start()

        current = watch.current()
        assert current.coordinate == (63.7, 9.6)
        assert current.is_default is True

    def test_tracks_latest_fix(self):
        source = PushPositionSource()
        watch = PositionWatch(source, default_position=(63.7, 9.6))
        watch.start()

        source.push(63.40, 10.40)
        source.push(63.41, 10.41)
        assert watch.current().coordinate == (63.41, 10.41)
        assert watch.current().is_default is False

    def test_start_twice_subscribes_once(self):
        source = PushPositionSource()
        watch = PositionWatch(source, default_position=(63.7, 9.6))
        watch.start()
        watch.start()
        assert source.subscriber_count == 1

    def test_late_callbacks_ignored_after_stop(self):
        source = StubbornSource()
        watch = PositionWatch(source, default_position=(63.7, 9.6))
        watch.start()
        source.fire(63.40, 10.40)

        watch.stop()
        source.fire(64.00, 11.00)

        assert watch.running is False
        assert watch.cell.get() is None

    def test_restart_ignores_previous_generation(self):
        source = StubbornSource()
        watch = PositionWatch(source, default_position=(63.7, 9.6))
        watch.start()
        stale_callback = source.callbacks[0]
        watch.stop()
        watch.start()

        stale_callback(PositionFix(1.0, 1.0))
        assert watch.cell.get() is None

        source.callbacks[-1](PositionFix(63.5, 10.5))
        assert watch.current().coordinate == (63.5, 10.5)


class TestElapsedTimer:
    """Tests for the one-second elapsed ticker"""

    def test_elapsed_from_stored_start(self):
        timer = ElapsedTimer(datetime.now(timezone.utc) - timedelta(minutes=7, seconds=3))
        assert timer.elapsed_minutes == 7
        assert timer.elapsed_seconds >= 423

    def test_future_start_clamps_to_zero(self):
        timer = ElapsedTimer(datetime.now(timezone.utc) + timedelta(minutes=1))
        assert timer.elapsed_seconds == 0

    def test_ticks_and_stops(self):
        ticked = threading.Event()
        timer = ElapsedTimer(
            datetime.now(timezone.utc) - timedelta(seconds=90),
            on_tick=lambda seconds: ticked.set(),
            interval=0.01,
        )
        timer.start()
        try:
            assert ticked.wait(timeout=2)
        finally:
            timer.stop()
        assert timer.elapsed_minutes == 1
