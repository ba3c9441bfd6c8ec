"""
Elapsed flight time ticker.

Ticks once per second from the stored start time. Pure timer, no I/O,
independent of the network refresh cadence.
"""

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class ElapsedTimer:
    """Background one-second ticker for one flight."""

    def __init__(
        self,
        start_time: datetime,
        on_tick: Optional[Callable[[int], None]] = None,
        interval: float = 1.0,
    ):
        self.start_time = start_time
        self.on_tick = on_tick
        self.interval = interval

        self._elapsed_seconds = self._compute()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def _compute(self) -> int:
        delta = datetime.now(timezone.utc) - self.start_time
        return max(0, int(delta.total_seconds()))

    @property
    def elapsed_seconds(self) -> int:
        return self._elapsed_seconds

    @property
    def elapsed_minutes(self) -> int:
        return self._elapsed_seconds // 60

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            self._elapsed_seconds = self._compute()
            if self.on_tick:
                try:
                    self.on_tick(self._elapsed_seconds)
                except Exception as e:
                    logger.error(f'Elapsed timer callback error: {e}')

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, daemon=True, name='flight-timer')
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=self.interval * 2)
        self._thread = None
