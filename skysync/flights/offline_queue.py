"""
Offline write queue for the durable flight store.

When the store cannot be reached, flight start/end writes are appended
here (a JSON file next to the local mirror) and replayed once
connectivity returns. Operations that keep failing for reasons other
than connectivity are dropped after a fixed number of replays.
"""

import json
import logging
import threading
import time
import uuid
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from skysync.config import config
from skysync.exceptions import StoreUnavailableError

logger = logging.getLogger(__name__)

QUEUE_FILENAME = 'offline_queue.json'


@dataclass
class QueuedOperation:
    """One pending durable write."""
    id: str
    operation: str  # 'create' | 'delete' | 'publish'
    pilot_id: str
    data: dict
    timestamp: float
    retries: int = 0
    description: str = ''


class OfflineQueue:
    """
    Persistent FIFO of pending flight store writes.

    Thread-safe; the file is rewritten on every change.
    """

    def __init__(self, directory: Optional[str] = None, max_retries: Optional[int] = None):
        self.path = Path(directory or config.flights.local_cache_dir) / QUEUE_FILENAME
        self.max_retries = max_retries or config.flights.max_replay_retries
        self._lock = threading.RLock()

    def _read(self) -> List[QueuedOperation]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding='utf-8'))
            return [QueuedOperation(**item) for item in raw]
        except (OSError, ValueError, TypeError) as e:
            logger.error(f'Offline queue unreadable, starting empty: {e}')
            return []

    def _write(self, operations: List[QueuedOperation]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix('.tmp')
        tmp.write_text(json.dumps([asdict(op) for op in operations]), encoding='utf-8')
        tmp.replace(self.path)

    def add(self, operation: str, pilot_id: str, data: dict, description: str = '') -> str:
        """Append an operation; returns its id."""
        op = QueuedOperation(
            id=str(uuid.uuid4()),
            operation=operation,
            pilot_id=pilot_id,
            data=data,
            timestamp=time.time(),
            description=description,
        )
        with self._lock:
            operations = self._read()
            operations.append(op)
            self._write(operations)

        logger.info(f'Queued offline {operation} for pilot {pilot_id} {description}'.rstrip())
        return op.id

    def pending(self, pilot_id: Optional[str] = None) -> List[QueuedOperation]:
        with self._lock:
            operations = self._read()
        if pilot_id is None:
            return operations
        return [op for op in operations if op.pilot_id == pilot_id]

    def pending_create(self, pilot_id: str) -> Optional[QueuedOperation]:
        """Latest unsynced create for a pilot, unless a later delete cancels it."""
        latest = None
        for op in self.pending(pilot_id):
            if op.operation == 'create':
                latest = op
            elif op.operation == 'delete':
                latest = None
        return latest

    def discard(self, op_id: str) -> None:
        with self._lock:
            self._write([op for op in self._read() if op.id != op_id])

    def __len__(self) -> int:
        return len(self.pending())

    def replay(self, execute: Callable[[QueuedOperation], bool]) -> Tuple[int, int]:
        """
        Replay pending operations in order.

        execute returns True when the operation is done. Raising
        StoreUnavailableError stops the replay and leaves the current and
        remaining operations untouched for the next attempt.

        Returns:
            (synced, failed) where failed counts dropped operations
        """
        with self._lock:
            operations = self._read()
            if not operations:
                return 0, 0

            synced = 0
            failed = 0
            remaining: List[QueuedOperation] = []

            for index, op in enumerate(operations):
                try:
                    done = execute(op)
                except StoreUnavailableError:
                    remaining.extend(operations[index:])
                    break
                except Exception as e:
                    logger.error(f'Offline replay error for {op.operation} ({op.pilot_id}): {e}')
                    done = False

                if done:
                    synced += 1
                    logger.info(f'Synced offline {op.operation} for pilot {op.pilot_id}')
                    continue

                op.retries += 1
                if op.retries < self.max_retries:
                    remaining.append(op)
                else:
                    failed += 1
                    logger.error(
                        f'Giving up after {self.max_retries} retries: {op.operation} for pilot {op.pilot_id}'
                    )

            self._write(remaining)

        return synced, failed

    def clear(self) -> None:
        with self._lock:
            self._write([])
