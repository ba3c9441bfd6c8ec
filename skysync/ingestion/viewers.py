"""
Map viewer presence.

Open traffic maps send a heartbeat every few seconds. When beacon
fetching is gated on viewers, the refresh scheduler asks any_active()
before spending network calls on traffic nobody will see.
"""

import logging
import time
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from skysync.config import config
from skysync.models import MapViewer
from skysync.models.base import SessionLocal

logger = logging.getLogger(__name__)


class ViewerHeartbeats:
    """Records and queries map viewer heartbeats."""

    def __init__(self, timeout_seconds: Optional[int] = None, session_factory=None):
        self.timeout_seconds = timeout_seconds or config.beacons.viewer_timeout_seconds
        self._session_factory = session_factory or SessionLocal

    def beat(self, viewer_id: str, now: Optional[float] = None) -> None:
        """Upsert the viewer's last_seen."""
        now = time.time() if now is None else now

        with self._session_factory() as session:
            insert = pg_insert if session.get_bind().dialect.name == 'postgresql' else sqlite_insert
            stmt = insert(MapViewer).values(viewer_id=viewer_id, last_seen=now)
            session.execute(stmt.on_conflict_do_update(
                index_elements=['viewer_id'],
                set_={'last_seen': stmt.excluded.last_seen},
            ))
            session.commit()

    def any_active(self, now: Optional[float] = None) -> bool:
        """
        Whether some map sent a heartbeat within the timeout.

        Errs on the side of fetching: an unreadable table counts as
        active.
        """
        now = time.time() if now is None else now
        cutoff = now - self.timeout_seconds

        try:
            with self._session_factory() as session:
                found = session.scalars(
                    select(MapViewer.viewer_id).where(MapViewer.last_seen > cutoff).limit(1)
                ).first()
        except SQLAlchemyError as e:
            logger.error(f'Viewer heartbeat check failed: {e}')
            return True

        return found is not None

    def prune(self, now: Optional[float] = None) -> int:
        """Delete heartbeats past the timeout. Returns count deleted."""
        now = time.time() if now is None else now
        cutoff = now - self.timeout_seconds

        try:
            with self._session_factory() as session:
                result = session.execute(delete(MapViewer).where(MapViewer.last_seen <= cutoff))
                session.commit()
        except SQLAlchemyError as e:
            logger.error(f'Viewer heartbeat cleanup failed: {e}')
            return 0

        return result.rowcount
