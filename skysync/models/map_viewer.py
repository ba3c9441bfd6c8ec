"""
Map viewer heartbeats.

Each open traffic map reports in periodically. The refresh scheduler can
skip the network traffic query while nobody is looking.
"""

from sqlalchemy import String, Float, Index
from sqlalchemy.orm import Mapped, mapped_column

from skysync.models.base import Base


class MapViewer(Base):
    """Last heartbeat of one open map view (upsert pattern)."""

    __tablename__ = 'map_viewer_heartbeats'

    viewer_id: Mapped[str] = mapped_column(
        String(64),
        primary_key=True,
        comment='Client-chosen id of one map view'
    )

    last_seen: Mapped[float] = mapped_column(
        Float,
        nullable=False,
        comment='Unix timestamp of the latest heartbeat'
    )

    __table_args__ = (
        Index('ix_map_viewer_heartbeats_last_seen', 'last_seen'),
    )

    def __repr__(self) -> str:
        return f'<MapViewer {self.viewer_id} @ {self.last_seen:.0f}>'
