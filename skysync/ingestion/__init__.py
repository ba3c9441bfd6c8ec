"""
Refresh and ingestion module for SkySync.

Handles the recurring advisory refresh and nearby traffic ingestion
into the shared beacon table.
"""

from skysync.ingestion.beacons import BeaconIngestor, BeaconReport, IngestResult
from skysync.ingestion.pipeline import RefreshScheduler, CycleReport
from skysync.ingestion.viewers import ViewerHeartbeats

__all__ = [
    'BeaconIngestor',
    'BeaconReport',
    'IngestResult',
    'RefreshScheduler',
    'CycleReport',
    'ViewerHeartbeats',
]
