"""
Airspace-safety network integration.

Handles request signing, advisory geometry, the REST client and
advisory publication.
"""

from skysync.airspace.signing import RequestSigner
from skysync.airspace.client import SafeSkyClient, BoundingBox
from skysync.airspace.advisory import AdvisoryPublisher, PublishResult, advisory_id_for

__all__ = [
    'RequestSigner',
    'SafeSkyClient',
    'BoundingBox',
    'AdvisoryPublisher',
    'PublishResult',
    'advisory_id_for',
]
