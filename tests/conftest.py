"""
Shared pytest fixtures for SkySync tests.

Provides fixtures for a clean database per test, isolated local cache
directories, SafeSky clients with a mocked HTTP session, and the Flask
test client.
"""
import json
import os
import shutil
import tempfile
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

# Set test environment variables before importing the package
_TEST_ROOT = tempfile.mkdtemp(prefix='skysync-tests-')
os.environ['DATABASE_URL'] = f'sqlite:///{os.path.join(_TEST_ROOT, "skysync-test.db")}'
os.environ['SAFESKY_SECRET'] = 'test-shared-secret'
os.environ['SAFESKY_BASE_URL'] = 'https://safesky.test'
os.environ['LOCAL_CACHE_DIR'] = os.path.join(_TEST_ROOT, 'cache')
os.environ['REFRESH_CALL_TIMEOUT_SECONDS'] = '5'
os.environ['DEFAULT_POSITION'] = '63.7,9.6'

from skysync.airspace import AdvisoryPublisher, RequestSigner, SafeSkyClient
from skysync.airspace.client import ApiResponse
from skysync.cache import beacon_cache
from skysync.config import config
from skysync.flights import FlightSessionRepository, LocalMirror, OfflineQueue, SqlFlightStore
from skysync.models import Base, Mission, engine
from skysync.models.base import SessionLocal

TEST_SECRET = 'test-shared-secret'


@pytest.fixture(autouse=True)
def clean_state():
    """Fresh tables, empty beacon cache and no leftover local files."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    beacon_cache.clear()
    shutil.rmtree(config.flights.local_cache_dir, ignore_errors=True)
    yield
    beacon_cache.clear()


class FlakySessionFactory:
    """Session factory that can be switched offline."""

    def __init__(self):
        self.online = True

    def __call__(self):
        if not self.online:
            raise OperationalError('connect', {}, ConnectionError('network unreachable'))
        return SessionLocal()


@pytest.fixture
def flaky_sessions():
    return FlakySessionFactory()


@pytest.fixture
def repository(tmp_path, flaky_sessions):
    """Repository over the test database with its own mirror and queue."""
    return FlightSessionRepository(
        store=SqlFlightStore(flaky_sessions),
        mirror=LocalMirror(str(tmp_path)),
        queue=OfflineQueue(str(tmp_path)),
    )


def make_response(status_code=200, payload=None):
    """Fake requests.Response."""
    response = MagicMock()
    response.status_code = status_code
    body = json.dumps(payload) if payload is not None else ''
    response.content = body.encode('utf-8')
    response.text = body
    response.json.return_value = payload
    return response


@pytest.fixture
def http_session():
    """Mock requests.Session: POSTs succeed, GETs return no beacons."""
    session = MagicMock()
    session.headers = {}

    def request(method, url, **kwargs):
        if method == 'POST':
            return make_response(200, {'id': 'net-advisory-1'})
        return make_response(200, [])

    session.request.side_effect = request
    return session


@pytest.fixture
def signer():
    return RequestSigner(TEST_SECRET)


@pytest.fixture
def safesky(signer, http_session):
    """Real client (signing included) over the mocked HTTP session."""
    return SafeSkyClient(
        signer=signer,
        base_url='https://safesky.test',
        session=http_session,
    )


@pytest.fixture
def mock_client():
    """Client stub that accepts every advisory."""
    client = MagicMock(spec=SafeSkyClient)
    client.post_advisory.return_value = ApiResponse(status_code=200, data={'id': 'net-advisory-1'})
    client.get_beacons_near.return_value = []
    return client


@pytest.fixture
def publisher(safesky):
    return AdvisoryPublisher(safesky)


@pytest.fixture
def route_mission():
    """Mission with 4 route points spanning (59.90,10.70)-(59.95,10.80)."""
    mission = Mission(
        id='3f2a9c1e-mission-oslo',
        title='Bridge inspection Oslo',
        route={'coordinates': [
            {'lat': 59.90, 'lng': 10.70},
            {'lat': 59.92, 'lng': 10.75},
            {'lat': 59.95, 'lng': 10.80},
            {'lat': 59.93, 'lng': 10.72},
        ]},
        latitude=59.91,
        longitude=10.74,
    )
    with SessionLocal() as session:
        session.add(mission)
        session.commit()
    return mission


def posted_payloads(http_session):
    """Decoded JSON bodies of every POST sent through the mocked session."""
    payloads = []
    for call in http_session.request.call_args_list:
        if call.args[0] == 'POST':
            payloads.append(json.loads(call.kwargs['data'].decode('utf-8')))
    return payloads
