import os

os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['FONNTE_TOKEN'] = 'test-account-token-0123456789'
os.environ['REDIS_URL'] = 'redis://localhost:6399/15'

import httpx
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from solusics.core import redis_cache
from solusics.core.fonnte_client import FonnteClient
from solusics.models import Base, User

ACCOUNT_TOKEN = 'test-account-token-0123456789'
DEVICE_TOKEN = 'device-token-abcdef123456'
QR_PAYLOAD = 'data:image/png;base64,iVBORw0KGgoAAAANSUhEUg'


class FakeRedis:
    """Just enough of redis.Redis for the cache and the in-flight guard"""

    def __init__(self):
        self.store = {}
        self.ttls = {}

    def ping(self):
        return True

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    def delete(self, key):
        self.ttls.pop(key, None)
        return 1 if self.store.pop(key, None) is not None else 0

    def exists(self, key):
        return 1 if key in self.store else 0

    def eval(self, script, numkeys, key, owner):
        # the guard release script: delete only when the value still matches
        if self.store.get(key) == owner:
            return self.delete(key)
        return 0


class FakeFonnte:
    """Scriptable stand-in for the Fonnte HTTP API"""

    def __init__(self):
        self.devices = []
        self.devices_response = None
        self.qr_response = {'status': True, 'url': QR_PAYLOAD}
        self.remove_response = {'status': True, 'detail': 'device removed'}
        self.status_code = 200
        self.raise_error = None
        self.on_request = None
        self.requests = []

    def add_device(self, device, status='disconnect', token=DEVICE_TOKEN, **extra):
        entry = {'device': device, 'status': status, 'token': token, 'name': f'Device {device}'}
        entry.update(extra)
        self.devices.append(entry)
        return entry

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.on_request is not None:
            self.on_request(request)
        if self.raise_error is not None:
            raise self.raise_error
        if self.status_code != 200:
            return httpx.Response(self.status_code, text='gateway exploded')

        path = request.url.path
        if path == '/get-devices':
            if self.devices_response is not None:
                return httpx.Response(200, json=self.devices_response)
            connected = sum(1 for d in self.devices if d.get('status') == 'connect')
            return httpx.Response(200, json={
                'status': True,
                'data': self.devices,
                'devices': len(self.devices),
                'connected': connected,
            })
        if path == '/qr':
            return httpx.Response(200, json=self.qr_response)
        if path == '/remove-device':
            return httpx.Response(200, json=self.remove_response)
        return httpx.Response(404, json={'status': False, 'reason': 'unknown endpoint'})

    @property
    def paths(self):
        return [r.url.path for r in self.requests]

    def client(self) -> FonnteClient:
        return FonnteClient(
            'https://api.fonnte.test',
            ACCOUNT_TOKEN,
            timeout=5,
            transport=httpx.MockTransport(self.handler),
        )


@pytest.fixture
def engine():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def fake_redis():
    fake = FakeRedis()
    redis_cache.set_redis_client(fake)
    yield fake
    redis_cache.set_redis_client(None)


@pytest.fixture
def gateway():
    return FakeFonnte()


@pytest.fixture
def tenant(db_session):
    user = User(username='warung-makmur', hashed_password='not-used', is_active=True)
    db_session.add(user)
    db_session.commit()
    return user
