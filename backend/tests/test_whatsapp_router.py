import httpx
import pytest
from fastapi.testclient import TestClient
from passlib.context import CryptContext

from solusics.core.db import get_db
from solusics.core.device_connection_service import DeviceConnectionService
from solusics.core.redis_cache import sync_guard_key
from solusics.main import app
from solusics.models.business_profile import BusinessProfile
from solusics.models.user import User
from solusics.routers.auth import create_access_token
from solusics.routers.whatsapp import get_device_service
from tests.conftest import QR_PAYLOAD

CLEAN = '6281234567890'

pwd = CryptContext(schemes=['bcrypt'], deprecated='auto')


@pytest.fixture
def api(db_session, gateway):
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_device_service] = lambda: DeviceConnectionService(db_session, client=gateway.client())
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(tenant):
    token = create_access_token({'sub': tenant.username})
    return {'Authorization': f'Bearer {token}'}


def _call(api, headers, action, user_id, whatsapp_number=None):
    body = {'action': action, 'user_id': user_id}
    if whatsapp_number is not None:
        body['whatsapp_number'] = whatsapp_number
    return api.post('/api/v1/whatsapp/device-manager', json=body, headers=headers)


def test_health(api):
    assert api.get('/health').json() == {'status': 'ok'}


def test_device_manager_requires_auth(api, tenant):
    response = api.post('/api/v1/whatsapp/device-manager', json={'action': 'check-status', 'user_id': tenant.id})
    assert response.status_code == 401


def test_device_manager_rejects_other_tenant(api, auth_headers, tenant, gateway):
    response = _call(api, auth_headers, 'check-status', tenant.id + 1)

    assert response.status_code == 403
    assert response.json()['success'] is False
    assert gateway.requests == []


def test_start_connection_action(api, auth_headers, tenant, gateway):
    gateway.add_device(CLEAN, status='disconnect')

    response = _call(api, auth_headers, 'start-connection', tenant.id, '+62 812 3456 7890')

    assert response.status_code == 200
    body = response.json()
    assert body['success'] is True
    assert body['status'] == 'scanning_qr'
    assert body['qr_code'] == QR_PAYLOAD
    assert body['device_id'] == CLEAN


def test_start_connection_empty_number(api, auth_headers, tenant, gateway, db_session):
    response = _call(api, auth_headers, 'start-connection', tenant.id, '')

    assert response.status_code == 400
    assert response.json()['success'] is False
    assert gateway.requests == []
    assert db_session.query(BusinessProfile).count() == 0


def test_start_connection_gateway_error_is_tagged_error(api, auth_headers, tenant, gateway):
    response = _call(api, auth_headers, 'start-connection', tenant.id, CLEAN)

    assert response.status_code == 200
    body = response.json()
    assert body['success'] is False
    assert body['status'] == 'error'
    assert 'not registered' in body['error']


def test_connect_route_gateway_error_is_bad_gateway(api, auth_headers, tenant, gateway):
    response = api.post('/api/v1/whatsapp/connect', json={'whatsapp_number': CLEAN}, headers=auth_headers)

    assert response.status_code == 502
    assert response.json()['status'] == 'error'


def test_device_manager_busy_tenant_keeps_envelope(api, auth_headers, tenant, gateway, fake_redis):
    gateway.add_device(CLEAN, status='connect')
    fake_redis.set(sync_guard_key(tenant.id), 'other-worker', nx=True, ex=30)

    response = _call(api, auth_headers, 'get-device-status', tenant.id, CLEAN)

    assert response.status_code == 200
    body = response.json()
    assert body['success'] is False
    assert body['in_flight'] is True
    assert body['device_state'] == 'unknown'
    assert gateway.requests == []


def test_get_device_status_action(api, auth_headers, tenant, gateway):
    gateway.add_device(CLEAN, status='scan')

    body = _call(api, auth_headers, 'get-device-status', tenant.id, CLEAN).json()

    assert body['success'] is True
    assert body['device_state'] == 'registered_scanning_qr'
    assert body['device_info']['device'] == CLEAN
    assert body['local_status'] == 'scanning_qr'


def test_check_status_without_device(api, auth_headers, tenant):
    response = _call(api, auth_headers, 'check-status', tenant.id)

    assert response.status_code == 400
    assert response.json()['error'] == 'No device ID found'


def test_unknown_action(api, auth_headers, tenant):
    response = _call(api, auth_headers, 'reboot', tenant.id)

    assert response.status_code == 400
    assert response.json() == {'success': False, 'error': 'Invalid action'}


def test_connect_then_disconnect_flow(api, auth_headers, tenant, gateway):
    gateway.add_device(CLEAN, status='connect')

    connect = api.post('/api/v1/whatsapp/connect', json={'whatsapp_number': CLEAN}, headers=auth_headers)
    assert connect.json()['status'] == 'connected'

    status = api.get('/api/v1/whatsapp/status', headers=auth_headers).json()
    assert status['status'] == 'connected'
    assert status['fonnte_device_id'] == CLEAN
    assert status['fonnte_connected_at'] is not None
    assert status['display']['action'] == 'disconnect'

    disconnect = api.post('/api/v1/whatsapp/disconnect', headers=auth_headers).json()
    assert disconnect['success'] is True

    status = api.get('/api/v1/whatsapp/status', headers=auth_headers).json()
    assert status['status'] == 'disconnected'
    assert status['fonnte_qr_code_url'] is None
    assert status['fonnte_device_id'] is None


def test_sync_route(api, auth_headers, tenant, gateway, db_session):
    db_session.add(BusinessProfile(user_id=tenant.id, fonnte_status='scanning_qr', fonnte_device_id=CLEAN))
    db_session.commit()
    gateway.add_device(CLEAN, status='connect')

    body = api.post('/api/v1/whatsapp/sync', headers=auth_headers).json()

    assert body['status'] == 'connected'


def test_device_status_route_network_error(api, auth_headers, tenant, gateway):
    gateway.raise_error = httpx.ConnectError('connection refused')

    response = api.get('/api/v1/whatsapp/device-status', params={'whatsapp_number': CLEAN}, headers=auth_headers)

    assert response.status_code == 200
    body = response.json()
    assert body['success'] is False
    assert body['device_state'] == 'unknown'


@pytest.mark.parametrize('query, action', [
    ({'device_state': 'not_found'}, 'register'),
    ({'device_state': 'registered_error'}, 'reconnect'),
    ({'status': 'scanning_qr'}, 'wait'),
    ({'status': 'connected'}, 'disconnect'),
    ({}, 'register'),
])
def test_display_route(api, query, action):
    body = api.get('/api/v1/whatsapp/display', params=query).json()
    assert body['action'] == action
    assert {'text', 'color', 'icon'} <= set(body)


def test_login_and_me(api, db_session):
    db_session.add(User(username='owner', hashed_password=pwd.hash('rahasia123'), is_active=True))
    db_session.commit()

    response = api.post('/api/v1/auth/token', data={'username': 'owner', 'password': 'rahasia123'})
    assert response.status_code == 200
    token = response.json()['access_token']

    me = api.get('/api/v1/auth/me', headers={'Authorization': f'Bearer {token}'}).json()
    assert me['username'] == 'owner'


def test_login_wrong_password(api, db_session):
    db_session.add(User(username='owner', hashed_password=pwd.hash('rahasia123'), is_active=True))
    db_session.commit()

    response = api.post('/api/v1/auth/token', data={'username': 'owner', 'password': 'salah'})
    assert response.status_code == 401


def test_inactive_tenant_cannot_log_in(api, db_session):
    db_session.add(User(username='closed', hashed_password=pwd.hash('rahasia123'), is_active=False))
    db_session.commit()

    response = api.post('/api/v1/auth/token', data={'username': 'closed', 'password': 'rahasia123'})
    assert response.status_code == 401
