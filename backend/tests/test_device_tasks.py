from datetime import datetime, timedelta

import pytest

from solusics.core.config import settings
from solusics.core.device_connection_service import DeviceConnectionService
from solusics.models.business_profile import BusinessProfile
from solusics.models.device_sync_intent import DeviceSyncIntent, INTENT_APPLIED, INTENT_PENDING
from solusics.tasks import device_tasks
from solusics.tasks.celery_app import celery

CLEAN = '6281234567890'


@pytest.fixture(autouse=True)
def wired_tasks(monkeypatch, session_factory, gateway):
    monkeypatch.setattr(device_tasks, 'SessionLocal', session_factory)
    monkeypatch.setattr(
        device_tasks, 'DeviceConnectionService',
        lambda db: DeviceConnectionService(db, client=gateway.client()),
    )


def _profile(db_session, user_id):
    db_session.expire_all()
    return db_session.query(BusinessProfile).filter(BusinessProfile.user_id == user_id).one()


def test_beat_schedule_registers_device_tasks():
    tasks = {entry['task'] for entry in celery.conf.beat_schedule.values()}
    assert tasks == {
        'solusics.tasks.device_tasks.poll_scanning_devices',
        'solusics.tasks.device_tasks.expire_stale_qr_codes',
        'solusics.tasks.device_tasks.resume_pending_syncs',
        'solusics.tasks.device_tasks.prune_sync_intents',
    }
    poll = celery.conf.beat_schedule['poll-scanning-devices']
    assert poll['schedule'] == settings.STATUS_POLL_INTERVAL_SECONDS


def test_poll_with_nothing_scanning(db_session, gateway, tenant):
    result = device_tasks.poll_scanning_devices()

    assert result['success'] is True
    assert result['devices_count'] == 0
    assert gateway.requests == []


def test_poll_promotes_scanned_device(db_session, gateway, tenant):
    db_session.add(BusinessProfile(
        user_id=tenant.id, whatsapp_number='+62 812-3456-7890',
        fonnte_status='scanning_qr', fonnte_qr_code_url='qr', fonnte_device_id=CLEAN,
    ))
    db_session.commit()
    gateway.add_device(CLEAN, status='connect')

    result = device_tasks.poll_scanning_devices()

    assert result['devices_count'] == 1
    assert result['connected_count'] == 1
    profile = _profile(db_session, tenant.id)
    assert profile.fonnte_status == 'connected'
    assert profile.fonnte_qr_code_url is None


def test_expire_stale_qr_codes_task(db_session, tenant):
    db_session.add(BusinessProfile(
        user_id=tenant.id, fonnte_status='scanning_qr', fonnte_qr_code_url='qr',
        fonnte_qr_generated_at=datetime.utcnow() - timedelta(seconds=settings.QR_CODE_TTL_SECONDS * 2),
    ))
    db_session.commit()

    result = device_tasks.expire_stale_qr_codes()

    assert result == {'success': True, 'expired_count': 1}
    assert _profile(db_session, tenant.id).fonnte_status == 'expired'


def test_resume_pending_syncs_task(db_session, gateway, tenant):
    db_session.add(BusinessProfile(user_id=tenant.id, fonnte_status='connected', fonnte_device_id=CLEAN))
    db_session.add(DeviceSyncIntent(
        user_id=tenant.id, action='disconnect', state=INTENT_PENDING,
        created_at=datetime.utcnow() - timedelta(seconds=settings.PENDING_SYNC_GRACE_SECONDS * 2),
    ))
    db_session.commit()

    result = device_tasks.resume_pending_syncs()

    assert result == {'success': True, 'resumed': 1, 'failed': 0}
    assert _profile(db_session, tenant.id).fonnte_status == 'disconnected'


def test_prune_sync_intents_task(db_session, tenant):
    db_session.add(DeviceSyncIntent(
        user_id=tenant.id, action='get-device-status', state=INTENT_APPLIED,
        created_at=datetime.utcnow() - timedelta(seconds=settings.SYNC_INTENT_RETENTION_SECONDS * 2),
    ))
    db_session.commit()

    result = device_tasks.prune_sync_intents()

    assert result == {'success': True, 'deleted_count': 1}
    db_session.expire_all()
    assert db_session.query(DeviceSyncIntent).count() == 0
