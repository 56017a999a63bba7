from solusics.tasks.celery_app import celery
from solusics.core.db import SessionLocal
from solusics.core.device_connection_service import DeviceConnectionService
from solusics.core.device_state import LocalStatus
from solusics.core.exceptions import DeviceManagerError
from solusics.models.business_profile import BusinessProfile
import logging
logger = logging.getLogger(__name__)


@celery.task
def poll_scanning_devices():
    """
    Reconcile every tenant currently waiting for a QR scan

    Tenants whose sync is already in flight are skipped by the service's guard.
    """
    db = SessionLocal()
    try:
        profiles = db.query(BusinessProfile).filter(
            BusinessProfile.fonnte_status == LocalStatus.SCANNING_QR.value
        ).all()
        if not profiles:
            return {'success': True, 'message': 'No devices waiting for a QR scan', 'devices_count': 0}

        service = DeviceConnectionService(db)
        results = []
        for profile in profiles:
            user_id = profile.user_id
            number = profile.whatsapp_number or profile.fonnte_device_id
            try:
                view = service.get_device_status(user_id, number)
                results.append({
                    'user_id': user_id,
                    'device_state': view.get('device_state'),
                    'local_status': view.get('local_status'),
                    'in_flight': bool(view.get('in_flight')),
                })
            except DeviceManagerError as e:
                logger.warning(f'Poll skipped for user {user_id}: {e.message}')
                results.append({'user_id': user_id, 'error': e.message})

        connected = sum(1 for r in results if r.get('local_status') == LocalStatus.CONNECTED.value)
        logger.info(f'Polled {len(profiles)} scanning devices, {connected} now connected')
        return {
            'success': True,
            'devices_count': len(profiles),
            'connected_count': connected,
            'results': results,
        }
    except Exception as e:
        logger.exception(f'Scanning device poll failed: {e}')
        return {'success': False, 'message': str(e)}
    finally:
        db.close()


@celery.task
def expire_stale_qr_codes():
    db = SessionLocal()
    try:
        expired = DeviceConnectionService(db).expire_stale_qr()
        if expired:
            logger.info(f'Expired {expired} stale QR codes')
        return {'success': True, 'expired_count': expired}
    except Exception as e:
        logger.exception(f'QR expiry failed: {e}')
        return {'success': False, 'message': str(e)}
    finally:
        db.close()


@celery.task
def resume_pending_syncs():
    """Resume device actions left in pending_sync past the grace window"""
    db = SessionLocal()
    try:
        summary = DeviceConnectionService(db).resume_pending_intents()
        if summary['resumed'] or summary['failed']:
            logger.info(f"Pending syncs: {summary['resumed']} resumed, {summary['failed']} failed")
        return {'success': True, **summary}
    except Exception as e:
        logger.exception(f'Resuming pending syncs failed: {e}')
        return {'success': False, 'message': str(e)}
    finally:
        db.close()


@celery.task
def prune_sync_intents():
    db = SessionLocal()
    try:
        deleted = DeviceConnectionService(db).prune_sync_intents()
        if deleted:
            logger.info(f'Pruned {deleted} closed sync intents')
        return {'success': True, 'deleted_count': deleted}
    except Exception as e:
        logger.exception(f'Pruning sync intents failed: {e}')
        return {'success': False, 'message': str(e)}
    finally:
        db.close()
