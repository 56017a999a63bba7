"""
WhatsApp device connection service

Keeps the device connection cached on the tenant's business profile in line
with what the Fonnte gateway reports:
- start_connection: register a number, returning "connected" or a QR challenge
- get_device_status: read gateway truth and reconcile the cached status
- check_status: full status sync against the stored device id
- disconnect: remove the device at the gateway and clear the cache

Every gateway call is preceded by a committed DeviceSyncIntent, closed in
the same commit as the resulting profile update.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional, Dict, Any, Callable

from sqlalchemy.orm import Session

from solusics.core.config import settings
from solusics.core.device_state import (
    LocalStatus, GatewayState, FONNTE_CONNECT,
    clean_number, map_gateway_state, map_local_status,
    status_display, device_state_display,
)
from solusics.core.exceptions import (
    DeviceManagerError, DeviceValidationError, GatewayError, ConfigurationError, SyncInProgress,
)
from solusics.core.fonnte_client import FonnteClient, mask_token
from solusics.core.redis_cache import RedisCache, device_state_key, sync_guard_key
from solusics.models.business_profile import BusinessProfile
from solusics.models.device_sync_intent import (
    DeviceSyncIntent, INTENT_PENDING, INTENT_APPLIED, INTENT_FAILED, INTENT_RESUMED,
)

logger = logging.getLogger(__name__)

ACTION_START_CONNECTION = 'start-connection'
ACTION_GET_DEVICE_STATUS = 'get-device-status'
ACTION_CHECK_STATUS = 'check-status'
ACTION_DISCONNECT = 'disconnect'

ACTIONS = (
    ACTION_START_CONNECTION,
    ACTION_GET_DEVICE_STATUS,
    ACTION_CHECK_STATUS,
    ACTION_DISCONNECT,
)

MIN_TOKEN_LENGTH = 10


def validate_account_token(token: Optional[str]) -> str:
    if not token:
        raise ConfigurationError('FONNTE_TOKEN not configured. Please set the FONNTE_TOKEN environment variable.')
    if len(token) < MIN_TOKEN_LENGTH:
        raise ConfigurationError('FONNTE_TOKEN appears to be invalid. Please check your token.')
    return token


def build_fonnte_client() -> FonnteClient:
    """Gateway client from settings"""
    token = validate_account_token(settings.FONNTE_TOKEN)
    return FonnteClient(settings.FONNTE_API_BASE, token, timeout=settings.FONNTE_TIMEOUT)


def usable_device_token(token: Any) -> Optional[str]:
    if isinstance(token, str) and token.strip():
        return token.strip()
    return None


def public_device_info(device: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Device entry without its token, safe to hand to the UI"""
    if not device:
        return None
    return {k: v for k, v in device.items() if k != 'token'}


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


class DeviceConnectionService:
    """Connection lifecycle of a tenant's WhatsApp device"""

    def __init__(self, db: Session, client: Optional[FonnteClient] = None):
        self.db = db
        self._client = client

    @property
    def client(self) -> FonnteClient:
        """Gateway client, built from settings on first use"""
        if self._client is None:
            self._client = build_fonnte_client()
        else:
            validate_account_token(self._client.account_token)
        return self._client

    # ------------------------------------------------------------------
    # profile / intent helpers
    # ------------------------------------------------------------------

    def get_profile(self, user_id: int) -> Optional[BusinessProfile]:
        return self.db.query(BusinessProfile).filter(BusinessProfile.user_id == user_id).first()

    def get_or_create_profile(self, user_id: int) -> BusinessProfile:
        profile = self.get_profile(user_id)
        if profile is None:
            profile = BusinessProfile(user_id=user_id, fonnte_status=LocalStatus.DISCONNECTED.value)
            self.db.add(profile)
            self.db.flush()
            logger.info(f'Created business profile for user {user_id}')
        return profile

    def _open_intent(self, user_id: int, action: str, whatsapp_number: Optional[str] = None) -> DeviceSyncIntent:
        intent = DeviceSyncIntent(
            user_id=user_id,
            action=action,
            whatsapp_number=whatsapp_number,
            state=INTENT_PENDING,
        )
        self.db.add(intent)
        self.db.commit()
        return intent

    @staticmethod
    def _close_intent(intent: DeviceSyncIntent, state: str, error: Optional[str] = None):
        intent.state = state
        intent.error_message = error[:500] if error else None

    def _fail(self, intent: DeviceSyncIntent, message: str):
        self._close_intent(intent, INTENT_FAILED, message)
        self.db.commit()

    def _guarded(self, user_id: int, operation: Callable[[], Dict[str, Any]],
                 when_busy: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
        """Run ``operation`` unless another sync for the tenant is in flight"""
        guard_key = sync_guard_key(user_id)
        owner = uuid.uuid4().hex
        if not RedisCache.acquire(guard_key, settings.SYNC_GUARD_TTL, owner):
            logger.info(f'Sync already in flight for user {user_id}, skipping')
            return when_busy()
        try:
            return operation()
        finally:
            RedisCache.release(guard_key, owner)

    # ------------------------------------------------------------------
    # Connection initiator
    # ------------------------------------------------------------------

    def start_connection(self, user_id: int, whatsapp_number: Optional[str]) -> Dict[str, Any]:
        """
        Register ``whatsapp_number`` at the gateway for the tenant

        Returns:
            dict: status "connected" with no QR, or "scanning_qr" with a fresh QR

        Raises:
            DeviceValidationError: empty number (nothing is called or written)
            GatewayError: the gateway failed; the cached status becomes "error"
        """
        number = clean_number(whatsapp_number)
        if not number:
            raise DeviceValidationError('WhatsApp number is required')

        logger.info(f'Starting WhatsApp connection for user {user_id}, number {number}')
        client = self.client
        profile = self.get_or_create_profile(user_id)
        intent = self._open_intent(user_id, ACTION_START_CONNECTION, number)

        try:
            devices_result = client.get_devices()
            if not client.is_success(devices_result):
                raise GatewayError(client.get_error_message(devices_result, 'Failed to get devices'))

            device = FonnteClient.find_device(devices_result.get('data'), number)
            if device is None:
                raise GatewayError(
                    f'WhatsApp number {number} is not registered in your Fonnte account. '
                    'Please register it first in the Fonnte dashboard.'
                )

            device_token = usable_device_token(device.get('token'))
            if not device_token:
                raise GatewayError('Invalid device token received from Fonnte. Device may not be properly registered.')

            already_connected = device.get('status') == FONNTE_CONNECT
            qr_code = None
            if not already_connected:
                logger.debug(f'Requesting QR for {number} with device token {mask_token(device_token)}')
                qr_result = client.request_qr(device_token)
                if not client.is_success(qr_result):
                    raise GatewayError(client.get_error_message(qr_result, 'Failed to get QR code'))
                qr_code = qr_result.get('url') or None

        except GatewayError as e:
            # device id and token survive the failure
            profile.apply_fonnte_status(LocalStatus.ERROR)
            self._fail(intent, e.message)
            logger.error(f'Start connection failed for user {user_id}: {e.message}')
            raise

        now = datetime.utcnow()
        profile.whatsapp_number = whatsapp_number
        profile.fonnte_device_id = number
        profile.fonnte_device_token = device_token

        if qr_code:
            profile.apply_fonnte_status(LocalStatus.SCANNING_QR, qr_code=qr_code, now=now)
            profile.fonnte_connected_at = None
            status = LocalStatus.SCANNING_QR
            message = 'Scan QR code with WhatsApp'
        else:
            profile.apply_fonnte_status(LocalStatus.CONNECTED, now=now)
            profile.fonnte_connected_at = now
            status = LocalStatus.CONNECTED
            message = 'Device is already connected' if already_connected else 'Device connected successfully'

        self._close_intent(intent, INTENT_APPLIED)
        self.db.commit()
        RedisCache.delete(device_state_key(user_id))
        logger.info(f'User {user_id} device {number} -> {status.value}')

        return {
            'success': True,
            'device_id': number,
            'qr_code': qr_code,
            'status': status.value,
            'message': message,
            'connected_at': _iso(profile.fonnte_connected_at),
            'device_token_stored': True,
            'display': status_display(status.value),
        }

    # ------------------------------------------------------------------
    # Status reconciler
    # ------------------------------------------------------------------

    def reconcile_profile(self, profile: BusinessProfile, device_state: GatewayState,
                          device_info: Optional[Dict[str, Any]], now: Optional[datetime] = None) -> bool:
        """
        Fold a gateway view into the cached status

        Only "registered_connected" and "registered_scanning_qr" move the
        cached status; other gateway states are surfaced without a write.

        Returns:
            bool: whether the profile was changed
        """
        now = now or datetime.utcnow()
        device_id = (device_info or {}).get('device') or None

        if device_state == GatewayState.REGISTERED_CONNECTED:
            profile.apply_fonnte_status(LocalStatus.CONNECTED, now=now)
            profile.fonnte_device_id = device_id
            if not profile.fonnte_connected_at:
                profile.fonnte_connected_at = now
            device_token = usable_device_token((device_info or {}).get('token'))
            if device_token:
                profile.fonnte_device_token = device_token
            return True

        if device_state == GatewayState.REGISTERED_SCANNING_QR:
            profile.apply_fonnte_status(LocalStatus.SCANNING_QR, now=now)
            profile.fonnte_device_id = device_id
            return True

        return False

    def get_device_status(self, user_id: int, whatsapp_number: Optional[str]) -> Dict[str, Any]:
        """
        Fetch the gateway's live view of the tenant's number and reconcile it

        A gateway failure leaves the cached status untouched and reports
        device_state "unknown". While another reconciliation for the tenant
        is running the last cached view is returned instead.
        """
        number = clean_number(whatsapp_number)
        if not number:
            raise DeviceValidationError('WhatsApp number is required')

        def when_busy():
            cached = RedisCache.get(device_state_key(user_id))
            if cached:
                cached['in_flight'] = True
                return cached
            raise SyncInProgress('Device status check already in progress')

        return self._guarded(user_id, lambda: self._reconcile_device_status(user_id, number), when_busy)

    def _reconcile_device_status(self, user_id: int, number: str) -> Dict[str, Any]:
        client = self.client
        profile = self.get_or_create_profile(user_id)
        intent = self._open_intent(user_id, ACTION_GET_DEVICE_STATUS, number)

        result = client.get_devices()
        if not client.is_success(result):
            error = client.get_error_message(result, 'Failed to get devices')
            self._fail(intent, error)
            logger.warning(f'Device status unknown for user {user_id}: {error}')
            return {
                'success': False,
                'device_state': GatewayState.UNKNOWN.value,
                'clean_number': number,
                'local_status': profile.fonnte_status,
                'display': device_state_display(GatewayState.UNKNOWN.value),
                'error': error,
            }

        devices = result.get('data') or []
        device = FonnteClient.find_device(devices, number)
        device_state = map_gateway_state(device)
        logger.info(
            f'User {user_id} number {number}: gateway status '
            f'{device.get("status") if device else "not_found"} -> {device_state.value}'
        )

        if self.reconcile_profile(profile, device_state, device):
            logger.info(f'User {user_id} cached status -> {profile.fonnte_status}')

        self._close_intent(intent, INTENT_APPLIED)
        self.db.commit()

        view = {
            'success': True,
            'device_state': device_state.value,
            'device_info': public_device_info(device),
            'clean_number': number,
            'total_devices': result.get('devices') or 0,
            'connected_devices': result.get('connected') or 0,
            'local_status': profile.fonnte_status,
            'display': device_state_display(device_state.value),
        }
        RedisCache.set(device_state_key(user_id), view, ttl=settings.DEVICE_STATE_CACHE_TTL)
        return view

    # ------------------------------------------------------------------
    # Full status sync
    # ------------------------------------------------------------------

    def check_status(self, user_id: int) -> Dict[str, Any]:
        """Sync the cached status against the gateway using the stored device id"""
        def when_busy():
            current = self.get_current_status(user_id)
            current['in_flight'] = True
            return current

        return self._guarded(user_id, lambda: self._sync_status(user_id), when_busy)

    def _sync_status(self, user_id: int) -> Dict[str, Any]:
        profile = self.get_profile(user_id)
        device_id = profile.fonnte_device_id if profile else None
        if not device_id:
            raise DeviceValidationError('No device ID found')

        client = self.client
        intent = self._open_intent(user_id, ACTION_CHECK_STATUS, device_id)

        result = client.get_devices()
        if not client.is_success(result):
            error = client.get_error_message(result, 'Failed to get devices')
            self._fail(intent, error)
            raise GatewayError(error)

        device = FonnteClient.find_device(result.get('data'), device_id)
        status = map_local_status(device)
        now = datetime.utcnow()

        device_token = None
        if status in (LocalStatus.CONNECTED, LocalStatus.SCANNING_QR):
            device_token = usable_device_token((device or {}).get('token'))
            if not device_token:
                logger.warning(f'No usable device token for {device_id}; message sending will fail')

        if status == LocalStatus.CONNECTED:
            profile.apply_fonnte_status(LocalStatus.CONNECTED, now=now)
            if not profile.fonnte_connected_at:
                profile.fonnte_connected_at = now
        elif status == LocalStatus.DISCONNECTED:
            profile.clear_fonnte_device(now=now)
        else:
            profile.apply_fonnte_status(status, now=now)
        profile.fonnte_device_token = device_token

        self._close_intent(intent, INTENT_APPLIED)
        self.db.commit()
        RedisCache.delete(device_state_key(user_id))
        logger.info(f'User {user_id} device {device_id} synced -> {status.value}')

        return {
            'success': True,
            'status': status.value,
            'device_id': device_id,
            'connected_at': _iso(profile.fonnte_connected_at),
            'device_info': public_device_info(device),
            'device_token_stored': bool(device_token),
            'display': status_display(status.value),
        }

    # ------------------------------------------------------------------
    # Disconnector
    # ------------------------------------------------------------------

    def disconnect(self, user_id: int) -> Dict[str, Any]:
        """
        Remove the device at the gateway and clear the cached connection

        A gateway refusal does not stop the local cleanup; an unreachable
        gateway does, leaving the cached connection as it was.
        """
        profile = self.get_profile(user_id)
        device_id = profile.fonnte_device_id if profile else None
        if not device_id:
            raise DeviceValidationError('No device ID found')

        client = self.client
        logger.info(f'Disconnecting device {device_id} for user {user_id}')
        intent = self._open_intent(user_id, ACTION_DISCONNECT, device_id)

        result = client.remove_device(device_id)
        if not client.is_success(result):
            error = client.get_error_message(result, 'Failed to remove device')
            if client.is_transport_error(result):
                self._fail(intent, error)
                raise GatewayError(error)
            logger.warning(f'Fonnte refused remove-device for {device_id} ({error}), continuing with local cleanup')

        profile.clear_fonnte_device()
        self._close_intent(intent, INTENT_APPLIED)
        self.db.commit()
        RedisCache.delete(device_state_key(user_id))

        return {
            'success': True,
            'status': LocalStatus.DISCONNECTED.value,
            'message': 'Device disconnected successfully',
            'device_id_cleared': device_id,
            'display': status_display(LocalStatus.DISCONNECTED.value),
        }

    # ------------------------------------------------------------------
    # Read side and housekeeping
    # ------------------------------------------------------------------

    def get_current_status(self, user_id: int) -> Dict[str, Any]:
        """Cached connection as stored, without calling the gateway"""
        profile = self.get_profile(user_id)
        if profile is None:
            snapshot = {
                'fonnte_device_id': None,
                'fonnte_status': LocalStatus.DISCONNECTED.value,
                'fonnte_qr_code_url': None,
                'fonnte_connected_at': None,
                'fonnte_synced_at': None,
                'device_token_stored': False,
            }
        else:
            snapshot = profile.fonnte_snapshot()

        return {
            'success': True,
            'status': snapshot['fonnte_status'],
            **snapshot,
            'display': status_display(snapshot['fonnte_status']),
        }

    def expire_stale_qr(self, now: Optional[datetime] = None) -> int:
        """Mark QR challenges older than QR_CODE_TTL_SECONDS as expired"""
        now = now or datetime.utcnow()
        cutoff = now - timedelta(seconds=settings.QR_CODE_TTL_SECONDS)

        profiles = self.db.query(BusinessProfile).filter(
            BusinessProfile.fonnte_status == LocalStatus.SCANNING_QR.value,
            BusinessProfile.fonnte_qr_generated_at.isnot(None),
            BusinessProfile.fonnte_qr_generated_at < cutoff,
        ).all()

        for profile in profiles:
            profile.apply_fonnte_status(LocalStatus.EXPIRED, now=now)
            RedisCache.delete(device_state_key(profile.user_id))
            logger.info(f'QR expired for user {profile.user_id}')

        self.db.commit()
        return len(profiles)

    def pending_intents(self, now: Optional[datetime] = None):
        now = now or datetime.utcnow()
        cutoff = now - timedelta(seconds=settings.PENDING_SYNC_GRACE_SECONDS)
        return self.db.query(DeviceSyncIntent).filter(
            DeviceSyncIntent.state == INTENT_PENDING,
            DeviceSyncIntent.created_at < cutoff,
        ).order_by(DeviceSyncIntent.id).all()

    def resume_pending_intents(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Finish actions interrupted between the gateway call and the local write

        The gateway is authoritative, so a disconnect is re-issued and every
        other action is resumed by a full status sync.
        """
        summary = {'resumed': 0, 'failed': 0}

        intents = self.pending_intents(now)
        if not intents:
            return summary

        # a broken account token would fail every intent; keep them pending
        try:
            self.client
        except ConfigurationError as e:
            logger.warning(f'Leaving {len(intents)} pending intents untouched: {e.message}')
            return summary

        for intent in intents:
            profile = self.get_profile(intent.user_id)
            has_device = bool(profile and profile.fonnte_device_id)

            try:
                if intent.action == ACTION_DISCONNECT:
                    if has_device:
                        self.disconnect(intent.user_id)
                elif has_device:
                    self._sync_status(intent.user_id)
                else:
                    raise DeviceValidationError('No device ID found')
            except DeviceManagerError as e:
                self._close_intent(intent, INTENT_FAILED, e.message)
                summary['failed'] += 1
                logger.warning(f'Could not resume intent {intent.id} ({intent.action}): {e.message}')
            else:
                self._close_intent(intent, INTENT_RESUMED)
                summary['resumed'] += 1
                logger.info(f'Resumed intent {intent.id} ({intent.action}) for user {intent.user_id}')
            self.db.commit()

        return summary

    def prune_sync_intents(self, now: Optional[datetime] = None) -> int:
        """Delete closed intents older than the retention window; failed ones are kept"""
        now = now or datetime.utcnow()
        cutoff = now - timedelta(seconds=settings.SYNC_INTENT_RETENTION_SECONDS)
        deleted = self.db.query(DeviceSyncIntent).filter(
            DeviceSyncIntent.state.in_([INTENT_APPLIED, INTENT_RESUMED]),
            DeviceSyncIntent.created_at < cutoff,
        ).delete(synchronize_session=False)
        self.db.commit()
        return deleted
