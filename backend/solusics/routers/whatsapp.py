"""
WhatsApp device connection routes
"""
from typing import Annotated, Optional
from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from pydantic import BaseModel
import logging

from solusics.core.db import get_db
from solusics.core.device_connection_service import (
    DeviceConnectionService,
    ACTION_START_CONNECTION, ACTION_GET_DEVICE_STATUS, ACTION_CHECK_STATUS, ACTION_DISCONNECT,
)
from solusics.core.device_state import LocalStatus, GatewayState, status_display, device_state_display
from solusics.core.exceptions import (
    DeviceManagerError, DeviceValidationError, GatewayError, SyncInProgress,
)
from solusics.models.user import User
from solusics.routers.auth import get_current_user
from solusics.schemas.device import DeviceManagerRequest

router = APIRouter(prefix='/whatsapp', tags=['whatsapp'])
logger = logging.getLogger(__name__)


class ConnectRequest(BaseModel):
    whatsapp_number: Optional[str] = None


def get_device_service(db: Session = Depends(get_db)) -> DeviceConnectionService:
    return DeviceConnectionService(db)


def error_status_code(error: DeviceManagerError) -> int:
    if isinstance(error, DeviceValidationError):
        return 400
    if isinstance(error, SyncInProgress):
        return 409
    if isinstance(error, GatewayError):
        return 502
    return 500


def error_response(error: DeviceManagerError, status_code: Optional[int] = None, **extra) -> JSONResponse:
    """``{success: false, error}`` envelope for a device-manager failure"""
    body = {'success': False, 'error': error.message}
    body.update(extra)
    if status_code is None:
        status_code = error_status_code(error)
    return JSONResponse(status_code=status_code, content=body)


def _error_extras(action: str, error: DeviceManagerError) -> dict:
    # a failed initiator reports the "error" status the profile was moved to
    if action == ACTION_START_CONNECTION and isinstance(error, GatewayError):
        return {'status': LocalStatus.ERROR.value, 'display': status_display(LocalStatus.ERROR.value)}
    if action == ACTION_GET_DEVICE_STATUS:
        return {
            'device_state': GatewayState.UNKNOWN.value,
            'display': device_state_display(GatewayState.UNKNOWN.value),
            'in_flight': isinstance(error, SyncInProgress),
        }
    return {}


def run_action(service: DeviceConnectionService, action: str, user_id: int,
               whatsapp_number: Optional[str] = None, envelope_only: bool = False):
    """
    Dispatch one device-manager action, folding failures into the error envelope

    With ``envelope_only`` only validation failures change the status code;
    every other failure is a 200 carrying ``success: false``.
    """
    try:
        if action == ACTION_START_CONNECTION:
            return service.start_connection(user_id, whatsapp_number)
        if action == ACTION_GET_DEVICE_STATUS:
            return service.get_device_status(user_id, whatsapp_number)
        if action == ACTION_CHECK_STATUS:
            return service.check_status(user_id)
        if action == ACTION_DISCONNECT:
            return service.disconnect(user_id)
        raise DeviceValidationError('Invalid action')
    except DeviceManagerError as e:
        logger.warning(f'Device manager {action} failed for user {user_id}: {e.message}')
        status_code = None
        if envelope_only and not isinstance(e, DeviceValidationError):
            status_code = 200
        return error_response(e, status_code=status_code, **_error_extras(action, e))


@router.post('/device-manager')
async def device_manager(
    request: DeviceManagerRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    service: DeviceConnectionService = Depends(get_device_service),
):
    """
    Device manager proxy

    Body ``{action, user_id, whatsapp_number?}`` with action one of
    start-connection, get-device-status, check-status, disconnect.
    """
    if request.user_id != current_user.id:
        return JSONResponse(status_code=403, content={'success': False, 'error': 'Forbidden'})

    logger.info(f'Device manager request: action={request.action}, user_id={request.user_id}')
    return run_action(service, request.action, request.user_id, request.whatsapp_number, envelope_only=True)


@router.get('/status')
async def get_status(
    current_user: Annotated[User, Depends(get_current_user)],
    service: DeviceConnectionService = Depends(get_device_service),
):
    """Stored connection status, no gateway call"""
    return service.get_current_status(current_user.id)


@router.post('/connect')
async def connect(
    request: ConnectRequest,
    current_user: Annotated[User, Depends(get_current_user)],
    service: DeviceConnectionService = Depends(get_device_service),
):
    return run_action(service, ACTION_START_CONNECTION, current_user.id, request.whatsapp_number)


@router.get('/device-status')
async def get_device_status(
    current_user: Annotated[User, Depends(get_current_user)],
    whatsapp_number: str = Query('', description='Number as typed by the tenant'),
    service: DeviceConnectionService = Depends(get_device_service),
):
    return run_action(service, ACTION_GET_DEVICE_STATUS, current_user.id, whatsapp_number)


@router.post('/sync')
async def sync_status(
    current_user: Annotated[User, Depends(get_current_user)],
    service: DeviceConnectionService = Depends(get_device_service),
):
    """Manual "Sinkronkan" sync"""
    return run_action(service, ACTION_CHECK_STATUS, current_user.id)


@router.post('/disconnect')
async def disconnect(
    current_user: Annotated[User, Depends(get_current_user)],
    service: DeviceConnectionService = Depends(get_device_service),
):
    return run_action(service, ACTION_DISCONNECT, current_user.id)


@router.get('/display')
async def get_display(
    status: Optional[str] = None,
    device_state: Optional[str] = None,
):
    """Display tuple for a local status or a gateway state"""
    if device_state is not None:
        return {'device_state': device_state, **device_state_display(device_state)}
    return {'status': status, **status_display(status)}
