"""
WhatsApp device state vocabulary

Two separate enums are tracked:
- LocalStatus: what this application last wrote to the business profile
- GatewayState: what Fonnte reports right now (never persisted)

The display tables below are what the connection panel and the QR modal render.
"""
import re
from enum import Enum
from typing import Optional, Dict, Any


class LocalStatus(str, Enum):
    DISCONNECTED = 'disconnected'
    SCANNING_QR = 'scanning_qr'
    CONNECTED = 'connected'
    ERROR = 'error'
    EXPIRED = 'expired'


class GatewayState(str, Enum):
    NOT_FOUND = 'not_found'
    REGISTERED_CONNECTED = 'registered_connected'
    REGISTERED_DISCONNECTED = 'registered_disconnected'
    REGISTERED_SCANNING_QR = 'registered_scanning_qr'
    REGISTERED_ERROR = 'registered_error'
    # gateway unreachable, local state left as is
    UNKNOWN = 'unknown'


class Action(str, Enum):
    REGISTER = 'register'
    RECONNECT = 'reconnect'
    DISCONNECT = 'disconnect'
    WAIT = 'wait'


# Raw device status strings returned by Fonnte /get-devices
FONNTE_CONNECT = 'connect'
FONNTE_DISCONNECT = 'disconnect'
FONNTE_SCAN = 'scan'

_NON_DIGITS = re.compile(r'\D')


def clean_number(raw: Optional[str]) -> str:
    """Strip everything that is not a digit: '+62 812-3456' -> '628123456'"""
    if not raw:
        return ''
    return _NON_DIGITS.sub('', raw)


def map_gateway_state(device: Optional[Dict[str, Any]]) -> GatewayState:
    """Map a Fonnte device entry (or its absence) to a GatewayState"""
    if not device:
        return GatewayState.NOT_FOUND

    raw_status = device.get('status')
    if raw_status == FONNTE_CONNECT:
        return GatewayState.REGISTERED_CONNECTED
    if raw_status == FONNTE_DISCONNECT:
        return GatewayState.REGISTERED_DISCONNECTED
    if raw_status == FONNTE_SCAN:
        return GatewayState.REGISTERED_SCANNING_QR
    return GatewayState.REGISTERED_ERROR


def map_local_status(device: Optional[Dict[str, Any]]) -> LocalStatus:
    """Map a Fonnte device entry to the LocalStatus written by a full status sync"""
    if not device:
        return LocalStatus.DISCONNECTED

    raw_status = device.get('status')
    if raw_status == FONNTE_CONNECT:
        return LocalStatus.CONNECTED
    if raw_status == FONNTE_DISCONNECT:
        return LocalStatus.DISCONNECTED
    if raw_status == FONNTE_SCAN:
        return LocalStatus.SCANNING_QR
    return LocalStatus.ERROR


_STATUS_DISPLAY = {
    LocalStatus.CONNECTED: {'text': 'Terhubung', 'color': 'text-green-600', 'icon': '🟢', 'action': Action.DISCONNECT},
    LocalStatus.SCANNING_QR: {'text': 'Menunggu Pindai QR', 'color': 'text-yellow-600', 'icon': '🟡', 'action': Action.WAIT},
    LocalStatus.ERROR: {'text': 'Error', 'color': 'text-red-600', 'icon': '🔴', 'action': Action.RECONNECT},
    LocalStatus.EXPIRED: {'text': 'QR Kedaluwarsa', 'color': 'text-orange-600', 'icon': '🟠', 'action': Action.RECONNECT},
    LocalStatus.DISCONNECTED: {'text': 'Terputus', 'color': 'text-gray-600', 'icon': '⚪', 'action': Action.REGISTER},
}

_DEVICE_STATE_DISPLAY = {
    GatewayState.REGISTERED_CONNECTED: {
        'text': 'Perangkat Terdaftar & Terhubung', 'color': 'text-green-600', 'icon': '🟢', 'action': Action.DISCONNECT,
    },
    GatewayState.REGISTERED_DISCONNECTED: {
        'text': 'Perangkat Terdaftar (Terputus)', 'color': 'text-orange-600', 'icon': '🟠', 'action': Action.RECONNECT,
    },
    GatewayState.REGISTERED_SCANNING_QR: {
        'text': 'Perangkat Terdaftar (Menunggu QR)', 'color': 'text-yellow-600', 'icon': '🟡', 'action': Action.DISCONNECT,
    },
    GatewayState.REGISTERED_ERROR: {
        'text': 'Perangkat Terdaftar (Error)', 'color': 'text-red-600', 'icon': '🔴', 'action': Action.RECONNECT,
    },
    GatewayState.NOT_FOUND: {
        'text': 'Perangkat Belum Terdaftar', 'color': 'text-gray-600', 'icon': '⚪', 'action': Action.REGISTER,
    },
    GatewayState.UNKNOWN: {
        'text': 'Status Tidak Diketahui', 'color': 'text-gray-600', 'icon': '❓', 'action': Action.WAIT,
    },
}


def _render(entry: Dict[str, Any]) -> Dict[str, str]:
    return {
        'text': entry['text'],
        'color': entry['color'],
        'icon': entry['icon'],
        'action': entry['action'].value,
    }


def status_display(status: Optional[str]) -> Dict[str, str]:
    """
    Display tuple for a local status

    Unrecognised or empty statuses render as disconnected.
    """
    try:
        key = LocalStatus(status)
    except ValueError:
        key = LocalStatus.DISCONNECTED
    return _render(_STATUS_DISPLAY[key])


def device_state_display(device_state: Optional[str]) -> Dict[str, str]:
    """
    Display tuple for a gateway state

    Unrecognised or empty states render as unknown.
    """
    try:
        key = GatewayState(device_state)
    except ValueError:
        key = GatewayState.UNKNOWN
    return _render(_DEVICE_STATE_DISPLAY[key])
