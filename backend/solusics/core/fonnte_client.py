import httpx
import json
import logging
from typing import Optional, List, Dict, Any

logger = logging.getLogger(__name__)

# error_code values for failures that never reached a gateway verdict
ERROR_HTTP = -1
ERROR_TIMEOUT = -2
ERROR_NETWORK = -3
ERROR_JSON = -4
ERROR_UNKNOWN = -99

TOKEN_INVALID_REASON = 'token invalid'


def mask_token(token: Optional[str]) -> str:
    if not token:
        return '<none>'
    return token[:10] + '...'


class FonnteClient:
    """
    Fonnte WhatsApp gateway client

    Conventions:
    - every endpoint is a POST with the token in the Authorization header
    - account-level calls (get-devices, remove-device) use the account token
    - /qr uses the device token returned by get-devices
    - the gateway answers {"status": true|false, ...}; false carries a "reason"
    """

    def __init__(self, base_url: str, account_token: str, timeout: int = 30,
                 transport: Optional[httpx.BaseTransport] = None):
        self.base_url = base_url.rstrip('/')
        self.account_token = account_token
        self.client = httpx.Client(timeout=timeout, transport=transport)
        logger.info(f"Fonnte client initialized for {self.base_url}")

    def path_url(self, path: str) -> str:
        """Build the full endpoint URL"""
        if not path.startswith('/'):
            path = '/' + path
        return f"{self.base_url}{path}"

    def post(self, path: str, token: str, payload: dict = None) -> dict:
        """
        POST to the gateway

        Args:
            path: endpoint path
            token: account or device token
            payload: JSON body, omitted when None

        Returns:
            dict: gateway response; transport failures are folded into
                {"status": False, "reason": ..., "error_code": ...}
        """
        url = self.path_url(path)
        headers = {
            'Authorization': token,
            'Content-Type': 'application/json',
        }

        try:
            logger.debug(f"Fonnte Request: {path}, token={mask_token(token)}, payload={payload}")

            if payload is None:
                response = self.client.post(url, headers=headers)
            else:
                response = self.client.post(url, json=payload, headers=headers)

            response.raise_for_status()
            result = response.json()

            if not isinstance(result, dict):
                raise json.JSONDecodeError('Expected a JSON object', response.text, 0)

            if not result.get('status'):
                logger.warning(
                    f"Fonnte API returned failure: {path}, "
                    f"reason={result.get('reason') or result.get('message') or 'Unknown error'}"
                )
            else:
                logger.debug(f"Fonnte Response: {path}, status=true")

            return result

        except httpx.HTTPStatusError as e:
            error_msg = f"Fonnte API error: {e.response.status_code} - {e.response.text}"
            logger.error(f"Fonnte HTTP Error: {path}, {error_msg}")
            return {'status': False, 'reason': error_msg, 'error_code': ERROR_HTTP,
                    'http_status': e.response.status_code}

        except httpx.TimeoutException as e:
            error_msg = f"Request timeout: {str(e)}"
            logger.error(f"Fonnte Timeout: {path}, {error_msg}")
            return {'status': False, 'reason': error_msg, 'error_code': ERROR_TIMEOUT}

        except httpx.NetworkError as e:
            error_msg = f"Network error: {str(e)}"
            logger.error(f"Fonnte Network Error: {path}, {error_msg}")
            return {'status': False, 'reason': error_msg, 'error_code': ERROR_NETWORK}

        except json.JSONDecodeError as e:
            error_msg = f"Invalid JSON response: {str(e)}"
            logger.error(f"Fonnte JSON Error: {path}, {error_msg}")
            return {'status': False, 'reason': error_msg, 'error_code': ERROR_JSON}

        except Exception as e:
            error_msg = f"Unexpected error: {str(e)}"
            logger.error(f"Fonnte Unknown Error: {path}, {error_msg}", exc_info=True)
            return {'status': False, 'reason': error_msg, 'error_code': ERROR_UNKNOWN}

    def get_devices(self) -> dict:
        """All devices registered under the account"""
        return self.post('/get-devices', self.account_token)

    def request_qr(self, device_token: str) -> dict:
        """Ask for a fresh QR; the image arrives in the "url" field"""
        return self.post('/qr', device_token)

    def remove_device(self, device: str) -> dict:
        return self.post('/remove-device', self.account_token, payload={'device': device})

    def is_success(self, result: dict) -> bool:
        return bool(result.get('status'))

    def is_transport_error(self, result: dict) -> bool:
        """True when the request never got an answer from the gateway"""
        return result.get('error_code') in (ERROR_TIMEOUT, ERROR_NETWORK, ERROR_UNKNOWN)

    def get_error_message(self, result: dict, default: str = 'Unknown error') -> str:
        """
        Human-readable failure reason

        Returns:
            str: empty string when the call succeeded
        """
        if self.is_success(result):
            return ''

        reason = result.get('reason')
        if reason == TOKEN_INVALID_REASON:
            return 'Fonnte token is invalid. Please check your FONNTE_TOKEN configuration.'
        return reason or result.get('message') or default

    @staticmethod
    def find_device(devices: List[Dict[str, Any]], number: str) -> Optional[Dict[str, Any]]:
        for device in devices or []:
            if device.get('device') == number:
                return device
        return None

    def close(self):
        self.client.close()

    def __del__(self):
        """Release the connection pool"""
        try:
            self.client.close()
        except Exception:
            pass
