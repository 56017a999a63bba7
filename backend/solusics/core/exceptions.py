"""
Device manager error taxonomy

Raised by the service layer, turned into ``{success: false, error}`` bodies
by the routers.
"""


class DeviceManagerError(Exception):
    """Base class for every device-manager failure"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class DeviceValidationError(DeviceManagerError):
    """Bad input: empty phone number, unknown action, no stored device"""


class GatewayError(DeviceManagerError):
    """The gateway was unreachable or refused the request"""


class ConfigurationError(DeviceManagerError):
    """FONNTE_TOKEN missing or malformed"""


class SyncInProgress(DeviceManagerError):
    """Another reconciliation holds the tenant's in-flight guard"""
