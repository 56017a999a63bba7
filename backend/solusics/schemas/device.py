from typing import Optional
from pydantic import BaseModel


class DeviceManagerRequest(BaseModel):
    """Body of the device-manager proxy call"""
    action: str
    user_id: int
    whatsapp_number: Optional[str] = None
