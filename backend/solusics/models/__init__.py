"""Models package - export all models for easy import"""
from solusics.models.base import Base
from solusics.models.user import User
from solusics.models.business_profile import BusinessProfile
from solusics.models.device_sync_intent import DeviceSyncIntent

__all__ = [
    'Base',
    'User',
    'BusinessProfile',
    'DeviceSyncIntent',
]
