"""
Write-ahead record of a device-manager action

Committed as pending_sync before the gateway is called and closed in the same
transaction as the profile update, so a crash in between stays visible.
"""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from sqlalchemy.sql import func
from solusics.models.base import Base


INTENT_PENDING = 'pending_sync'
INTENT_APPLIED = 'applied'
INTENT_FAILED = 'failed'
INTENT_RESUMED = 'resumed'


class DeviceSyncIntent(Base):
    """Device sync intent"""
    __tablename__ = 'device_sync_intents'

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), nullable=False, index=True)

    # start-connection | get-device-status | check-status | disconnect
    action = Column(String(32), nullable=False)
    whatsapp_number = Column(String(32), nullable=True)

    # pending_sync | applied | failed | resumed
    state = Column(String(20), nullable=False, default=INTENT_PENDING)
    error_message = Column(String(500), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index('idx_device_sync_intents_state_created', 'state', 'created_at'),
    )

    def __repr__(self):
        return f"<DeviceSyncIntent(user_id={self.user_id}, action='{self.action}', state='{self.state}')>"
