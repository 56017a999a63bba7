from datetime import datetime
from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index
from sqlalchemy.sql import func
from solusics.models.base import Base
from solusics.core.device_state import LocalStatus


class BusinessProfile(Base):
    """Tenant business profile, carrying the cached WhatsApp device connection"""
    __tablename__ = 'user_business_profiles'

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey('users.id'), unique=True, nullable=False, index=True)
    business_name = Column(String(255))
    whatsapp_number = Column(String(32))

    # Fonnte device connection (last status written by this application)
    fonnte_device_id = Column(String(64), nullable=True)
    fonnte_status = Column(String(20), default=LocalStatus.DISCONNECTED.value, nullable=False)
    fonnte_qr_code_url = Column(Text, nullable=True)
    fonnte_qr_generated_at = Column(DateTime(timezone=True), nullable=True)
    fonnte_connected_at = Column(DateTime(timezone=True), nullable=True)
    fonnte_device_token = Column(String(255), nullable=True)
    fonnte_synced_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index('idx_user_business_profiles_fonnte_status', 'fonnte_status'),
    )

    def apply_fonnte_status(self, status: LocalStatus, qr_code: str | None = None, now: datetime | None = None):
        """
        Move the cached connection to ``status``

        The QR payload only survives while scanning; any other status drops it.
        A new QR always replaces the previous one.
        """
        now = now or datetime.utcnow()
        self.fonnte_status = LocalStatus(status).value

        if status == LocalStatus.SCANNING_QR:
            if qr_code:
                self.fonnte_qr_code_url = qr_code
                self.fonnte_qr_generated_at = now
        else:
            self.fonnte_qr_code_url = None
            self.fonnte_qr_generated_at = None

        self.fonnte_synced_at = now

    def clear_fonnte_device(self, now: datetime | None = None):
        """Forget the linked device entirely (disconnect)"""
        self.apply_fonnte_status(LocalStatus.DISCONNECTED, now=now)
        self.fonnte_device_id = None
        self.fonnte_device_token = None
        self.fonnte_connected_at = None

    def fonnte_snapshot(self) -> dict:
        return {
            'fonnte_device_id': self.fonnte_device_id,
            'fonnte_status': self.fonnte_status or LocalStatus.DISCONNECTED.value,
            'fonnte_qr_code_url': self.fonnte_qr_code_url,
            'fonnte_connected_at': self.fonnte_connected_at.isoformat() if self.fonnte_connected_at else None,
            'fonnte_synced_at': self.fonnte_synced_at.isoformat() if self.fonnte_synced_at else None,
            'device_token_stored': bool(self.fonnte_device_token),
        }

    def __repr__(self):
        return f"<BusinessProfile(user_id={self.user_id}, fonnte_status='{self.fonnte_status}')>"
