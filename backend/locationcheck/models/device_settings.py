"""DeviceSettings model - per-device transmission settings."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Boolean
from sqlalchemy.orm import relationship

from ..database import Base


DEFAULT_DATA_SEND_INTERVAL = 60  # seconds


class DeviceSettings(Base):
    """Settings pushed to a device. Seeded with defaults at registration."""

    __tablename__ = "device_settings"

    device_id = Column(String, ForeignKey("devices.device_id"), primary_key=True)
    data_send_interval = Column(Integer, default=DEFAULT_DATA_SEND_INTERVAL, nullable=False)
    notification_enabled = Column(Boolean, default=True, nullable=False)
    power_save_mode = Column(Boolean, default=False, nullable=False)
    last_updated = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    device = relationship("Device", back_populates="settings")
