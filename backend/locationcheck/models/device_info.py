"""DeviceInfo model - latest descriptive metadata, one row per device."""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship

from ..database import Base


class DeviceInfo(Base):
    """Upserted device metadata. Descriptive fields are encrypted envelopes."""

    __tablename__ = "device_info"

    device_id = Column(String, ForeignKey("devices.device_id"), primary_key=True)
    battery_level = Column(Text, nullable=True)
    model = Column(Text, nullable=True)
    name = Column(Text, nullable=True)
    os_version = Column(Text, nullable=True)
    screen_resolution = Column(Text, nullable=True)
    app_version = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    device = relationship("Device", back_populates="info")
