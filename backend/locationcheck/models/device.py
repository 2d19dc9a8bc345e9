"""Device model - identity record for a registered handset."""
from datetime import datetime
from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import relationship

from ..database import Base


class Device(Base):
    """A registered device, keyed by the client-generated identifier."""

    __tablename__ = "devices"

    device_id = Column(String, primary_key=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_seen_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Relationships
    info = relationship("DeviceInfo", back_populates="device", uselist=False)
    settings = relationship("DeviceSettings", back_populates="device", uselist=False)
    credential = relationship("AuthCredential", back_populates="device", uselist=False)
    locations = relationship("DeviceLocation", back_populates="device")
