"""DeviceLocation model - append-only location history."""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship

from ..database import Base


ENCRYPTED_LOCATION_FIELDS = ("latitude", "longitude", "altitude", "accuracy")


class DeviceLocation(Base):
    """A single location ping. Coordinates are encrypted envelopes."""

    __tablename__ = "device_locations"

    id = Column(String, primary_key=True)
    device_id = Column(String, ForeignKey("devices.device_id"), nullable=False, index=True)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    latitude = Column(Text, nullable=True)
    longitude = Column(Text, nullable=True)
    altitude = Column(Text, nullable=True)
    accuracy = Column(Text, nullable=True)

    device = relationship("Device", back_populates="locations")
