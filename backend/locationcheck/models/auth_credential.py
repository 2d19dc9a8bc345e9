"""AuthCredential model - the single current token for a device."""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, ForeignKey, Text
from sqlalchemy.orm import relationship

from ..database import Base


class AuthCredential(Base):
    """Current bearer token. Re-registration replaces the row."""

    __tablename__ = "auth_tokens"

    device_id = Column(String, ForeignKey("devices.device_id"), primary_key=True)
    token = Column(Text, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    device = relationship("Device", back_populates="credential")
