"""NotificationRecord model - audit log of built push payloads."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text

from ..database import Base


class NotificationRecord(Base):
    """Append-only record of a notification payload as it was sent."""

    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    device_id = Column(String, ForeignKey("devices.device_id"), nullable=False, index=True)
    type = Column(String, nullable=False)  # proximity
    message = Column(Text, nullable=False)
    payload = Column(Text, nullable=True)  # JSON as sent
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
