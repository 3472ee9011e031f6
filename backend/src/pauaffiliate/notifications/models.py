"""In-app notification model."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict
from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Text

from pauaffiliate.storage.db import Base
from pauaffiliate.storage.models import new_id, utcnow


class NotificationType(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Notification(Base):
    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("user_accounts.id"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(20), nullable=False, default=NotificationType.INFO.value)
    read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<Notification(user={self.user_id}, title={self.title})>"


class NotificationRecord(BaseModel):
    id: str
    title: str
    message: str
    type: str
    read: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
