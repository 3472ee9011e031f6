"""Account and profile models.

The marketplace does not manage sign-up or sessions; these rows mirror the
profile store so that roles, names and emails can be looked up locally.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict
from sqlalchemy import Boolean, Column, DateTime, Enum as SQLEnum, ForeignKey, String, Text
from sqlalchemy.orm import relationship

from pauaffiliate.storage.db import Base
from pauaffiliate.storage.models import new_id, utcnow


class UserRole(str, Enum):
    """Role determines business vs. affiliate treatment throughout."""
    AFFILIATE = "affiliate"
    BUSINESS = "business"
    ADMIN = "admin"


class UserAccount(Base):
    """User profile: identity and role."""
    __tablename__ = "user_accounts"

    id = Column(String(36), primary_key=True, default=new_id)

    # Identity
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    role = Column(SQLEnum(UserRole), nullable=False, default=UserRole.AFFILIATE)

    # Status
    is_active = Column(Boolean, default=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    business_profile = relationship("BusinessProfile", back_populates="owner", uselist=False)

    def __repr__(self):
        return f"<UserAccount(id={self.id}, email={self.email}, role={self.role})>"

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN

    @property
    def display_name(self) -> str:
        return self.name or self.email.split("@")[0]


class BusinessProfile(Base):
    """Business owned by a user with the business role.

    Products of unverified businesses are never purchasable via referral.
    """
    __tablename__ = "business_profiles"

    id = Column(String(36), ForeignKey("user_accounts.id"), primary_key=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    # Verification
    verified = Column(Boolean, default=False, nullable=False)
    verified_at = Column(DateTime, nullable=True)
    verified_by = Column(String(36), nullable=True)

    created_at = Column(DateTime, default=utcnow)

    # Relationships
    owner = relationship("UserAccount", back_populates="business_profile")
    products = relationship("Product", back_populates="business")

    def __repr__(self):
        return f"<BusinessProfile(id={self.id}, name={self.name}, verified={self.verified})>"


class ProcessedWebhookEvent(Base):
    """Tracks processed webhook deliveries.

    Settlement is already idempotent on the sale row; this table lets a
    redelivered event be acknowledged without touching the sale at all.
    """
    __tablename__ = "processed_webhook_events"

    id = Column(String(36), primary_key=True, default=new_id)
    event_id = Column(String(255), unique=True, nullable=False, index=True)
    event_type = Column(String(100), nullable=False)  # e.g. "charge.completed"
    source = Column(String(50), nullable=False)  # e.g. "flutterwave"
    processed_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        return f"<ProcessedWebhookEvent(id={self.event_id}, type={self.event_type})>"


# Pydantic models for API


class User(BaseModel):
    """User data for API responses."""
    id: str
    email: str
    name: str | None
    role: UserRole
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
