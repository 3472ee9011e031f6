"""Withdrawal request model."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import Column, DateTime, Enum as SQLEnum, ForeignKey, String, Text

from pauaffiliate.storage.db import Base
from pauaffiliate.storage.models import Money, new_id, utcnow


class WithdrawalStatus(str, Enum):
    """pending -> approved -> completed, or pending -> rejected."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


class WithdrawalRequest(Base):
    """Request to pay wallet funds out to a bank account.

    The wallet is debited when the request is approved; completion only
    records that the bank transfer went out.
    """
    __tablename__ = "withdrawal_requests"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("user_accounts.id"), nullable=False, index=True)
    amount = Column(Money, nullable=False)

    # Bank details
    bank_name = Column(String(255), nullable=False)
    account_number = Column(String(20), nullable=False)
    account_name = Column(String(255), nullable=False)

    status = Column(SQLEnum(WithdrawalStatus), nullable=False, default=WithdrawalStatus.PENDING, index=True)
    notes = Column(Text, nullable=True)

    # Admin review. processed_by/processed_at track the latest action;
    # approval and completion keep their own admin and notes.
    admin_notes = Column(Text, nullable=True)
    completion_notes = Column(Text, nullable=True)

    created_at = Column(DateTime, default=utcnow)
    processed_at = Column(DateTime, nullable=True)
    processed_by = Column(String(36), ForeignKey("user_accounts.id"), nullable=True)
    approved_at = Column(DateTime, nullable=True)
    approved_by = Column(String(36), ForeignKey("user_accounts.id"), nullable=True)
    completed_at = Column(DateTime, nullable=True)
    completed_by = Column(String(36), ForeignKey("user_accounts.id"), nullable=True)

    def __repr__(self):
        return f"<WithdrawalRequest(id={self.id}, amount={self.amount}, status={self.status})>"


# Pydantic models


class BankDetails(BaseModel):
    bank_name: str = Field(default="", max_length=255)
    account_number: str = Field(default="", max_length=20)
    account_name: str = Field(default="", max_length=255)


class WithdrawalRecord(BaseModel):
    id: str
    user_id: str
    amount: Decimal
    bank_name: str
    account_number: str
    account_name: str
    status: WithdrawalStatus
    notes: str | None = None
    admin_notes: str | None = None
    completion_notes: str | None = None
    created_at: datetime
    processed_at: datetime | None = None
    processed_by: str | None = None
    approved_at: datetime | None = None
    approved_by: str | None = None
    completed_at: datetime | None = None
    completed_by: str | None = None

    model_config = ConfigDict(from_attributes=True)

    @property
    def review_notes(self) -> str | None:
        """Admin notes for the current status."""
        if self.status == WithdrawalStatus.COMPLETED:
            return self.completion_notes
        return self.admin_notes
