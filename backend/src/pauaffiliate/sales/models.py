"""Sale, payment transaction and settlement issue models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict
from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import relationship

from pauaffiliate.storage.db import Base
from pauaffiliate.storage.models import Money, new_id, utcnow


class SaleStatus(str, Enum):
    """Sale lifecycle: pending -> completed | cancelled."""
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class SettlementStep(str, Enum):
    """Settlement steps that may fail after the sale is completed."""
    AFFILIATE_CREDIT = "affiliate_credit"
    BUSINESS_CREDIT = "business_credit"
    CONVERSION = "conversion"
    PAID_AFTER_CANCEL = "paid_after_cancel"  # Needs a human: money arrived for a cancelled sale


class Sale(Base):
    """A referral-attributed purchase attempt.

    ``commission_amount`` is snapshotted from the product's rate at creation.
    Once completed the row is never mutated again (apart from the
    ``conversion_recorded`` bookkeeping flag).
    """
    __tablename__ = "sales"
    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_sales_amount_positive"),
        CheckConstraint("commission_amount >= 0", name="ck_sales_commission_non_negative"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False, index=True)
    referral_link_id = Column(
        String(36), ForeignKey("referral_links.id", ondelete="CASCADE"), nullable=False, index=True
    )
    binding_id = Column(String(64), nullable=True, index=True)

    # Amounts
    amount = Column(Money, nullable=False)
    commission_amount = Column(Money, nullable=False)
    currency = Column(String(3), nullable=False, default="NGN")

    # Status
    status = Column(SQLEnum(SaleStatus), nullable=False, default=SaleStatus.PENDING, index=True)
    transaction_reference = Column(String(64), unique=True, nullable=False, index=True)
    conversion_recorded = Column(Boolean, default=False, nullable=False)
    cancellation_reason = Column(String(255), nullable=True)

    # Customer
    customer_email = Column(String(255), nullable=True)
    customer_name = Column(String(255), nullable=True)

    # Timestamps
    created_at = Column(DateTime, default=utcnow, index=True)
    completed_at = Column(DateTime, nullable=True)
    cancelled_at = Column(DateTime, nullable=True)

    # Relationships
    product = relationship("Product")
    referral_link = relationship("ReferralLink", back_populates="sales")
    payment_transaction = relationship(
        "PaymentTransaction", back_populates="sale", uselist=False, passive_deletes=True
    )

    def __repr__(self):
        return f"<Sale(id={self.id}, status={self.status}, tx_ref={self.transaction_reference})>"


class PaymentTransaction(Base):
    """Shadow record of the processor round-trip, keyed by transaction reference."""
    __tablename__ = "payment_transactions"

    id = Column(String(36), primary_key=True, default=new_id)
    sale_id = Column(String(36), ForeignKey("sales.id", ondelete="CASCADE"), nullable=True, index=True)
    transaction_reference = Column(String(64), unique=True, nullable=False, index=True)

    amount = Column(Money, nullable=False)
    currency = Column(String(3), nullable=False, default="NGN")
    customer_email = Column(String(255), nullable=True)
    customer_name = Column(String(255), nullable=True)

    # Filled in once the processor reports back
    processor_transaction_id = Column(String(64), nullable=True, index=True)
    payment_method = Column(String(50), nullable=True)
    status = Column(SQLEnum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    sale = relationship("Sale", back_populates="payment_transaction")

    def __repr__(self):
        return f"<PaymentTransaction(tx_ref={self.transaction_reference}, status={self.status})>"


class SettlementIssue(Base):
    """A settlement step that failed after the buyer had already paid.

    Open issues are retried by ``SettlementService.retry_open_issues``; every
    step it re-runs is idempotent.
    """
    __tablename__ = "settlement_issues"

    id = Column(String(36), primary_key=True, default=new_id)
    sale_id = Column(String(36), ForeignKey("sales.id", ondelete="CASCADE"), nullable=False, index=True)
    step = Column(SQLEnum(SettlementStep), nullable=False)
    error = Column(Text, nullable=True)
    attempts = Column(Integer, default=1, nullable=False)
    resolved = Column(Boolean, default=False, nullable=False, index=True)

    created_at = Column(DateTime, default=utcnow)
    last_attempt_at = Column(DateTime, default=utcnow)
    resolved_at = Column(DateTime, nullable=True)

    def __repr__(self):
        return f"<SettlementIssue(sale={self.sale_id}, step={self.step}, resolved={self.resolved})>"


# Pydantic models


class SaleRecord(BaseModel):
    id: str
    product_id: str
    referral_link_id: str
    amount: Decimal
    commission_amount: Decimal
    currency: str
    status: SaleStatus
    transaction_reference: str
    customer_email: str | None = None
    created_at: datetime
    completed_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class PendingSale(BaseModel):
    """Result of creating a pending sale."""
    sale: SaleRecord
    tx_ref: str
    amount: Decimal
    commission_amount: Decimal


class SettlementSplit(BaseModel):
    """How a completed sale's gross amount is divided."""
    amount: Decimal
    commission_amount: Decimal
    platform_fee: Decimal
    business_revenue: Decimal


class SettlementResult(BaseModel):
    """Outcome of a settlement attempt."""
    sale_id: str
    success: bool
    already_settled: bool = False
    split: SettlementSplit | None = None
    affiliate_credit_id: str | None = None
    business_credit_id: str | None = None
    issues: list[SettlementStep] = []


class SettlementIssueRecord(BaseModel):
    id: str
    sale_id: str
    step: SettlementStep
    error: str | None
    attempts: int
    resolved: bool
    created_at: datetime
    resolved_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)
