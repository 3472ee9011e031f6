"""Wallet and wallet transaction models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel, ConfigDict
from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import relationship

from pauaffiliate.storage.db import Base
from pauaffiliate.storage.models import Money, new_id, utcnow


class WalletTransactionType(str, Enum):
    COMMISSION = "commission"
    BUSINESS_REVENUE = "business_revenue"
    WITHDRAWAL = "withdrawal"
    ADJUSTMENT = "adjustment"


class Wallet(Base):
    """Per-user balance.

    ``balance`` is a cached aggregate of the wallet's transactions and is only
    changed by an atomic increment alongside a new transaction row.
    """
    __tablename__ = "wallets"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(String(36), ForeignKey("user_accounts.id"), unique=True, nullable=False, index=True)
    balance = Column(Money, nullable=False, default=Decimal("0.00"))

    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    transactions = relationship("WalletTransaction", back_populates="wallet")

    def __repr__(self):
        return f"<Wallet(user={self.user_id}, balance={self.balance})>"


class WalletTransaction(Base):
    """Append-only balance entry. Positive = credit, negative = debit."""
    __tablename__ = "wallet_transactions"
    __table_args__ = (
        UniqueConstraint("wallet_id", "sale_id", "transaction_type", name="uq_wallet_tx_sale_type"),
        UniqueConstraint(
            "wallet_id", "withdrawal_request_id", "transaction_type", name="uq_wallet_tx_withdrawal_type"
        ),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    wallet_id = Column(String(36), ForeignKey("wallets.id"), nullable=False, index=True)
    sale_id = Column(String(36), ForeignKey("sales.id", ondelete="SET NULL"), nullable=True, index=True)
    withdrawal_request_id = Column(String(36), ForeignKey("withdrawal_requests.id"), nullable=True)

    amount = Column(Money, nullable=False)
    balance_after = Column(Money, nullable=False)
    transaction_type = Column(String(50), nullable=False)
    description = Column(String(500), nullable=True)

    created_at = Column(DateTime, default=utcnow, index=True)

    wallet = relationship("Wallet", back_populates="transactions")

    def __repr__(self):
        return f"<WalletTransaction(id={self.id}, wallet={self.wallet_id}, amount={self.amount})>"


# Pydantic models


class WalletEntry(BaseModel):
    id: str
    wallet_id: str
    sale_id: str | None = None
    withdrawal_request_id: str | None = None
    amount: Decimal
    balance_after: Decimal
    transaction_type: str
    description: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WalletBalance(BaseModel):
    user_id: str
    balance: Decimal
    total_entries: int
    last_transaction_at: datetime | None = None


class WalletAudit(BaseModel):
    """Cached balance vs. ledger sum for one wallet."""
    user_id: str
    cached_balance: Decimal
    ledger_balance: Decimal

    @property
    def consistent(self) -> bool:
        return self.cached_balance == self.ledger_balance
