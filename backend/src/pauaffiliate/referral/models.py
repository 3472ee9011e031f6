"""Referral link database models."""

from datetime import datetime

from pydantic import BaseModel
from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from pauaffiliate.storage.db import Base
from pauaffiliate.storage.models import new_id, utcnow


class ReferralLink(Base):
    """An affiliate's promotion of one product.

    One link per (affiliate, product) pair. Clicks and conversions only ever
    go up, and conversions never exceed completed sales through the link.
    """
    __tablename__ = "referral_links"
    __table_args__ = (
        UniqueConstraint("affiliate_id", "product_id", name="uq_referral_links_affiliate_product"),
        CheckConstraint("clicks >= 0", name="ck_referral_links_clicks"),
        CheckConstraint("conversions >= 0", name="ck_referral_links_conversions"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False, index=True)
    affiliate_id = Column(String(36), ForeignKey("user_accounts.id"), nullable=False, index=True)
    code = Column(String(20), unique=True, nullable=False, index=True)

    # Statistics
    clicks = Column(Integer, default=0, nullable=False)  # Every resolved visit
    conversions = Column(Integer, default=0, nullable=False)  # Completed sales

    # Timestamps
    created_at = Column(DateTime, default=utcnow)

    # Relationships
    product = relationship("Product", back_populates="referral_links")
    affiliate = relationship("UserAccount", foreign_keys=[affiliate_id])
    sales = relationship("Sale", back_populates="referral_link", cascade="all, delete-orphan", passive_deletes=True)

    def __repr__(self):
        return f"<ReferralLink(code={self.code}, clicks={self.clicks}, conversions={self.conversions})>"


# Pydantic models


class ReferralBinding(BaseModel):
    """Request-scoped attribution carried from code resolution to checkout.

    ``binding_id`` identifies this particular visit; once a sale created from
    it reaches a terminal state the binding can no longer start a purchase.
    """
    binding_id: str
    code: str
    referral_link_id: str
    affiliate_id: str
    product_id: str
    issued_at: datetime
    expires_at: datetime


class ProductSummary(BaseModel):
    id: str
    name: str
    description: str | None = None
    image_url: str | None = None
    price: float
    commission_rate: float
    business_name: str


class ReferralResolution(BaseModel):
    """Result of resolving a referral code."""
    referral_link_id: str
    code: str
    affiliate_id: str
    clicks: int
    product: ProductSummary
    binding: ReferralBinding


class ReferralLinkStats(BaseModel):
    id: str
    code: str
    product_id: str
    product_name: str
    clicks: int
    conversions: int
    conversion_rate: float
    created_at: datetime
