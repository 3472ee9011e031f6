"""Product catalog model."""

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import relationship

from pauaffiliate.storage.db import Base
from pauaffiliate.storage.models import Money, new_id, utcnow


class Product(Base):
    """A product listed by a business.

    ``commission_rate`` is a percentage (10 means 10%). It is read once when a
    sale is created; later edits never touch existing sales.
    """
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("price > 0", name="ck_products_price_positive"),
        CheckConstraint("commission_rate >= 0 AND commission_rate <= 100", name="ck_products_commission_rate"),
    )

    id = Column(String(36), primary_key=True, default=new_id)
    business_id = Column(String(36), ForeignKey("business_profiles.id"), nullable=False, index=True)

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    image_url = Column(String(500), nullable=True)

    price = Column(Money, nullable=False)
    commission_rate = Column(Numeric(5, 2), nullable=False)

    created_at = Column(DateTime, default=utcnow)

    # Relationships
    business = relationship("BusinessProfile", back_populates="products")
    referral_links = relationship("ReferralLink", back_populates="product")

    def __repr__(self):
        return f"<Product(id={self.id}, name={self.name}, price={self.price})>"
