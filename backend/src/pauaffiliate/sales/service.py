"""Pending sale ledger: sales created before the buyer is sent to the processor."""

import secrets
from datetime import datetime, timedelta
from decimal import Decimal

from sqlalchemy.exc import SQLAlchemyError

from pauaffiliate.auth.models import BusinessProfile
from pauaffiliate.catalog.models import Product
from pauaffiliate.errors import (
    AttributionError,
    MissingAttributionError,
    ProductNotFoundError,
    SaleNotFoundError,
    UnverifiedBusinessError,
    ValidationError,
)
from pauaffiliate.logging_config import get_logger
from pauaffiliate.referral.models import ReferralBinding, ReferralLink
from pauaffiliate.sales.models import (
    PaymentStatus,
    PaymentTransaction,
    PendingSale,
    Sale,
    SaleRecord,
    SaleStatus,
)
from pauaffiliate.settings import settings
from pauaffiliate.storage.db import Database, db
from pauaffiliate.storage.models import to_money, utcnow

logger = get_logger(__name__)


def generate_transaction_reference() -> str:
    """Opaque, unguessable reference used as the settlement idempotency key."""
    return f"sale_{secrets.token_hex(16)}"


def compute_commission(amount: Decimal, commission_rate: Decimal) -> Decimal:
    """Commission for a sale: ``amount * rate / 100``, rounded to kobo."""
    return to_money(to_money(amount) * Decimal(str(commission_rate)) / Decimal("100"))


class SaleService:
    """Service for pending sales."""

    def __init__(self, database: Database | None = None):
        """Initialize sale service."""
        self.db = database or db
        self.logger = get_logger(__name__)

    def create_pending_sale(
        self,
        binding: ReferralBinding | None,
        product_id: str,
        amount: Decimal | None = None,
        customer_email: str | None = None,
        customer_name: str | None = None,
    ) -> PendingSale:
        """Create a pending sale and its payment transaction shadow record.

        Args:
            binding: Referral binding from code resolution
            product_id: Product being bought
            amount: Gross amount (defaults to the product's price)
            customer_email: Buyer email
            customer_name: Buyer name

        Returns:
            PendingSale with the transaction reference to hand to the processor

        Raises:
            MissingAttributionError: If there is no usable binding
            AttributionError: If the binding is for another product or already used
            ProductNotFoundError: If the product does not exist
            UnverifiedBusinessError: If the product's business is not verified
            ValidationError: If the amount is not positive
        """
        if binding is None:
            raise MissingAttributionError()
        if binding.expires_at <= utcnow():
            raise MissingAttributionError("Referral session expired. Please open the referral link again.")
        if binding.product_id != product_id:
            raise AttributionError("Referral link does not match this product")

        with self.db.session() as session:
            link = session.query(ReferralLink).filter(ReferralLink.id == binding.referral_link_id).first()
            if not link or link.affiliate_id != binding.affiliate_id or link.product_id != product_id:
                raise MissingAttributionError("Referral link is no longer valid. Please use a valid referral link.")

            # A binding is spent once a sale started from it is completed or cancelled
            spent = session.query(Sale.id).filter(
                Sale.binding_id == binding.binding_id,
                Sale.status != SaleStatus.PENDING,
            ).first()
            if spent:
                raise AttributionError("This referral session has ended. Please open the referral link again.")

            row = session.query(Product, BusinessProfile).join(
                BusinessProfile, Product.business_id == BusinessProfile.id
            ).filter(Product.id == product_id).first()
            if not row:
                raise ProductNotFoundError(f"Product {product_id} not found")

            product, business = row
            if not business.verified:
                raise UnverifiedBusinessError(
                    "This product is from an unverified business and is not available for purchase"
                )

            sale_amount = to_money(amount if amount is not None else product.price)
            if sale_amount <= 0:
                raise ValidationError("Amount must be positive", field="amount")

            # Snapshot: later rate changes never touch this sale
            commission_amount = compute_commission(sale_amount, product.commission_rate)

            sale = Sale(
                product_id=product_id,
                referral_link_id=link.id,
                binding_id=binding.binding_id,
                amount=sale_amount,
                commission_amount=commission_amount,
                currency=settings.default_currency,
                status=SaleStatus.PENDING,
                transaction_reference=generate_transaction_reference(),
                customer_email=customer_email,
                customer_name=customer_name,
            )
            session.add(sale)
            session.flush()
            record = SaleRecord.model_validate(sale)

        self.logger.info(
            "pending_sale_created",
            sale_id=record.id,
            tx_ref=record.transaction_reference,
            product_id=product_id,
            affiliate_id=binding.affiliate_id,
            amount=str(record.amount),
            commission_amount=str(record.commission_amount),
        )

        self._record_payment_shadow(record, customer_email, customer_name)

        return PendingSale(
            sale=record,
            tx_ref=record.transaction_reference,
            amount=record.amount,
            commission_amount=record.commission_amount,
        )

    def _record_payment_shadow(self, sale: SaleRecord, customer_email: str | None, customer_name: str | None) -> None:
        # Non-fatal: settlement upserts the shadow record by tx_ref
        try:
            with self.db.session() as session:
                session.add(PaymentTransaction(
                    sale_id=sale.id,
                    transaction_reference=sale.transaction_reference,
                    amount=sale.amount,
                    currency=sale.currency,
                    customer_email=customer_email,
                    customer_name=customer_name,
                    status=PaymentStatus.PENDING,
                ))
        except SQLAlchemyError as e:
            self.logger.error(
                "payment_transaction_insert_failed",
                sale_id=sale.id,
                tx_ref=sale.transaction_reference,
                error=str(e),
            )

    def get_by_reference(self, tx_ref: str) -> SaleRecord:
        """Get a sale by its transaction reference.

        Raises:
            SaleNotFoundError: If no sale has this reference
        """
        with self.db.session() as session:
            sale = session.query(Sale).filter(Sale.transaction_reference == tx_ref).first()
            if not sale:
                raise SaleNotFoundError(f"No sale with reference {tx_ref}")
            return SaleRecord.model_validate(sale)

    def cancel_sale(self, tx_ref: str, reason: str) -> bool:
        """Cancel a pending sale.

        Returns:
            True if the sale was pending and is now cancelled
        """
        now = utcnow()
        with self.db.session() as session:
            updated = session.query(Sale).filter(
                Sale.transaction_reference == tx_ref,
                Sale.status == SaleStatus.PENDING,
            ).update(
                {Sale.status: SaleStatus.CANCELLED, Sale.cancelled_at: now, Sale.cancellation_reason: reason},
                synchronize_session=False,
            )
            if updated:
                session.query(PaymentTransaction).filter(
                    PaymentTransaction.transaction_reference == tx_ref,
                    PaymentTransaction.status == PaymentStatus.PENDING,
                ).update({PaymentTransaction.status: PaymentStatus.FAILED}, synchronize_session=False)

        if updated:
            self.logger.info("sale_cancelled", tx_ref=tx_ref, reason=reason)
        return bool(updated)

    def expire_stale_sales(self, older_than: datetime | None = None) -> int:
        """Cancel pending sales from abandoned checkouts.

        Args:
            older_than: Cut-off (defaults to now minus the pending sale TTL)

        Returns:
            Number of sales cancelled
        """
        cutoff = older_than or utcnow() - timedelta(hours=settings.pending_sale_ttl_hours)
        now = utcnow()

        with self.db.session() as session:
            stale_refs = [
                ref for (ref,) in session.query(Sale.transaction_reference).filter(
                    Sale.status == SaleStatus.PENDING,
                    Sale.created_at < cutoff,
                ).all()
            ]
            if not stale_refs:
                return 0

            expired = session.query(Sale).filter(
                Sale.transaction_reference.in_(stale_refs),
                Sale.status == SaleStatus.PENDING,
            ).update(
                {Sale.status: SaleStatus.CANCELLED, Sale.cancelled_at: now, Sale.cancellation_reason: "expired"},
                synchronize_session=False,
            )
            session.query(PaymentTransaction).filter(
                PaymentTransaction.transaction_reference.in_(stale_refs),
                PaymentTransaction.status == PaymentStatus.PENDING,
            ).update({PaymentTransaction.status: PaymentStatus.FAILED}, synchronize_session=False)

        self.logger.info("stale_sales_expired", count=expired, cutoff=cutoff.isoformat())
        return expired


# Singleton instance
sale_service = SaleService()
