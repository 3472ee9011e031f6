"""Referral service: link creation, code resolution and click accounting."""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from pauaffiliate.auth.models import BusinessProfile, UserAccount, UserRole
from pauaffiliate.auth.tokens import TokenError, decode_token, encode_token
from pauaffiliate.catalog.models import Product
from pauaffiliate.errors import (
    MissingAttributionError,
    PermissionDeniedError,
    ProductNotFoundError,
    ReferralCodeNotFoundError,
    UnverifiedBusinessError,
)
from pauaffiliate.logging_config import get_logger
from pauaffiliate.referral.models import (
    ProductSummary,
    ReferralBinding,
    ReferralLink,
    ReferralLinkStats,
    ReferralResolution,
)
from pauaffiliate.sales.models import PaymentTransaction, Sale, SettlementIssue
from pauaffiliate.settings import settings
from pauaffiliate.storage.db import Database, db
from pauaffiliate.storage.models import utcnow
from pauaffiliate.wallet.models import WalletTransaction

logger = get_logger(__name__)

BINDING_TOKEN_TYPE = "referral_binding"


def _generate_unique_code(length: int = 8) -> str:
    """Generate a short, readable referral code.

    Uses lowercase letters and digits, avoiding confusing characters.
    """
    # Exclude confusing characters: 0, o, i, l, 1
    alphabet = "abcdefghjkmnpqrstuvwxyz23456789"
    return "".join(secrets.choice(alphabet) for _ in range(length))


def encode_binding(binding: ReferralBinding) -> str:
    """Serialise a binding as a signed token for the browser to hold."""
    ttl = binding.expires_at - binding.issued_at
    return encode_token(
        {
            "bid": binding.binding_id,
            "code": binding.code,
            "lid": binding.referral_link_id,
            "aff": binding.affiliate_id,
            "pid": binding.product_id,
        },
        expires_in=ttl,
        token_type=BINDING_TOKEN_TYPE,
    )


def decode_binding(token: str | None) -> ReferralBinding:
    """Restore a binding from its signed token.

    Raises:
        MissingAttributionError: If the token is absent, tampered with or expired
    """
    if not token:
        raise MissingAttributionError()

    try:
        claims = decode_token(token, token_type=BINDING_TOKEN_TYPE)
    except TokenError as e:
        logger.info("referral_binding_rejected", error=str(e))
        raise MissingAttributionError("Referral session expired. Please open the referral link again.") from e

    return ReferralBinding(
        binding_id=claims["bid"],
        code=claims["code"],
        referral_link_id=claims["lid"],
        affiliate_id=claims["aff"],
        product_id=claims["pid"],
        issued_at=datetime.fromtimestamp(claims["iat"], tz=timezone.utc).replace(tzinfo=None),
        expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc).replace(tzinfo=None),
    )


class ReferralService:
    """Service for referral links and attribution."""

    def __init__(self, database: Database | None = None):
        """Initialize referral service."""
        self.db = database or db
        self.logger = get_logger(__name__)

    def get_or_create_link(self, affiliate_id: str, product_id: str) -> ReferralLink:
        """Get the affiliate's link for a product, creating it on first promotion.

        Args:
            affiliate_id: Affiliate user ID
            product_id: Product ID

        Returns:
            ReferralLink object

        Raises:
            PermissionDeniedError: If the user is not an affiliate
            ProductNotFoundError: If the product does not exist
        """
        with self.db.session() as session:
            affiliate = session.query(UserAccount).filter(UserAccount.id == affiliate_id).first()
            if not affiliate or affiliate.role != UserRole.AFFILIATE:
                raise PermissionDeniedError("Only affiliates can create referral links")

            product = session.query(Product).filter(Product.id == product_id).first()
            if not product:
                raise ProductNotFoundError(f"Product {product_id} not found")

            existing = session.query(ReferralLink).filter(
                ReferralLink.affiliate_id == affiliate_id,
                ReferralLink.product_id == product_id,
            ).first()
            if existing:
                return existing

            # Generate unique code
            code = _generate_unique_code()
            attempts = 0
            while attempts < 10:
                clash = session.query(ReferralLink).filter(ReferralLink.code == code).first()
                if not clash:
                    break
                code = _generate_unique_code()
                attempts += 1

            link = ReferralLink(affiliate_id=affiliate_id, product_id=product_id, code=code)
            session.add(link)
            try:
                session.flush()
            except IntegrityError:
                # Another request created the pair first
                session.rollback()
                return session.query(ReferralLink).filter(
                    ReferralLink.affiliate_id == affiliate_id,
                    ReferralLink.product_id == product_id,
                ).one()

            self.logger.info(
                "referral_link_created",
                affiliate_id=affiliate_id,
                product_id=product_id,
                code=code,
            )
            return link

    def resolve_code(self, code: str) -> ReferralResolution:
        """Resolve a referral code to its product and affiliate and record a click.

        Args:
            code: Referral code from the visited link

        Returns:
            ReferralResolution carrying a fresh binding for checkout

        Raises:
            ReferralCodeNotFoundError: If the code does not exist
            ProductNotFoundError: If the linked product is gone
            UnverifiedBusinessError: If the owning business is not verified
        """
        code = (code or "").strip()
        if not code:
            raise ReferralCodeNotFoundError("No referral code provided")

        with self.db.session() as session:
            link = session.query(ReferralLink).filter(ReferralLink.code == code).first()
            if not link:
                self.logger.info("referral_code_not_found", code=code)
                raise ReferralCodeNotFoundError("Referral code not found")

            row = session.query(Product, BusinessProfile).join(
                BusinessProfile, Product.business_id == BusinessProfile.id
            ).filter(Product.id == link.product_id).first()
            if not row:
                raise ProductNotFoundError("Product not found or no longer available")

            product, business = row
            if not business.verified:
                self.logger.warning("referral_unverified_business", code=code, business_id=business.id)
                raise UnverifiedBusinessError(
                    "This product is from an unverified business and is not available for purchase"
                )

            link_id = link.id
            affiliate_id = link.affiliate_id
            clicks = link.clicks or 0
            summary = ProductSummary(
                id=product.id,
                name=product.name,
                description=product.description,
                image_url=product.image_url,
                price=float(product.price),
                commission_rate=float(product.commission_rate),
                business_name=business.name,
            )

        if self.track_click(link_id):
            clicks += 1

        now = utcnow()
        binding = ReferralBinding(
            binding_id=secrets.token_hex(16),
            code=code,
            referral_link_id=link_id,
            affiliate_id=affiliate_id,
            product_id=summary.id,
            issued_at=now,
            expires_at=now + timedelta(minutes=settings.referral_binding_ttl_minutes),
        )

        self.logger.info("referral_code_resolved", code=code, link_id=link_id, product_id=summary.id)

        return ReferralResolution(
            referral_link_id=link_id,
            code=code,
            affiliate_id=affiliate_id,
            clicks=clicks,
            product=summary,
            binding=binding,
        )

    def track_click(self, link_id: str) -> bool:
        """Increment a link's click counter.

        Clicks are an analytics signal, so a failure is logged and reported
        as False instead of being raised.

        Returns:
            True if tracked successfully
        """
        try:
            with self.db.session() as session:
                updated = session.query(ReferralLink).filter(ReferralLink.id == link_id).update(
                    {ReferralLink.clicks: ReferralLink.clicks + 1},
                    synchronize_session=False,
                )
        except SQLAlchemyError as e:
            self.logger.warning("referral_click_not_tracked", link_id=link_id, error=str(e))
            return False

        if updated:
            self.logger.info("referral_click_tracked", link_id=link_id)
        return bool(updated)

    def get_link_stats(self, affiliate_id: str) -> list[ReferralLinkStats]:
        """Get click and conversion statistics for an affiliate's links.

        Args:
            affiliate_id: Affiliate user ID

        Returns:
            List of link stats, newest first
        """
        with self.db.session() as session:
            rows = session.query(ReferralLink, Product.name).join(
                Product, ReferralLink.product_id == Product.id
            ).filter(
                ReferralLink.affiliate_id == affiliate_id,
            ).order_by(ReferralLink.created_at.desc()).all()

            return [
                ReferralLinkStats(
                    id=link.id,
                    code=link.code,
                    product_id=link.product_id,
                    product_name=product_name,
                    clicks=link.clicks,
                    conversions=link.conversions,
                    conversion_rate=(link.conversions / link.clicks) if link.clicks else 0.0,
                    created_at=link.created_at,
                )
                for link, product_name in rows
            ]

    def purge_all_links(self) -> dict[str, Any]:
        """Delete every referral link together with the records that depend on it.

        Sales, their payment transactions and settlement issues are deleted.
        Wallet transactions are kept so balances still add up; their sale
        reference is cleared.

        Returns:
            Counts of affected rows per table
        """
        with self.db.session() as session:
            sale_ids = select(Sale.id)
            tx_refs = select(Sale.transaction_reference)

            issues = session.query(SettlementIssue).filter(
                SettlementIssue.sale_id.in_(sale_ids)
            ).delete(synchronize_session=False)

            detached = session.query(WalletTransaction).filter(
                WalletTransaction.sale_id.in_(sale_ids)
            ).update({WalletTransaction.sale_id: None}, synchronize_session=False)

            payments = session.query(PaymentTransaction).filter(
                PaymentTransaction.transaction_reference.in_(tx_refs)
            ).delete(synchronize_session=False)

            sales = session.query(Sale).delete(synchronize_session=False)
            links = session.query(ReferralLink).delete(synchronize_session=False)

        counts = {
            "referral_links": links,
            "sales": sales,
            "payment_transactions": payments,
            "settlement_issues": issues,
            "wallet_transactions_detached": detached,
        }
        logger.warning("referral_links_purged", **counts)
        return counts


# Singleton instance
referral_service = ReferralService()
