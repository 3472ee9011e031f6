"""Settlement reconciler.

Turns a processor-confirmed payment into a completed sale and the wallet
credits that follow from it. The webhook and the client verification path
both end up in ``SettlementService._settle``; the pending -> completed
transition there is a conditional update, so whichever path arrives second
finds nothing to settle.

Steps after the transition (wallet credits, conversion count) are recorded
as settlement issues when they fail and are retried later. Each of them is
idempotent.
"""

from decimal import Decimal

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError

from pauaffiliate.catalog.models import Product
from pauaffiliate.errors import (
    AlreadySettledError,
    MarketplaceError,
    SaleNotFoundError,
    VerificationError,
)
from pauaffiliate.logging_config import get_logger
from pauaffiliate.notifications.service import NotificationService, notification_service
from pauaffiliate.payments.flutterwave import FlutterwaveGateway, flutterwave_gateway
from pauaffiliate.payments.schemas import VerificationResult, WebhookEvent
from pauaffiliate.referral.models import ReferralLink
from pauaffiliate.sales.models import (
    PaymentStatus,
    PaymentTransaction,
    Sale,
    SaleStatus,
    SettlementIssue,
    SettlementIssueRecord,
    SettlementResult,
    SettlementSplit,
    SettlementStep,
)
from pauaffiliate.sales.service import SaleService, sale_service
from pauaffiliate.settings import settings
from pauaffiliate.storage.db import Database, db
from pauaffiliate.storage.models import to_money, utcnow
from pauaffiliate.wallet.models import WalletTransactionType
from pauaffiliate.wallet.service import WalletService, wallet_service

logger = get_logger(__name__)


def compute_settlement_split(
    amount: Decimal,
    commission_amount: Decimal,
    platform_fee_rate: Decimal | None = None,
) -> SettlementSplit:
    """Divide a sale's gross amount between affiliate, platform and business.

    ``platform_fee = amount * rate`` and ``business_revenue = amount -
    commission_amount - platform_fee``.
    """
    rate = settings.platform_fee_rate if platform_fee_rate is None else Decimal(str(platform_fee_rate))
    amount = to_money(amount)
    commission_amount = to_money(commission_amount)
    platform_fee = to_money(amount * rate)

    return SettlementSplit(
        amount=amount,
        commission_amount=commission_amount,
        platform_fee=platform_fee,
        business_revenue=to_money(amount - commission_amount - platform_fee),
    )


class SaleContext(BaseModel):
    """What the post-transition steps need to know about a completed sale."""
    sale_id: str
    tx_ref: str
    referral_link_id: str
    affiliate_id: str
    business_id: str
    product_name: str
    customer_email: str | None = None
    split: SettlementSplit


class SettlementService:
    """Service settling confirmed payments."""

    def __init__(
        self,
        database: Database | None = None,
        wallets: WalletService | None = None,
        sales: SaleService | None = None,
        gateway: FlutterwaveGateway | None = None,
        notifications: NotificationService | None = None,
    ):
        """Initialize settlement service."""
        self.db = database or db
        self.wallets = wallets or wallet_service
        self.sales = sales or sale_service
        self.gateway = gateway or flutterwave_gateway
        self.notifications = notifications or notification_service
        self.logger = get_logger(__name__)

    # ==================== ENTRY POINTS ====================

    async def settle_from_webhook(self, event: WebhookEvent) -> SettlementResult:
        """Settle a sale from a signature-checked processor webhook.

        Raises:
            VerificationError: If the event is not a successful charge or does not match the sale
            SaleNotFoundError: If no sale has the event's tx_ref
            AlreadySettledError: If the sale was already completed
        """
        if not event.is_successful_charge:
            raise VerificationError(f"Not a successful charge: {event.event}/{event.data.status}")

        return await self._settle(VerificationResult.from_charge(event.data), source="webhook")

    async def settle_from_verification(self, transaction_id: str, tx_ref: str) -> SettlementResult:
        """Settle a sale after asking the processor about the charge directly.

        A charge the processor reports as failed cancels the sale.

        Raises:
            SaleNotFoundError: If no sale has this tx_ref
            AlreadySettledError: If the sale was already completed
            VerificationError: If the processor does not confirm success
        """
        sale = self.sales.get_by_reference(tx_ref)
        if sale.status == SaleStatus.COMPLETED:
            raise AlreadySettledError(sale.id)

        try:
            charge = await self.gateway.verify_transaction(transaction_id, tx_ref)
        except VerificationError as e:
            if e.definitive:
                self.sales.cancel_sale(tx_ref, f"Payment {e.processor_status or 'failed'}")
            raise

        return await self._settle(charge, source="verification")

    # ==================== SETTLEMENT ====================

    async def _settle(self, charge: VerificationResult, source: str) -> SettlementResult:
        log = self.logger.bind(tx_ref=charge.tx_ref, source=source, processor_transaction_id=charge.transaction_id)

        context = self._complete_sale(charge, log)
        if context is None:
            # Paid after the sale was cancelled; recorded for manual reconciliation
            sale = self.sales.get_by_reference(charge.tx_ref)
            self._record_issue(
                sale.id,
                SettlementStep.PAID_AFTER_CANCEL,
                f"Processor confirmed {charge.amount} {charge.currency} (transaction {charge.transaction_id})",
            )
            log.error("payment_for_cancelled_sale", sale_id=sale.id)
            return SettlementResult(sale_id=sale.id, success=False, issues=[SettlementStep.PAID_AFTER_CANCEL])

        result = SettlementResult(sale_id=context.sale_id, success=True, split=context.split)

        try:
            entry = self._credit_affiliate(context)
            result.affiliate_credit_id = entry.id if entry else None
        except (MarketplaceError, SQLAlchemyError) as e:
            self._record_issue(context.sale_id, SettlementStep.AFFILIATE_CREDIT, str(e))
            result.issues.append(SettlementStep.AFFILIATE_CREDIT)
            log.error("wallet_credit_failed", step="affiliate_credit", sale_id=context.sale_id, error=str(e))

        try:
            entry = self._credit_business(context)
            result.business_credit_id = entry.id if entry else None
        except (MarketplaceError, SQLAlchemyError) as e:
            self._record_issue(context.sale_id, SettlementStep.BUSINESS_CREDIT, str(e))
            result.issues.append(SettlementStep.BUSINESS_CREDIT)
            log.error("wallet_credit_failed", step="business_credit", sale_id=context.sale_id, error=str(e))

        try:
            self._record_conversion(context)
        except SQLAlchemyError as e:
            self._record_issue(context.sale_id, SettlementStep.CONVERSION, str(e))
            result.issues.append(SettlementStep.CONVERSION)
            log.error("conversion_record_failed", sale_id=context.sale_id, error=str(e))

        log.info(
            "sale_settled",
            sale_id=context.sale_id,
            amount=str(context.split.amount),
            commission_amount=str(context.split.commission_amount),
            platform_fee=str(context.split.platform_fee),
            business_revenue=str(context.split.business_revenue),
            issues=[step.value for step in result.issues],
        )

        await self.notifications.notify_sale(
            affiliate_id=context.affiliate_id,
            business_id=context.business_id,
            product_name=context.product_name,
            commission_amount=context.split.commission_amount,
            business_revenue=context.split.business_revenue,
            customer_email=context.customer_email,
        )

        return result

    def _complete_sale(self, charge: VerificationResult, log) -> SaleContext | None:
        """Transition the sale to completed together with its payment record.

        Returns:
            Context for the follow-up steps, or None if the sale was cancelled

        Raises:
            SaleNotFoundError: If no sale has the charge's tx_ref
            AlreadySettledError: If another caller completed the sale first
            VerificationError: If the charge does not cover the sale
        """
        now = utcnow()
        with self.db.session() as session:
            row = session.query(Sale, Product, ReferralLink).join(
                Product, Sale.product_id == Product.id
            ).join(
                ReferralLink, Sale.referral_link_id == ReferralLink.id
            ).filter(
                Sale.transaction_reference == charge.tx_ref
            ).first()

            if not row:
                log.warning("settlement_sale_not_found")
                raise SaleNotFoundError(f"No sale with reference {charge.tx_ref}")

            sale, product, link = row
            if sale.status == SaleStatus.COMPLETED:
                raise AlreadySettledError(sale.id)
            if sale.status == SaleStatus.CANCELLED:
                return None

            if to_money(charge.amount) < to_money(sale.amount):
                log.error("settlement_amount_mismatch", expected=str(sale.amount), charged=str(charge.amount))
                raise VerificationError(
                    f"Charged amount {charge.amount} is less than the sale amount {sale.amount}"
                )
            if charge.currency.upper() != (sale.currency or settings.default_currency).upper():
                log.error("settlement_currency_mismatch", expected=sale.currency, charged=charge.currency)
                raise VerificationError(f"Charged currency {charge.currency} does not match {sale.currency}")

            # Compare-and-swap: only one caller moves the sale out of pending
            updated = session.query(Sale).filter(
                Sale.id == sale.id,
                Sale.status == SaleStatus.PENDING,
            ).update(
                {Sale.status: SaleStatus.COMPLETED, Sale.completed_at: now},
                synchronize_session=False,
            )
            if not updated:
                log.info("settlement_lost_race", sale_id=sale.id)
                raise AlreadySettledError(sale.id)

            payment = session.query(PaymentTransaction).filter(
                PaymentTransaction.transaction_reference == charge.tx_ref
            ).first()
            if not payment:
                payment = PaymentTransaction(
                    transaction_reference=charge.tx_ref,
                    amount=sale.amount,
                    currency=sale.currency,
                    customer_email=sale.customer_email,
                    customer_name=sale.customer_name,
                )
                session.add(payment)
            payment.sale_id = sale.id
            payment.status = PaymentStatus.COMPLETED
            payment.processor_transaction_id = charge.transaction_id
            payment.payment_method = charge.payment_method
            payment.customer_email = payment.customer_email or charge.customer_email
            payment.customer_name = payment.customer_name or charge.customer_name

            return SaleContext(
                sale_id=sale.id,
                tx_ref=sale.transaction_reference,
                referral_link_id=link.id,
                affiliate_id=link.affiliate_id,
                business_id=product.business_id,
                product_name=product.name,
                customer_email=sale.customer_email or charge.customer_email,
                split=compute_settlement_split(sale.amount, sale.commission_amount),
            )

    # ==================== STEPS ====================

    def _credit_affiliate(self, context: SaleContext):
        if context.split.commission_amount <= 0:
            return None
        return self.wallets.credit(
            context.affiliate_id,
            context.split.commission_amount,
            WalletTransactionType.COMMISSION,
            description=f"Commission from sale of {context.product_name}",
            sale_id=context.sale_id,
        )

    def _credit_business(self, context: SaleContext):
        if context.split.business_revenue <= 0:
            self.logger.warning(
                "business_revenue_not_positive",
                sale_id=context.sale_id,
                business_revenue=str(context.split.business_revenue),
            )
            return None
        return self.wallets.credit(
            context.business_id,
            context.split.business_revenue,
            WalletTransactionType.BUSINESS_REVENUE,
            description=f"Revenue from sale of {context.product_name}",
            sale_id=context.sale_id,
        )

    def _record_conversion(self, context: SaleContext) -> bool:
        """Count the sale on its referral link once.

        Returns:
            True if this call recorded the conversion
        """
        with self.db.session() as session:
            flagged = session.query(Sale).filter(
                Sale.id == context.sale_id,
                Sale.status == SaleStatus.COMPLETED,
                Sale.conversion_recorded.is_(False),
            ).update({Sale.conversion_recorded: True}, synchronize_session=False)

            if flagged:
                session.query(ReferralLink).filter(ReferralLink.id == context.referral_link_id).update(
                    {ReferralLink.conversions: ReferralLink.conversions + 1},
                    synchronize_session=False,
                )

        if flagged:
            self.logger.info("referral_conversion_recorded", sale_id=context.sale_id, link_id=context.referral_link_id)
        return bool(flagged)

    def _load_context(self, sale_id: str) -> SaleContext:
        with self.db.session() as session:
            row = session.query(Sale, Product, ReferralLink).join(
                Product, Sale.product_id == Product.id
            ).join(
                ReferralLink, Sale.referral_link_id == ReferralLink.id
            ).filter(Sale.id == sale_id).first()
            if not row:
                raise SaleNotFoundError(f"Sale {sale_id} not found")

            sale, product, link = row
            return SaleContext(
                sale_id=sale.id,
                tx_ref=sale.transaction_reference,
                referral_link_id=link.id,
                affiliate_id=link.affiliate_id,
                business_id=product.business_id,
                product_name=product.name,
                customer_email=sale.customer_email,
                split=compute_settlement_split(sale.amount, sale.commission_amount),
            )

    # ==================== ERROR QUEUE ====================

    def _record_issue(self, sale_id: str, step: SettlementStep, error: str) -> None:
        now = utcnow()
        try:
            with self.db.session() as session:
                issue = session.query(SettlementIssue).filter(
                    SettlementIssue.sale_id == sale_id,
                    SettlementIssue.step == step,
                    SettlementIssue.resolved.is_(False),
                ).first()
                if issue:
                    issue.attempts += 1
                    issue.error = error
                    issue.last_attempt_at = now
                else:
                    session.add(SettlementIssue(sale_id=sale_id, step=step, error=error, last_attempt_at=now))
        except SQLAlchemyError as e:
            # Nothing left to fall back on; the log line is the record
            self.logger.critical("settlement_issue_not_recorded", sale_id=sale_id, step=step.value, error=str(e))
            return

        self.logger.warning("settlement_issue_recorded", sale_id=sale_id, step=step.value, error=error)

    def list_issues(self, include_resolved: bool = False) -> list[SettlementIssueRecord]:
        """List settlement issues, oldest first."""
        with self.db.session() as session:
            query = session.query(SettlementIssue)
            if not include_resolved:
                query = query.filter(SettlementIssue.resolved.is_(False))
            issues = query.order_by(SettlementIssue.created_at.asc()).all()
            return [SettlementIssueRecord.model_validate(issue) for issue in issues]

    def retry_open_issues(self) -> dict[str, int]:
        """Re-run failed settlement steps.

        Payments for cancelled sales need a human and are skipped.

        Returns:
            Counts of resolved, failed and skipped issues
        """
        counts = {"resolved": 0, "failed": 0, "skipped": 0}
        steps = {
            SettlementStep.AFFILIATE_CREDIT: self._credit_affiliate,
            SettlementStep.BUSINESS_CREDIT: self._credit_business,
            SettlementStep.CONVERSION: self._record_conversion,
        }

        for issue in self.list_issues():
            step = steps.get(issue.step)
            if step is None:
                counts["skipped"] += 1
                continue

            try:
                step(self._load_context(issue.sale_id))
            except (MarketplaceError, SQLAlchemyError) as e:
                self._record_issue(issue.sale_id, issue.step, str(e))
                counts["failed"] += 1
                continue

            self._resolve_issue(issue.id)
            counts["resolved"] += 1

        self.logger.info("settlement_issues_retried", **counts)
        return counts

    def _resolve_issue(self, issue_id: str) -> None:
        with self.db.session() as session:
            session.query(SettlementIssue).filter(SettlementIssue.id == issue_id).update(
                {
                    SettlementIssue.resolved: True,
                    SettlementIssue.resolved_at: utcnow(),
                    SettlementIssue.attempts: SettlementIssue.attempts + 1,
                },
                synchronize_session=False,
            )
        self.logger.info("settlement_issue_resolved", issue_id=issue_id)


# Singleton instance
settlement_service = SettlementService()
