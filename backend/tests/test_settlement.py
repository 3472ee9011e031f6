"""
Tests for the settlement reconciler

Tests cover:
1. Settlement split arithmetic
2. Happy path through verification and webhook
3. Exactly-once settlement when both paths race
4. Rejected and mismatched charges
5. Settlement issues and their retry
"""

import asyncio
from decimal import Decimal

import pytest
from sqlalchemy.exc import SQLAlchemyError

from conftest import charge_data
from pauaffiliate.errors import AlreadySettledError, SaleNotFoundError, VerificationError
from pauaffiliate.notifications.models import Notification
from pauaffiliate.payments.schemas import WebhookEvent
from pauaffiliate.referral.models import ReferralLink
from pauaffiliate.sales.models import (
    PaymentStatus,
    PaymentTransaction,
    Sale,
    SaleStatus,
    SettlementResult,
    SettlementStep,
)
from pauaffiliate.sales.service import sale_service
from pauaffiliate.sales.settlement import SettlementService, compute_settlement_split
from pauaffiliate.storage.db import db
from pauaffiliate.wallet.models import WalletTransaction, WalletTransactionType
from pauaffiliate.wallet.service import WalletService, wallet_service


def webhook_event(data: dict, event: str = "charge.completed") -> WebhookEvent:
    return WebhookEvent.model_validate({"event": event, "data": data})


def link_stats(link_id: str) -> ReferralLink:
    with db.session() as session:
        return session.query(ReferralLink).filter(ReferralLink.id == link_id).one()


def wallet_entries() -> list[WalletTransaction]:
    with db.session() as session:
        return session.query(WalletTransaction).all()


class FlakyWalletService(WalletService):
    """Wallet whose commission credits fail a set number of times."""

    def __init__(self, failures: int = 1):
        super().__init__()
        self.failures = failures

    def credit(self, user_id, amount, transaction_type, description=None, sale_id=None):
        if transaction_type == WalletTransactionType.COMMISSION and self.failures > 0:
            self.failures -= 1
            raise SQLAlchemyError("wallet store unavailable")
        return super().credit(user_id, amount, transaction_type, description, sale_id)


@pytest.fixture
def settlement(gateway):
    return SettlementService(gateway=gateway)


@pytest.fixture
def pending(binding, product):
    return sale_service.create_pending_sale(binding, product.id, customer_email="buyer@example.com")


class TestSettlementSplit:
    """Tests for dividing a sale between the parties."""

    def test_default_platform_fee(self):
        split = compute_settlement_split(Decimal("5000"), Decimal("500"))

        assert split.commission_amount == Decimal("500.00")
        assert split.platform_fee == Decimal("250.00")
        assert split.business_revenue == Decimal("4250.00")

    def test_parts_add_up(self):
        split = compute_settlement_split(Decimal("1234.57"), Decimal("123.46"))

        assert split.commission_amount + split.platform_fee + split.business_revenue == split.amount

    def test_custom_rate(self):
        split = compute_settlement_split(Decimal("1000"), Decimal("100"), platform_fee_rate=Decimal("0"))

        assert split.platform_fee == Decimal("0.00")
        assert split.business_revenue == Decimal("900.00")


class TestSettleFromVerification:
    """Tests for settlement after the buyer returns from checkout."""

    def test_completes_sale_and_credits_wallets(self, settlement, processor, pending, affiliate, business, referral_link):
        transaction_id = processor.add_charge(charge_data(pending.tx_ref))

        result = asyncio.run(settlement.settle_from_verification(transaction_id, pending.tx_ref))

        assert result.success
        assert result.issues == []
        assert result.split.business_revenue == Decimal("4250.00")

        sale = sale_service.get_by_reference(pending.tx_ref)
        assert sale.status == SaleStatus.COMPLETED
        assert sale.completed_at is not None

        assert wallet_service.get_balance(affiliate.id).balance == Decimal("500.00")
        assert wallet_service.get_balance(business.id).balance == Decimal("4250.00")
        assert link_stats(referral_link.id).conversions == 1

        with db.session() as session:
            payment = session.query(PaymentTransaction).filter(
                PaymentTransaction.transaction_reference == pending.tx_ref
            ).one()
            assert payment.status == PaymentStatus.COMPLETED
            assert payment.processor_transaction_id == transaction_id
            assert payment.payment_method == "card"

    def test_wallet_entries_describe_the_sale(self, settlement, processor, pending, affiliate):
        transaction_id = processor.add_charge(charge_data(pending.tx_ref))
        asyncio.run(settlement.settle_from_verification(transaction_id, pending.tx_ref))

        [entry] = wallet_service.get_transactions(affiliate.id)
        assert entry.transaction_type == WalletTransactionType.COMMISSION.value
        assert entry.sale_id == pending.sale.id
        assert entry.description == "Commission from sale of Data Structures Textbook"

    def test_both_parties_notified(self, settlement, processor, pending, affiliate, business):
        transaction_id = processor.add_charge(charge_data(pending.tx_ref))
        asyncio.run(settlement.settle_from_verification(transaction_id, pending.tx_ref))

        with db.session() as session:
            titles = {
                n.user_id: n.title for n in session.query(Notification).all()
            }
        assert titles[affiliate.id] == "New Sale! 🎉"
        assert titles[business.id] == "New Sale"

    def test_second_verification_is_a_no_op(self, settlement, processor, pending, affiliate):
        transaction_id = processor.add_charge(charge_data(pending.tx_ref))
        asyncio.run(settlement.settle_from_verification(transaction_id, pending.tx_ref))

        with pytest.raises(AlreadySettledError):
            asyncio.run(settlement.settle_from_verification(transaction_id, pending.tx_ref))

        assert len(wallet_entries()) == 2
        assert wallet_service.get_balance(affiliate.id).balance == Decimal("500.00")

    def test_failed_charge_cancels_sale(self, settlement, processor, pending, affiliate):
        transaction_id = processor.add_charge(charge_data(pending.tx_ref, status="failed"))

        with pytest.raises(VerificationError) as exc_info:
            asyncio.run(settlement.settle_from_verification(transaction_id, pending.tx_ref))

        assert exc_info.value.definitive
        sale = sale_service.get_by_reference(pending.tx_ref)
        assert sale.status == SaleStatus.CANCELLED
        assert wallet_entries() == []
        assert wallet_service.get_balance(affiliate.id).balance == Decimal("0.00")

    def test_unknown_transaction_leaves_sale_pending(self, settlement, pending):
        with pytest.raises(VerificationError) as exc_info:
            asyncio.run(settlement.settle_from_verification("999", pending.tx_ref))

        assert not exc_info.value.definitive
        assert sale_service.get_by_reference(pending.tx_ref).status == SaleStatus.PENDING

    def test_charge_for_another_sale(self, settlement, processor, pending):
        transaction_id = processor.add_charge(charge_data("sale_someone_else"))

        with pytest.raises(VerificationError):
            asyncio.run(settlement.settle_from_verification(transaction_id, pending.tx_ref))

        assert sale_service.get_by_reference(pending.tx_ref).status == SaleStatus.PENDING

    def test_underpaid_charge(self, settlement, processor, pending):
        transaction_id = processor.add_charge(charge_data(pending.tx_ref, amount="4999.99"))

        with pytest.raises(VerificationError):
            asyncio.run(settlement.settle_from_verification(transaction_id, pending.tx_ref))

        assert sale_service.get_by_reference(pending.tx_ref).status == SaleStatus.PENDING
        assert wallet_entries() == []

    def test_currency_mismatch(self, settlement, processor, pending):
        transaction_id = processor.add_charge(charge_data(pending.tx_ref, currency="USD"))

        with pytest.raises(VerificationError):
            asyncio.run(settlement.settle_from_verification(transaction_id, pending.tx_ref))

        assert sale_service.get_by_reference(pending.tx_ref).status == SaleStatus.PENDING

    def test_unknown_reference(self, settlement):
        with pytest.raises(SaleNotFoundError):
            asyncio.run(settlement.settle_from_verification("4821337", "sale_missing"))


class TestSettleFromWebhook:
    """Tests for settlement driven by the processor webhook."""

    def test_webhook_settles_sale(self, settlement, pending, affiliate, business):
        result = asyncio.run(settlement.settle_from_webhook(webhook_event(charge_data(pending.tx_ref))))

        assert result.success
        assert sale_service.get_by_reference(pending.tx_ref).status == SaleStatus.COMPLETED
        assert wallet_service.get_balance(affiliate.id).balance == Decimal("500.00")
        assert wallet_service.get_balance(business.id).balance == Decimal("4250.00")

    def test_failed_charge_event_rejected(self, settlement, pending):
        event = webhook_event(charge_data(pending.tx_ref, status="failed"))

        with pytest.raises(VerificationError):
            asyncio.run(settlement.settle_from_webhook(event))

        assert sale_service.get_by_reference(pending.tx_ref).status == SaleStatus.PENDING

    def test_other_event_types_rejected(self, settlement, pending):
        event = webhook_event(charge_data(pending.tx_ref), event="transfer.completed")

        with pytest.raises(VerificationError):
            asyncio.run(settlement.settle_from_webhook(event))

    def test_unknown_reference(self, settlement):
        with pytest.raises(SaleNotFoundError):
            asyncio.run(settlement.settle_from_webhook(webhook_event(charge_data("sale_missing"))))

    def test_payment_for_cancelled_sale_recorded(self, settlement, pending, affiliate):
        sale_service.cancel_sale(pending.tx_ref, "expired")

        result = asyncio.run(settlement.settle_from_webhook(webhook_event(charge_data(pending.tx_ref))))

        assert not result.success
        assert result.issues == [SettlementStep.PAID_AFTER_CANCEL]
        assert sale_service.get_by_reference(pending.tx_ref).status == SaleStatus.CANCELLED
        assert wallet_entries() == []

        [issue] = settlement.list_issues()
        assert issue.step == SettlementStep.PAID_AFTER_CANCEL
        assert issue.sale_id == pending.sale.id


class TestExactlyOnce:
    """Tests for concurrent confirmations of the same payment."""

    def test_webhook_then_verification(self, settlement, processor, pending, affiliate, business, referral_link):
        transaction_id = processor.add_charge(charge_data(pending.tx_ref))

        asyncio.run(settlement.settle_from_webhook(webhook_event(charge_data(pending.tx_ref))))
        with pytest.raises(AlreadySettledError):
            asyncio.run(settlement.settle_from_verification(transaction_id, pending.tx_ref))

        assert len(wallet_entries()) == 2
        assert wallet_service.get_balance(affiliate.id).balance == Decimal("500.00")
        assert wallet_service.get_balance(business.id).balance == Decimal("4250.00")
        assert link_stats(referral_link.id).conversions == 1

    def test_concurrent_paths_settle_once(self, settlement, processor, pending, affiliate, business, referral_link):
        transaction_id = processor.add_charge(charge_data(pending.tx_ref))

        async def race():
            return await asyncio.gather(
                settlement.settle_from_verification(transaction_id, pending.tx_ref),
                settlement.settle_from_webhook(webhook_event(charge_data(pending.tx_ref))),
                return_exceptions=True,
            )

        outcomes = asyncio.run(race())

        settled = [o for o in outcomes if isinstance(o, SettlementResult)]
        duplicates = [o for o in outcomes if isinstance(o, AlreadySettledError)]
        assert len(settled) == 1
        assert len(duplicates) == 1

        assert len(wallet_entries()) == 2
        assert wallet_service.get_balance(affiliate.id).balance == Decimal("500.00")
        assert wallet_service.get_balance(business.id).balance == Decimal("4250.00")
        assert link_stats(referral_link.id).conversions == 1

    def test_conversion_counted_once(self, settlement, pending, referral_link):
        asyncio.run(settlement.settle_from_webhook(webhook_event(charge_data(pending.tx_ref))))
        context = settlement._load_context(pending.sale.id)

        assert settlement._record_conversion(context) is False
        assert link_stats(referral_link.id).conversions == 1

    def test_conversions_never_exceed_completed_sales(self, settlement, binding, product, referral_link):
        first = sale_service.create_pending_sale(binding, product.id)
        second = sale_service.create_pending_sale(binding, product.id)
        asyncio.run(settlement.settle_from_webhook(webhook_event(charge_data(first.tx_ref, transaction_id=1))))
        sale_service.cancel_sale(second.tx_ref, "Payment failed")

        with db.session() as session:
            completed = session.query(Sale).filter(Sale.status == SaleStatus.COMPLETED).count()
        assert link_stats(referral_link.id).conversions == completed == 1


class TestSettlementIssues:
    """Tests for steps that fail after the buyer paid."""

    def test_failed_credit_recorded_and_retried(self, gateway, pending, affiliate, business, referral_link):
        settlement = SettlementService(gateway=gateway, wallets=FlakyWalletService(failures=1))

        result = asyncio.run(settlement.settle_from_webhook(webhook_event(charge_data(pending.tx_ref))))

        assert result.success
        assert result.issues == [SettlementStep.AFFILIATE_CREDIT]
        # The sale stays completed and the rest of settlement went through
        assert sale_service.get_by_reference(pending.tx_ref).status == SaleStatus.COMPLETED
        assert wallet_service.get_balance(business.id).balance == Decimal("4250.00")
        assert wallet_service.get_balance(affiliate.id).balance == Decimal("0.00")
        assert link_stats(referral_link.id).conversions == 1

        [issue] = settlement.list_issues()
        assert issue.step == SettlementStep.AFFILIATE_CREDIT
        assert "wallet store unavailable" in issue.error

        counts = settlement.retry_open_issues()

        assert counts == {"resolved": 1, "failed": 0, "skipped": 0}
        assert settlement.list_issues() == []
        assert wallet_service.get_balance(affiliate.id).balance == Decimal("500.00")
        assert wallet_service.verify_balance(affiliate.id).consistent

    def test_retry_failure_counts_attempts(self, gateway, pending):
        settlement = SettlementService(gateway=gateway, wallets=FlakyWalletService(failures=2))
        asyncio.run(settlement.settle_from_webhook(webhook_event(charge_data(pending.tx_ref))))

        counts = settlement.retry_open_issues()

        assert counts["failed"] == 1
        [issue] = settlement.list_issues()
        assert issue.attempts == 2
        assert not issue.resolved

    def test_retry_does_not_double_credit(self, settlement, pending, affiliate):
        asyncio.run(settlement.settle_from_webhook(webhook_event(charge_data(pending.tx_ref))))
        settlement._record_issue(pending.sale.id, SettlementStep.AFFILIATE_CREDIT, "timeout")

        counts = settlement.retry_open_issues()

        assert counts["resolved"] == 1
        assert wallet_service.get_balance(affiliate.id).balance == Decimal("500.00")
        assert len(wallet_service.get_transactions(affiliate.id)) == 1

    def test_paid_after_cancel_left_for_admin(self, settlement, pending):
        sale_service.cancel_sale(pending.tx_ref, "expired")
        asyncio.run(settlement.settle_from_webhook(webhook_event(charge_data(pending.tx_ref))))

        counts = settlement.retry_open_issues()

        assert counts == {"resolved": 0, "failed": 0, "skipped": 1}
        assert len(settlement.list_issues()) == 1

    def test_resolved_issues_listed_on_request(self, gateway, pending):
        settlement = SettlementService(gateway=gateway, wallets=FlakyWalletService(failures=1))
        asyncio.run(settlement.settle_from_webhook(webhook_event(charge_data(pending.tx_ref))))
        settlement.retry_open_issues()

        [issue] = settlement.list_issues(include_resolved=True)
        assert issue.resolved
        assert issue.resolved_at is not None
