"""
Tests for the withdrawal workflow

Tests cover:
1. Request validation (minimum, bank details, available balance)
2. Approval debit, rejection and completion
3. Illegal transitions and admin-only actions
4. Notifications to the requester and admins
"""

import asyncio
from decimal import Decimal

import pytest

from conftest import make_user
from pauaffiliate.auth.models import UserRole
from pauaffiliate.errors import (
    InsufficientBalanceError,
    InvalidStateTransitionError,
    PermissionDeniedError,
    ValidationError,
    WithdrawalNotFoundError,
)
from pauaffiliate.notifications.service import notification_service
from pauaffiliate.storage.db import db
from pauaffiliate.wallet.models import WalletTransactionType
from pauaffiliate.wallet.service import wallet_service
from pauaffiliate.withdrawals.models import BankDetails, WithdrawalRequest, WithdrawalStatus
from pauaffiliate.withdrawals.service import validate_bank_details, withdrawal_service

# Test constants
BANK = BankDetails(bank_name="First Bank", account_number="0123456789", account_name="Ada Affiliate")


def request(user_id: str, amount: str, bank: BankDetails = BANK):
    return asyncio.run(withdrawal_service.request_withdrawal(user_id, Decimal(amount), bank))


def fund(user_id: str, amount: str) -> None:
    wallet_service.credit(user_id, Decimal(amount), WalletTransactionType.COMMISSION)


def withdrawal_count() -> int:
    with db.session() as session:
        return session.query(WithdrawalRequest).count()


class TestBankDetails:
    """Tests for bank detail validation."""

    def test_valid_details_trimmed(self):
        bank = validate_bank_details(
            BankDetails(bank_name=" First Bank ", account_number=" 0123456789", account_name="Ada ")
        )

        assert bank.bank_name == "First Bank"
        assert bank.account_number == "0123456789"
        assert bank.account_name == "Ada"

    @pytest.mark.parametrize("account_number", ["012345678", "01234567890", "01234abcde", ""])
    def test_account_number_must_be_ten_digits(self, account_number):
        with pytest.raises(ValidationError) as exc_info:
            validate_bank_details(BANK.model_copy(update={"account_number": account_number}))

        assert exc_info.value.field == "account_number"

    def test_bank_name_required(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_bank_details(BANK.model_copy(update={"bank_name": "  "}))

        assert exc_info.value.field == "bank_name"

    def test_account_name_required(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_bank_details(BANK.model_copy(update={"account_name": ""}))

        assert exc_info.value.field == "account_name"


class TestRequestWithdrawal:
    """Tests for creating withdrawal requests."""

    def test_below_minimum_rejected(self, affiliate):
        fund(affiliate.id, "5000")

        with pytest.raises(ValidationError) as exc_info:
            request(affiliate.id, "800")

        assert exc_info.value.field == "amount"
        assert withdrawal_count() == 0

    def test_minimum_accepted(self, affiliate):
        fund(affiliate.id, "5000")

        withdrawal = request(affiliate.id, "1000")

        assert withdrawal.status == WithdrawalStatus.PENDING
        assert withdrawal.amount == Decimal("1000.00")
        assert withdrawal.account_number == "0123456789"

    def test_request_does_not_touch_wallet(self, affiliate):
        fund(affiliate.id, "5000")

        request(affiliate.id, "2000")

        assert wallet_service.get_balance(affiliate.id).balance == Decimal("5000.00")
        assert withdrawal_service.get_available_balance(affiliate.id) == Decimal("3000.00")

    def test_more_than_balance(self, affiliate):
        fund(affiliate.id, "1500")

        with pytest.raises(InsufficientBalanceError):
            request(affiliate.id, "2000")

        assert withdrawal_count() == 0

    def test_pending_requests_reserve_balance(self, affiliate):
        fund(affiliate.id, "3000")
        request(affiliate.id, "2000")

        with pytest.raises(InsufficientBalanceError) as exc_info:
            request(affiliate.id, "1500")

        assert exc_info.value.available == Decimal("1000.00")
        assert withdrawal_count() == 1

    def test_no_wallet(self, affiliate):
        with pytest.raises(InsufficientBalanceError):
            request(affiliate.id, "1000")

    def test_business_can_withdraw(self, business):
        fund(business.id, "4250")

        withdrawal = request(business.id, "4250")

        assert withdrawal.user_id == business.id

    def test_admin_cannot_withdraw(self, admin):
        with pytest.raises(PermissionDeniedError):
            request(admin.id, "1000")

    def test_invalid_bank_details(self, affiliate):
        fund(affiliate.id, "5000")

        with pytest.raises(ValidationError):
            request(affiliate.id, "1000", BANK.model_copy(update={"account_number": "123"}))

        assert withdrawal_count() == 0

    def test_requester_and_admins_notified(self, affiliate, admin):
        fund(affiliate.id, "5000")

        request(affiliate.id, "1000")

        [own] = notification_service.get_notifications(affiliate.id)
        assert own.title == "Withdrawal Request Submitted"
        [alert] = notification_service.get_notifications(admin.id)
        assert alert.title == "New Withdrawal Request - Action Required"
        assert "0123456789" in alert.message
        assert affiliate.email in alert.message


class TestAdminActions:
    """Tests for approving, rejecting and completing requests."""

    def test_approve_debits_wallet(self, affiliate, admin):
        fund(affiliate.id, "5000")
        withdrawal = request(affiliate.id, "2000")

        approved = asyncio.run(withdrawal_service.approve(withdrawal.id, admin.id, "Paid via transfer"))

        assert approved.status == WithdrawalStatus.APPROVED
        assert approved.processed_by == admin.id
        assert approved.approved_by == admin.id
        assert approved.admin_notes == "Paid via transfer"
        assert wallet_service.get_balance(affiliate.id).balance == Decimal("3000.00")

        [debit, _] = wallet_service.get_transactions(affiliate.id)
        assert debit.amount == Decimal("-2000.00")
        assert debit.withdrawal_request_id == withdrawal.id
        assert debit.description == "Withdrawal to First Bank (0123456789)"
        assert wallet_service.verify_balance(affiliate.id).consistent

    def test_approve_with_insufficient_balance_rolls_back(self, affiliate, admin):
        fund(affiliate.id, "2000")
        withdrawal = request(affiliate.id, "2000")
        wallet_service.debit(affiliate.id, Decimal("1500"), WalletTransactionType.ADJUSTMENT)

        with pytest.raises(InsufficientBalanceError):
            asyncio.run(withdrawal_service.approve(withdrawal.id, admin.id))

        [still_pending] = withdrawal_service.list_requests(user_id=affiliate.id)
        assert still_pending.status == WithdrawalStatus.PENDING
        assert wallet_service.get_balance(affiliate.id).balance == Decimal("500.00")

    def test_reject_leaves_wallet_alone(self, affiliate, admin):
        fund(affiliate.id, "5000")
        withdrawal = request(affiliate.id, "2000")

        rejected = asyncio.run(withdrawal_service.reject(withdrawal.id, admin.id, "Account name mismatch"))

        assert rejected.status == WithdrawalStatus.REJECTED
        assert wallet_service.get_balance(affiliate.id).balance == Decimal("5000.00")
        assert withdrawal_service.get_available_balance(affiliate.id) == Decimal("5000.00")

    def test_complete_after_approval(self, affiliate, admin):
        fund(affiliate.id, "5000")
        withdrawal = request(affiliate.id, "2000")
        asyncio.run(withdrawal_service.approve(withdrawal.id, admin.id))

        completed = asyncio.run(withdrawal_service.complete(withdrawal.id, admin.id))

        assert completed.status == WithdrawalStatus.COMPLETED
        # Completion does not debit again
        assert wallet_service.get_balance(affiliate.id).balance == Decimal("3000.00")
        with db.session() as session:
            row = session.query(WithdrawalRequest).filter(WithdrawalRequest.id == withdrawal.id).one()
            assert row.approved_at is not None
            assert row.completed_at is not None

    def test_completion_keeps_approving_admin(self, affiliate, admin):
        second_admin = make_user(UserRole.ADMIN, "tunde@example.com", "Tunde Admin")
        fund(affiliate.id, "5000")
        withdrawal = request(affiliate.id, "2000")
        asyncio.run(withdrawal_service.approve(withdrawal.id, admin.id, "Checked account name"))

        completed = asyncio.run(withdrawal_service.complete(withdrawal.id, second_admin.id, "Transfer ref 8841"))

        assert completed.approved_by == admin.id
        assert completed.admin_notes == "Checked account name"
        assert completed.completed_by == second_admin.id
        assert completed.completion_notes == "Transfer ref 8841"
        assert completed.processed_by == second_admin.id

        latest = notification_service.get_notifications(affiliate.id)[0]
        assert latest.message.endswith("Notes: Transfer ref 8841")

    def test_status_change_notifies_requester(self, affiliate, admin):
        fund(affiliate.id, "5000")
        withdrawal = request(affiliate.id, "2000")

        asyncio.run(withdrawal_service.reject(withdrawal.id, admin.id, "Wrong bank"))

        latest = notification_service.get_notifications(affiliate.id)[0]
        assert latest.title == "Withdrawal Rejected"
        assert "Wrong bank" in latest.message
        assert latest.type == "error"


class TestTransitions:
    """Tests for illegal state changes."""

    def test_complete_requires_approval(self, affiliate, admin):
        fund(affiliate.id, "5000")
        withdrawal = request(affiliate.id, "2000")

        with pytest.raises(InvalidStateTransitionError):
            asyncio.run(withdrawal_service.complete(withdrawal.id, admin.id))

    def test_cannot_approve_twice(self, affiliate, admin):
        fund(affiliate.id, "5000")
        withdrawal = request(affiliate.id, "2000")
        asyncio.run(withdrawal_service.approve(withdrawal.id, admin.id))

        with pytest.raises(InvalidStateTransitionError):
            asyncio.run(withdrawal_service.approve(withdrawal.id, admin.id))

        assert wallet_service.get_balance(affiliate.id).balance == Decimal("3000.00")

    def test_rejected_is_terminal(self, affiliate, admin):
        fund(affiliate.id, "5000")
        withdrawal = request(affiliate.id, "2000")
        asyncio.run(withdrawal_service.reject(withdrawal.id, admin.id))

        with pytest.raises(InvalidStateTransitionError):
            asyncio.run(withdrawal_service.approve(withdrawal.id, admin.id))
        with pytest.raises(InvalidStateTransitionError):
            asyncio.run(withdrawal_service.complete(withdrawal.id, admin.id))

    def test_unknown_request(self, admin):
        with pytest.raises(WithdrawalNotFoundError):
            asyncio.run(withdrawal_service.approve("missing", admin.id))

    def test_only_admins_act(self, affiliate):
        fund(affiliate.id, "5000")
        withdrawal = request(affiliate.id, "2000")
        other = make_user(UserRole.AFFILIATE, "other@example.com")

        with pytest.raises(PermissionDeniedError):
            asyncio.run(withdrawal_service.approve(withdrawal.id, other.id))
        with pytest.raises(PermissionDeniedError):
            asyncio.run(withdrawal_service.reject(withdrawal.id, affiliate.id))


class TestListRequests:
    """Tests for listing withdrawal requests."""

    def test_filter_by_user_and_status(self, affiliate, business, admin):
        fund(affiliate.id, "5000")
        fund(business.id, "5000")
        mine = request(affiliate.id, "1000")
        request(business.id, "1000")
        asyncio.run(withdrawal_service.approve(mine.id, admin.id))

        assert len(withdrawal_service.list_requests()) == 2
        assert [w.id for w in withdrawal_service.list_requests(user_id=affiliate.id)] == [mine.id]
        pending = withdrawal_service.list_requests(status=WithdrawalStatus.PENDING)
        assert [w.user_id for w in pending] == [business.id]
