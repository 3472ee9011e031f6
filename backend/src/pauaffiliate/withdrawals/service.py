"""Withdrawal workflow: request, approve, reject and complete payouts."""

from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.orm import Session

from pauaffiliate.auth.models import UserAccount, UserRole
from pauaffiliate.auth.profiles import ProfileStore, profile_store
from pauaffiliate.errors import (
    InsufficientBalanceError,
    InvalidStateTransitionError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
    WithdrawalNotFoundError,
)
from pauaffiliate.logging_config import get_logger
from pauaffiliate.notifications.service import NotificationService, notification_service
from pauaffiliate.settings import settings
from pauaffiliate.storage.db import Database, db
from pauaffiliate.storage.models import to_money, utcnow
from pauaffiliate.wallet.models import Wallet, WalletTransactionType
from pauaffiliate.wallet.service import WalletService, wallet_service
from pauaffiliate.withdrawals.models import (
    BankDetails,
    WithdrawalRecord,
    WithdrawalRequest,
    WithdrawalStatus,
)

logger = get_logger(__name__)

WALLET_OWNER_ROLES = (UserRole.AFFILIATE, UserRole.BUSINESS)


def validate_bank_details(bank: BankDetails) -> BankDetails:
    """Check bank details are present and the account number is well formed.

    Raises:
        ValidationError: On the first invalid field
    """
    bank_name = bank.bank_name.strip()
    account_number = bank.account_number.strip()
    account_name = bank.account_name.strip()

    if not bank_name:
        raise ValidationError("Bank name is required", field="bank_name")
    if not account_name:
        raise ValidationError("Account name is required", field="account_name")

    length = settings.bank_account_number_length
    if not account_number.isdigit() or len(account_number) != length:
        raise ValidationError(f"Account number must be exactly {length} digits", field="account_number")

    return BankDetails(bank_name=bank_name, account_number=account_number, account_name=account_name)


class WithdrawalService:
    """Service for withdrawal requests.

    The wallet is debited when a request is approved. Completion only
    records that the payout was sent.
    """

    def __init__(
        self,
        database: Database | None = None,
        wallets: WalletService | None = None,
        notifications: NotificationService | None = None,
        profiles: ProfileStore | None = None,
    ):
        """Initialize withdrawal service."""
        self.db = database or db
        self.wallets = wallets or wallet_service
        self.notifications = notifications or notification_service
        self.profiles = profiles or profile_store
        self.logger = get_logger(__name__)

    def _available_in(self, session: Session, user_id: str) -> Decimal:
        # Lock the wallet row while the request is checked against it
        balance = session.query(Wallet.balance).filter(Wallet.user_id == user_id).with_for_update().scalar()

        pending = session.query(
            func.coalesce(func.sum(WithdrawalRequest.amount), 0)
        ).filter(
            WithdrawalRequest.user_id == user_id,
            WithdrawalRequest.status == WithdrawalStatus.PENDING,
        ).scalar()

        return to_money(balance or 0) - to_money(pending or 0)

    def get_available_balance(self, user_id: str) -> Decimal:
        """Wallet balance minus what pending withdrawal requests already claim."""
        with self.db.session() as session:
            return self._available_in(session, user_id)

    async def request_withdrawal(
        self,
        user_id: str,
        amount: Decimal,
        bank: BankDetails,
        notes: str | None = None,
    ) -> WithdrawalRecord:
        """Create a pending withdrawal request.

        Args:
            user_id: Requesting affiliate or business
            amount: Amount to withdraw
            bank: Destination bank account
            notes: Optional note from the requester

        Returns:
            The pending request

        Raises:
            ValidationError: If the amount is below the minimum or the bank details are invalid
            InsufficientBalanceError: If the amount exceeds the available balance
        """
        user = self.profiles.get_user(user_id)
        if not user:
            raise NotFoundError(f"User {user_id} not found")
        if user.role not in WALLET_OWNER_ROLES:
            raise PermissionDeniedError("Only affiliates and businesses can withdraw")

        amount = to_money(amount)
        if amount < settings.min_withdrawal_amount:
            raise ValidationError(
                f"Minimum withdrawal amount is ₦{to_money(settings.min_withdrawal_amount):,.2f}",
                field="amount",
            )
        bank = validate_bank_details(bank)

        with self.db.session() as session:
            available = self._available_in(session, user_id)
            if amount > available:
                raise InsufficientBalanceError(amount, available)

            withdrawal = WithdrawalRequest(
                user_id=user_id,
                amount=amount,
                bank_name=bank.bank_name,
                account_number=bank.account_number,
                account_name=bank.account_name,
                status=WithdrawalStatus.PENDING,
                notes=notes,
            )
            session.add(withdrawal)
            session.flush()
            record = WithdrawalRecord.model_validate(withdrawal)

        self.logger.info("withdrawal_requested", withdrawal_id=record.id, user_id=user_id, amount=str(amount))

        await self.notifications.notify_withdrawal_request(user, record)
        return record

    def _require_admin(self, admin_id: str) -> UserAccount:
        admin = self.profiles.get_user(admin_id)
        if not admin or not admin.is_admin:
            raise PermissionDeniedError("Admin access required")
        return admin

    def _transition(
        self,
        session: Session,
        request_id: str,
        admin_id: str,
        from_status: WithdrawalStatus,
        to_status: WithdrawalStatus,
        **values,
    ) -> WithdrawalRequest:
        withdrawal = session.query(WithdrawalRequest).filter(WithdrawalRequest.id == request_id).first()
        if not withdrawal:
            raise WithdrawalNotFoundError(f"Withdrawal request {request_id} not found")

        changes = {
            WithdrawalRequest.status: to_status,
            WithdrawalRequest.processed_by: admin_id,
            WithdrawalRequest.processed_at: utcnow(),
        }
        for key, value in values.items():
            changes[getattr(WithdrawalRequest, key)] = value

        updated = session.query(WithdrawalRequest).filter(
            WithdrawalRequest.id == request_id,
            WithdrawalRequest.status == from_status,
        ).update(changes, synchronize_session=False)
        if not updated:
            raise InvalidStateTransitionError(
                f"Cannot move a {withdrawal.status.value} withdrawal to {to_status.value}"
            )

        session.refresh(withdrawal)
        return withdrawal

    async def approve(self, request_id: str, admin_id: str, notes: str | None = None) -> WithdrawalRecord:
        """Approve a pending request and debit the wallet in the same transaction.

        Raises:
            WithdrawalNotFoundError: If the request does not exist
            InvalidStateTransitionError: If the request is not pending
            InsufficientBalanceError: If the wallet no longer covers the amount
        """
        self._require_admin(admin_id)

        with self.db.session() as session:
            withdrawal = self._transition(
                session,
                request_id,
                admin_id,
                WithdrawalStatus.PENDING,
                WithdrawalStatus.APPROVED,
                approved_at=utcnow(),
                approved_by=admin_id,
                admin_notes=notes,
            )
            self.wallets.apply_entry(
                session,
                withdrawal.user_id,
                -to_money(withdrawal.amount),
                WalletTransactionType.WITHDRAWAL,
                description=f"Withdrawal to {withdrawal.bank_name} ({withdrawal.account_number})",
                withdrawal_request_id=withdrawal.id,
            )
            record = WithdrawalRecord.model_validate(withdrawal)

        self.logger.info("withdrawal_approved", withdrawal_id=request_id, admin_id=admin_id, amount=str(record.amount))
        await self.notifications.notify_withdrawal_status(record)
        return record

    async def reject(self, request_id: str, admin_id: str, notes: str | None = None) -> WithdrawalRecord:
        """Reject a pending request. The wallet is not touched."""
        self._require_admin(admin_id)

        with self.db.session() as session:
            withdrawal = self._transition(
                session, request_id, admin_id, WithdrawalStatus.PENDING, WithdrawalStatus.REJECTED, admin_notes=notes
            )
            record = WithdrawalRecord.model_validate(withdrawal)

        self.logger.info("withdrawal_rejected", withdrawal_id=request_id, admin_id=admin_id)
        await self.notifications.notify_withdrawal_status(record)
        return record

    async def complete(self, request_id: str, admin_id: str, notes: str | None = None) -> WithdrawalRecord:
        """Confirm the payout of an approved request went out."""
        self._require_admin(admin_id)

        with self.db.session() as session:
            withdrawal = self._transition(
                session,
                request_id,
                admin_id,
                WithdrawalStatus.APPROVED,
                WithdrawalStatus.COMPLETED,
                completed_at=utcnow(),
                completed_by=admin_id,
                completion_notes=notes,
            )
            record = WithdrawalRecord.model_validate(withdrawal)

        self.logger.info("withdrawal_completed", withdrawal_id=request_id, admin_id=admin_id)
        await self.notifications.notify_withdrawal_status(record)
        return record

    def list_requests(
        self,
        user_id: str | None = None,
        status: WithdrawalStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[WithdrawalRecord]:
        """List withdrawal requests, newest first."""
        with self.db.session() as session:
            query = session.query(WithdrawalRequest)
            if user_id:
                query = query.filter(WithdrawalRequest.user_id == user_id)
            if status:
                query = query.filter(WithdrawalRequest.status == status)
            rows = query.order_by(WithdrawalRequest.created_at.desc()).offset(offset).limit(limit).all()
            return [WithdrawalRecord.model_validate(row) for row in rows]


# Singleton instance
withdrawal_service = WithdrawalService()
