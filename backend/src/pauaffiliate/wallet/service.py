"""Wallet ledger: balances and their append-only transaction history."""

from decimal import Decimal

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pauaffiliate.auth.models import UserAccount
from pauaffiliate.errors import InsufficientBalanceError, NotFoundError, ValidationError, WalletNotFoundError
from pauaffiliate.logging_config import get_logger
from pauaffiliate.storage.db import Database, db
from pauaffiliate.storage.models import to_money
from pauaffiliate.wallet.models import (
    Wallet,
    WalletAudit,
    WalletBalance,
    WalletEntry,
    WalletTransaction,
    WalletTransactionType,
)

logger = get_logger(__name__)


class WalletService:
    """Service for wallet balances.

    Operations:
    - Credit a wallet (sale commission, business revenue, manual adjustment)
    - Debit a wallet (approved withdrawal)
    - Transaction history and balance audits

    Every balance change is an atomic ``balance = balance + amount`` update
    paired with exactly one WalletTransaction row, so the cached balance always
    equals the sum of the wallet's transactions.
    """

    def __init__(self, database: Database | None = None):
        """Initialize wallet service."""
        self.db = database or db
        self.logger = get_logger(__name__)

    # ==================== SESSION-LEVEL HELPERS ====================

    def ensure_wallet_in(self, session: Session, user_id: str) -> Wallet:
        """Get the user's wallet inside an open session, creating it lazily."""
        wallet = session.query(Wallet).filter(Wallet.user_id == user_id).first()
        if wallet:
            return wallet

        wallet = Wallet(user_id=user_id, balance=Decimal("0.00"))
        session.add(wallet)
        session.flush()
        self.logger.info("wallet_created", user_id=user_id, wallet_id=wallet.id)
        return wallet

    def find_entry(
        self,
        session: Session,
        user_id: str,
        transaction_type: WalletTransactionType,
        sale_id: str | None = None,
        withdrawal_request_id: str | None = None,
    ) -> WalletTransaction | None:
        """Find the entry a sale or withdrawal already produced for a user, if any."""
        if not sale_id and not withdrawal_request_id:
            return None

        query = session.query(WalletTransaction).join(
            Wallet, WalletTransaction.wallet_id == Wallet.id
        ).filter(
            Wallet.user_id == user_id,
            WalletTransaction.transaction_type == transaction_type.value,
        )
        if sale_id:
            query = query.filter(WalletTransaction.sale_id == sale_id)
        if withdrawal_request_id:
            query = query.filter(WalletTransaction.withdrawal_request_id == withdrawal_request_id)
        return query.first()

    def apply_entry(
        self,
        session: Session,
        user_id: str,
        amount: Decimal,
        transaction_type: WalletTransactionType,
        description: str | None = None,
        sale_id: str | None = None,
        withdrawal_request_id: str | None = None,
    ) -> WalletTransaction:
        """Change a balance and record the entry inside the caller's transaction.

        A credit or debit already recorded for the same sale or withdrawal is
        returned unchanged.

        Args:
            session: Open session; the caller commits
            user_id: Wallet owner
            amount: Signed amount, positive to credit and negative to debit
            transaction_type: Kind of entry
            description: Human-readable description
            sale_id: Sale the entry comes from
            withdrawal_request_id: Withdrawal the entry comes from

        Returns:
            The wallet transaction

        Raises:
            InsufficientBalanceError: If a debit exceeds the balance
        """
        amount = to_money(amount)
        if amount == 0:
            raise ValidationError("Amount must not be zero", field="amount")

        existing = self.find_entry(session, user_id, transaction_type, sale_id, withdrawal_request_id)
        if existing:
            self.logger.info(
                "wallet_entry_already_recorded",
                user_id=user_id,
                transaction_type=transaction_type.value,
                sale_id=sale_id,
                withdrawal_request_id=withdrawal_request_id,
            )
            return existing

        wallet = self.ensure_wallet_in(session, user_id)

        query = session.query(Wallet).filter(Wallet.id == wallet.id)
        if amount < 0:
            # Debits only go through while the balance covers them
            query = query.filter(Wallet.balance >= -amount)
        updated = query.update({Wallet.balance: Wallet.balance + amount}, synchronize_session=False)

        if not updated:
            available = session.query(Wallet.balance).filter(Wallet.id == wallet.id).scalar()
            raise InsufficientBalanceError(-amount, to_money(available or 0))

        balance_after = to_money(session.query(Wallet.balance).filter(Wallet.id == wallet.id).scalar())
        entry = WalletTransaction(
            wallet_id=wallet.id,
            sale_id=sale_id,
            withdrawal_request_id=withdrawal_request_id,
            amount=amount,
            balance_after=balance_after,
            transaction_type=transaction_type.value,
            description=description,
        )
        session.add(entry)
        session.flush()

        self.logger.info(
            "wallet_credited" if amount > 0 else "wallet_debited",
            user_id=user_id,
            amount=str(amount),
            transaction_type=transaction_type.value,
            new_balance=str(balance_after),
            sale_id=sale_id,
            withdrawal_request_id=withdrawal_request_id,
        )
        return entry

    # ==================== OPERATIONS ====================

    def ensure_wallet(self, user_id: str) -> Wallet:
        """Get the user's wallet, creating an empty one on first use."""
        try:
            with self.db.session() as session:
                return self.ensure_wallet_in(session, user_id)
        except IntegrityError:
            # Created concurrently
            with self.db.session() as session:
                return session.query(Wallet).filter(Wallet.user_id == user_id).one()

    def credit(
        self,
        user_id: str,
        amount: Decimal,
        transaction_type: WalletTransactionType,
        description: str | None = None,
        sale_id: str | None = None,
    ) -> WalletTransaction:
        """Add funds to a wallet.

        Args:
            user_id: Wallet owner
            amount: Amount to add (positive)
            transaction_type: Kind of credit
            description: Optional description
            sale_id: Sale the credit comes from; a repeat credit for it is a no-op

        Returns:
            The wallet transaction
        """
        if to_money(amount) <= 0:
            raise ValidationError("Credit amount must be positive", field="amount")

        try:
            with self.db.session() as session:
                return self.apply_entry(session, user_id, amount, transaction_type, description, sale_id=sale_id)
        except IntegrityError:
            # A concurrent settlement recorded the same entry first
            with self.db.session() as session:
                existing = self.find_entry(session, user_id, transaction_type, sale_id=sale_id)
                if existing:
                    return existing
                return self.apply_entry(session, user_id, amount, transaction_type, description, sale_id=sale_id)

    def debit(
        self,
        user_id: str,
        amount: Decimal,
        transaction_type: WalletTransactionType,
        description: str | None = None,
        withdrawal_request_id: str | None = None,
    ) -> WalletTransaction:
        """Remove funds from a wallet.

        Raises:
            InsufficientBalanceError: If the balance does not cover the amount
        """
        if to_money(amount) <= 0:
            raise ValidationError("Debit amount must be positive", field="amount")

        with self.db.session() as session:
            return self.apply_entry(
                session,
                user_id,
                -to_money(amount),
                transaction_type,
                description,
                withdrawal_request_id=withdrawal_request_id,
            )

    def credit_manual(self, user_id: str, amount: Decimal, description: str, admin_id: str) -> WalletTransaction:
        """Admin adjustment, e.g. to settle a payment that arrived for a cancelled sale.

        Raises:
            NotFoundError: If the user does not exist
        """
        with self.db.session() as session:
            if not session.query(UserAccount.id).filter(UserAccount.id == user_id).first():
                raise NotFoundError(f"User {user_id} not found")

        entry = self.credit(
            user_id,
            amount,
            WalletTransactionType.ADJUSTMENT,
            description=description or "Manual adjustment",
        )
        self.logger.warning("wallet_manual_credit", user_id=user_id, amount=str(amount), admin_id=admin_id)
        return entry

    def get_balance(self, user_id: str) -> WalletBalance:
        """Get a user's balance; users without a wallet have a zero balance."""
        with self.db.session() as session:
            wallet = session.query(Wallet).filter(Wallet.user_id == user_id).first()
            if not wallet:
                return WalletBalance(user_id=user_id, balance=Decimal("0.00"), total_entries=0)

            total, last_at = session.query(
                func.count(WalletTransaction.id),
                func.max(WalletTransaction.created_at),
            ).filter(WalletTransaction.wallet_id == wallet.id).one()

            return WalletBalance(
                user_id=user_id,
                balance=to_money(wallet.balance),
                total_entries=total or 0,
                last_transaction_at=last_at,
            )

    def get_transactions(self, user_id: str, limit: int = 50, offset: int = 0) -> list[WalletEntry]:
        """Get a user's wallet history, newest first."""
        with self.db.session() as session:
            entries = session.query(WalletTransaction).join(
                Wallet, WalletTransaction.wallet_id == Wallet.id
            ).filter(
                Wallet.user_id == user_id
            ).order_by(
                WalletTransaction.created_at.desc()
            ).offset(offset).limit(limit).all()

            return [WalletEntry.model_validate(entry) for entry in entries]

    def verify_balance(self, user_id: str) -> WalletAudit:
        """Compare a wallet's cached balance with the sum of its transactions.

        Raises:
            WalletNotFoundError: If the user has no wallet
        """
        with self.db.session() as session:
            wallet = session.query(Wallet).filter(Wallet.user_id == user_id).first()
            if not wallet:
                raise WalletNotFoundError(f"No wallet for user {user_id}")
            return self._audit(session, wallet)

    def audit_all(self) -> list[WalletAudit]:
        """Audit every wallet; inconsistent ones are logged as errors."""
        with self.db.session() as session:
            audits = [self._audit(session, wallet) for wallet in session.query(Wallet).all()]

        for audit in audits:
            if not audit.consistent:
                self.logger.error(
                    "wallet_balance_mismatch",
                    user_id=audit.user_id,
                    cached=str(audit.cached_balance),
                    ledger=str(audit.ledger_balance),
                )
        return audits

    def _audit(self, session: Session, wallet: Wallet) -> WalletAudit:
        ledger = session.query(
            func.coalesce(func.sum(WalletTransaction.amount), 0)
        ).filter(WalletTransaction.wallet_id == wallet.id).scalar()

        return WalletAudit(
            user_id=wallet.user_id,
            cached_balance=to_money(wallet.balance),
            ledger_balance=to_money(ledger),
        )


# Singleton instance
wallet_service = WalletService()
