"""Import every model module so all tables are registered on Base.metadata."""

from pauaffiliate.auth.models import BusinessProfile, ProcessedWebhookEvent, UserAccount, UserRole
from pauaffiliate.catalog.models import Product
from pauaffiliate.notifications.models import Notification
from pauaffiliate.referral.models import ReferralLink
from pauaffiliate.sales.models import PaymentTransaction, Sale, SettlementIssue
from pauaffiliate.wallet.models import Wallet, WalletTransaction
from pauaffiliate.withdrawals.models import WithdrawalRequest

__all__ = [
    "BusinessProfile",
    "Notification",
    "PaymentTransaction",
    "ProcessedWebhookEvent",
    "Product",
    "ReferralLink",
    "Sale",
    "SettlementIssue",
    "UserAccount",
    "UserRole",
    "Wallet",
    "WalletTransaction",
    "WithdrawalRequest",
]
