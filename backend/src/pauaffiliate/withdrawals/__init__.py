"""Withdrawal requests.

pending -> approved -> completed, or pending -> rejected. The wallet is
debited on approval.
"""

from pauaffiliate.withdrawals.models import BankDetails, WithdrawalRequest, WithdrawalStatus

__all__ = ["BankDetails", "WithdrawalRequest", "WithdrawalStatus"]
