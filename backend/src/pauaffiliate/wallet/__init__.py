"""Wallet ledger for affiliates and businesses."""

from pauaffiliate.wallet.models import Wallet, WalletTransaction, WalletTransactionType

__all__ = ["Wallet", "WalletTransaction", "WalletTransactionType"]
