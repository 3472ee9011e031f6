"""Sales: pending sales created at checkout and their settlement."""

from pauaffiliate.sales.models import PaymentTransaction, Sale, SaleStatus, SettlementIssue

__all__ = ["PaymentTransaction", "Sale", "SaleStatus", "SettlementIssue"]
