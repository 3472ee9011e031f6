"""Wallet API v1 endpoints."""

from datetime import datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from pauaffiliate.auth.middleware import require_wallet_owner
from pauaffiliate.auth.models import UserAccount
from pauaffiliate.wallet.models import WalletEntry
from pauaffiliate.wallet.service import wallet_service
from pauaffiliate.withdrawals.service import withdrawal_service

router = APIRouter(prefix="/wallet", tags=["wallet"])


class WalletResponse(BaseModel):
    balance: Decimal
    available_balance: Decimal  # Balance minus pending withdrawal requests
    total_entries: int
    last_transaction_at: datetime | None = None


@router.get("", response_model=WalletResponse)
async def get_wallet(user: UserAccount = Depends(require_wallet_owner)):
    """Current balance of the user's wallet."""
    balance = wallet_service.get_balance(user.id)

    return WalletResponse(
        balance=balance.balance,
        available_balance=withdrawal_service.get_available_balance(user.id),
        total_entries=balance.total_entries,
        last_transaction_at=balance.last_transaction_at,
    )


@router.get("/transactions", response_model=list[WalletEntry])
async def get_wallet_transactions(
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    user: UserAccount = Depends(require_wallet_owner),
):
    """Wallet history, newest first."""
    return wallet_service.get_transactions(user.id, limit=limit, offset=offset)
