"""Admin API v1 endpoints."""

from datetime import timedelta
from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from pauaffiliate.auth.middleware import require_admin
from pauaffiliate.auth.models import UserAccount
from pauaffiliate.logging_config import get_logger
from pauaffiliate.referral.service import referral_service
from pauaffiliate.sales.models import SettlementIssueRecord
from pauaffiliate.sales.service import sale_service
from pauaffiliate.sales.settlement import settlement_service
from pauaffiliate.storage.models import utcnow
from pauaffiliate.wallet.models import WalletEntry
from pauaffiliate.wallet.service import wallet_service
from pauaffiliate.withdrawals.models import WithdrawalRecord, WithdrawalStatus
from pauaffiliate.withdrawals.service import withdrawal_service

logger = get_logger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# ==================== MODELS ====================


class ExpireSalesRequest(BaseModel):
    older_than_hours: int | None = Field(default=None, ge=1)


class PurgeRequest(BaseModel):
    confirm: bool = False


class ManualCreditRequest(BaseModel):
    amount: Decimal = Field(gt=0)
    description: str = Field(min_length=1, max_length=500)


# ==================== ENDPOINTS ====================


@router.get("/withdrawals", response_model=list[WithdrawalRecord])
async def list_withdrawals(
    status: WithdrawalStatus | None = None,
    user_id: str | None = None,
    admin: UserAccount = Depends(require_admin),
):
    """All withdrawal requests, optionally filtered."""
    return withdrawal_service.list_requests(user_id=user_id, status=status)


@router.post("/sales/expire")
async def expire_sales(body: ExpireSalesRequest | None = None, admin: UserAccount = Depends(require_admin)):
    """Cancel pending sales from abandoned checkouts."""
    older_than = None
    if body and body.older_than_hours:
        older_than = utcnow() - timedelta(hours=body.older_than_hours)

    expired = sale_service.expire_stale_sales(older_than)
    logger.info("admin_sales_expired", admin_id=admin.id, expired=expired)
    return {"expired": expired}


@router.get("/settlement-issues", response_model=list[SettlementIssueRecord])
async def list_settlement_issues(include_resolved: bool = False, admin: UserAccount = Depends(require_admin)):
    """Settlement steps that failed after payment."""
    return settlement_service.list_issues(include_resolved=include_resolved)


@router.post("/settlement-issues/retry")
async def retry_settlement_issues(admin: UserAccount = Depends(require_admin)):
    """Re-run failed settlement steps."""
    return settlement_service.retry_open_issues()


@router.post("/referral-links/purge")
async def purge_referral_links(body: PurgeRequest, admin: UserAccount = Depends(require_admin)):
    """Delete every referral link and the sales made through them."""
    if not body.confirm:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Set confirm=true to delete all referral links",
        )

    counts = referral_service.purge_all_links()
    logger.warning("admin_referral_links_purged", admin_id=admin.id, **counts)
    return counts


@router.post("/wallets/{user_id}/credit", response_model=WalletEntry, status_code=status.HTTP_201_CREATED)
async def credit_wallet(user_id: str, body: ManualCreditRequest, admin: UserAccount = Depends(require_admin)):
    """Manual wallet adjustment."""
    entry = wallet_service.credit_manual(user_id, body.amount, body.description, admin.id)
    return WalletEntry.model_validate(entry)
