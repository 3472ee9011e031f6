"""Withdrawal API v1 endpoints."""

from decimal import Decimal

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from pauaffiliate.auth.middleware import require_admin, require_wallet_owner
from pauaffiliate.auth.models import UserAccount
from pauaffiliate.withdrawals.models import BankDetails, WithdrawalRecord, WithdrawalStatus
from pauaffiliate.withdrawals.service import withdrawal_service

router = APIRouter(prefix="/withdrawals", tags=["withdrawals"])


# ==================== MODELS ====================


class WithdrawalCreateRequest(BaseModel):
    amount: Decimal = Field(gt=0)
    bank_name: str = Field(max_length=255)
    account_number: str = Field(max_length=20)
    account_name: str = Field(max_length=255)
    notes: str | None = Field(default=None, max_length=1000)


class WithdrawalActionRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=1000)


# ==================== ENDPOINTS ====================


@router.post("", response_model=WithdrawalRecord, status_code=status.HTTP_201_CREATED)
async def request_withdrawal(body: WithdrawalCreateRequest, user: UserAccount = Depends(require_wallet_owner)):
    """Request a payout of wallet funds to a bank account."""
    return await withdrawal_service.request_withdrawal(
        user.id,
        body.amount,
        BankDetails(bank_name=body.bank_name, account_number=body.account_number, account_name=body.account_name),
        notes=body.notes,
    )


@router.get("", response_model=list[WithdrawalRecord])
async def list_my_withdrawals(
    status: WithdrawalStatus | None = None,
    user: UserAccount = Depends(require_wallet_owner),
):
    """The current user's withdrawal requests, newest first."""
    return withdrawal_service.list_requests(user_id=user.id, status=status)


@router.post("/{request_id}/approve", response_model=WithdrawalRecord)
async def approve_withdrawal(
    request_id: str,
    body: WithdrawalActionRequest | None = None,
    admin: UserAccount = Depends(require_admin),
):
    """Approve a pending request. Debits the requester's wallet."""
    return await withdrawal_service.approve(request_id, admin.id, notes=body.notes if body else None)


@router.post("/{request_id}/reject", response_model=WithdrawalRecord)
async def reject_withdrawal(
    request_id: str,
    body: WithdrawalActionRequest | None = None,
    admin: UserAccount = Depends(require_admin),
):
    """Reject a pending request."""
    return await withdrawal_service.reject(request_id, admin.id, notes=body.notes if body else None)


@router.post("/{request_id}/complete", response_model=WithdrawalRecord)
async def complete_withdrawal(
    request_id: str,
    body: WithdrawalActionRequest | None = None,
    admin: UserAccount = Depends(require_admin),
):
    """Confirm the payout of an approved request was sent."""
    return await withdrawal_service.complete(request_id, admin.id, notes=body.notes if body else None)
