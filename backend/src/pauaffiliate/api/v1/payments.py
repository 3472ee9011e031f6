"""Payment verification endpoint (client path)."""

from decimal import Decimal

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from pauaffiliate.api.rate_limit import limiter
from pauaffiliate.errors import AlreadySettledError
from pauaffiliate.logging_config import get_logger
from pauaffiliate.payments.schemas import TRANSACTION_ID_PATTERN
from pauaffiliate.sales.models import SettlementResult
from pauaffiliate.sales.settlement import settlement_service

logger = get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


# ==================== MODELS ====================


class VerifyPaymentRequest(BaseModel):
    transaction_id: str = Field(min_length=1, max_length=64, pattern=TRANSACTION_ID_PATTERN)
    tx_ref: str = Field(min_length=1, max_length=64)


class SettlementResponse(BaseModel):
    """Outcome of settling a sale, shared by every payment confirmation path."""
    success: bool
    already_settled: bool = False
    sale_id: str
    commission_amount: Decimal | None = None
    platform_fee: Decimal | None = None
    business_revenue: Decimal | None = None
    issues: list[str] = []
    message: str


def settlement_response(result: SettlementResult) -> SettlementResponse:
    split = result.split
    if result.success:
        message = "Payment verified and sale completed"
    else:
        message = "Payment received for a sale that was no longer pending; it will be reviewed"

    return SettlementResponse(
        success=result.success,
        already_settled=result.already_settled,
        sale_id=result.sale_id,
        commission_amount=split.commission_amount if split else None,
        platform_fee=split.platform_fee if split else None,
        business_revenue=split.business_revenue if split else None,
        issues=[step.value for step in result.issues],
        message=message,
    )


def already_settled_response(exc: AlreadySettledError) -> SettlementResponse:
    return SettlementResponse(
        success=True,
        already_settled=True,
        sale_id=exc.sale_id,
        message="Sale was already completed",
    )


async def verify_and_settle(transaction_id: str, tx_ref: str) -> SettlementResponse:
    """Verify a charge with the processor and settle its sale."""
    try:
        result = await settlement_service.settle_from_verification(transaction_id, tx_ref)
    except AlreadySettledError as e:
        logger.info("payment_already_settled", tx_ref=tx_ref, sale_id=e.sale_id)
        return already_settled_response(e)

    return settlement_response(result)


# ==================== ENDPOINTS ====================


@router.post("/verify", response_model=SettlementResponse)
@limiter.limit("20/minute")
async def verify_payment(request: Request, body: VerifyPaymentRequest):
    """Verify a payment reported by the browser and settle its sale.

    The processor is asked directly; nothing the browser reports is trusted.
    Repeating the call for a settled sale returns ``already_settled``.
    """
    return await verify_and_settle(body.transaction_id, body.tx_ref)
