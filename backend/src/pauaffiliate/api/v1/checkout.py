"""Checkout endpoints: pending sale creation and the processor redirect."""

from decimal import Decimal

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, EmailStr, Field

from pauaffiliate.api.rate_limit import limiter
from pauaffiliate.api.v1.payments import SettlementResponse, verify_and_settle
from pauaffiliate.catalog.models import Product
from pauaffiliate.logging_config import get_logger
from pauaffiliate.payments.flutterwave import flutterwave_gateway
from pauaffiliate.payments.schemas import TRANSACTION_ID_PATTERN, CheckoutCustomer, CheckoutCustomizations
from pauaffiliate.referral.service import decode_binding
from pauaffiliate.sales.service import sale_service
from pauaffiliate.storage.db import db

logger = get_logger(__name__)

router = APIRouter(prefix="/checkout", tags=["checkout"])


# ==================== MODELS ====================


class CheckoutRequest(BaseModel):
    binding_token: str  # From GET /referral/r/{code}
    product_id: str
    amount: Decimal | None = Field(default=None, gt=0)
    customer_email: EmailStr
    customer_name: str | None = Field(default=None, max_length=255)
    phone_number: str | None = Field(default=None, max_length=32)


class CheckoutResponse(BaseModel):
    sale_id: str
    tx_ref: str
    amount: Decimal
    commission_amount: Decimal
    currency: str
    checkout_url: str
    public_key: str | None = None


# ==================== ENDPOINTS ====================


@router.post("", response_model=CheckoutResponse)
@limiter.limit("20/minute")
async def start_checkout(request: Request, body: CheckoutRequest):
    """Create a pending sale and open a hosted checkout for it.

    Requires the signed referral binding handed out when the code was
    resolved; purchases without one are rejected.
    """
    binding = decode_binding(body.binding_token)
    pending = sale_service.create_pending_sale(
        binding,
        body.product_id,
        amount=body.amount,
        customer_email=body.customer_email,
        customer_name=body.customer_name,
    )

    with db.session() as session:
        product = session.query(Product).filter(Product.id == body.product_id).one()
        customizations = CheckoutCustomizations(
            title=product.name,
            description=f"Payment for {product.name}",
            logo=product.image_url or "",
        )

    session_info = await flutterwave_gateway.initialize_checkout(
        amount=pending.amount,
        currency=pending.sale.currency,
        customer=CheckoutCustomer(
            email=body.customer_email,
            name=body.customer_name,
            phone_number=body.phone_number,
        ),
        tx_ref=pending.tx_ref,
        customizations=customizations,
        redirect_url=str(request.url_for("checkout_callback")),
    )

    logger.info("checkout_started", sale_id=pending.sale.id, tx_ref=pending.tx_ref)

    return CheckoutResponse(
        sale_id=pending.sale.id,
        tx_ref=pending.tx_ref,
        amount=pending.amount,
        commission_amount=pending.commission_amount,
        currency=pending.sale.currency,
        checkout_url=session_info.link,
        public_key=session_info.public_key,
    )


@router.get("/callback", response_model=SettlementResponse, name="checkout_callback")
async def checkout_callback(
    status: str | None = Query(default=None),
    tx_ref: str | None = Query(default=None),
    transaction_id: str | None = Query(default=None, max_length=64, pattern=TRANSACTION_ID_PATTERN),
):
    """Redirect target of the hosted checkout.

    A cancelled checkout leaves the sale pending; a successful one is
    verified with the processor before anything is settled.
    """
    result = flutterwave_gateway.handle_callback(status, tx_ref, transaction_id)
    return await verify_and_settle(result.transaction_id, result.tx_ref)
