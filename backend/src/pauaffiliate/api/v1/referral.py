"""Referral API v1 endpoints."""

from datetime import datetime

from fastapi import APIRouter, Depends, Request, status
from pydantic import BaseModel

from pauaffiliate.api.rate_limit import limiter
from pauaffiliate.auth.middleware import require_affiliate
from pauaffiliate.auth.models import UserAccount
from pauaffiliate.logging_config import get_logger
from pauaffiliate.referral.models import ProductSummary, ReferralLinkStats
from pauaffiliate.referral.service import encode_binding, referral_service
from pauaffiliate.settings import settings

logger = get_logger(__name__)

router = APIRouter(prefix="/referral", tags=["referral"])


def referral_url(code: str) -> str:
    base_url = settings.frontend_url or settings.allowed_origins.split(",")[0]
    return f"{base_url.rstrip('/')}/r/{code}"


# ==================== MODELS ====================


class ResolveCodeResponse(BaseModel):
    """Product and affiliate behind a referral code."""
    referral_link_id: str
    code: str
    affiliate_id: str
    clicks: int
    product: ProductSummary
    binding_token: str  # Presented back to POST /checkout
    binding_expires_at: datetime


class CreateLinkRequest(BaseModel):
    product_id: str


class ReferralLinkResponse(BaseModel):
    id: str
    code: str
    product_id: str
    link: str
    clicks: int
    conversions: int


# ==================== ENDPOINTS ====================


@router.get("/r/{code}", response_model=ResolveCodeResponse)
@limiter.limit("60/minute")
async def resolve_referral_code(request: Request, code: str):
    """Resolve a referral code.

    Counts a click and returns the product with a signed binding that
    attributes a purchase started from this visit to the affiliate.
    """
    resolution = referral_service.resolve_code(code)

    return ResolveCodeResponse(
        referral_link_id=resolution.referral_link_id,
        code=resolution.code,
        affiliate_id=resolution.affiliate_id,
        clicks=resolution.clicks,
        product=resolution.product,
        binding_token=encode_binding(resolution.binding),
        binding_expires_at=resolution.binding.expires_at,
    )


@router.post("/links", response_model=ReferralLinkResponse, status_code=status.HTTP_201_CREATED)
async def create_referral_link(body: CreateLinkRequest, user: UserAccount = Depends(require_affiliate)):
    """Get the current affiliate's link for a product, creating it if needed."""
    link = referral_service.get_or_create_link(user.id, body.product_id)

    return ReferralLinkResponse(
        id=link.id,
        code=link.code,
        product_id=link.product_id,
        link=referral_url(link.code),
        clicks=link.clicks or 0,
        conversions=link.conversions or 0,
    )


@router.get("/links", response_model=list[ReferralLinkStats])
async def list_referral_links(user: UserAccount = Depends(require_affiliate)):
    """Click and conversion statistics for the current affiliate's links."""
    return referral_service.get_link_stats(user.id)
