"""Shared fixtures: an in-memory database, seeded accounts and a mocked processor."""

import os

# Configure before any pauaffiliate module reads settings
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["JWT_SECRET_KEY"] = "test-secret-key-that-is-long-enough-for-hs256"
os.environ["FLUTTERWAVE_PUBLIC_KEY"] = "FLWPUBK_TEST-public"
os.environ["FLUTTERWAVE_SECRET_KEY"] = "FLWSECK_TEST-secret"
os.environ["FLUTTERWAVE_WEBHOOK_SECRET"] = "webhook-hash-for-tests"
os.environ["ENV"] = "test"
os.environ.pop("SENDGRID_API_KEY", None)

from decimal import Decimal

import httpx
import pytest

from pauaffiliate.auth.models import BusinessProfile, UserAccount, UserRole
from pauaffiliate.catalog.models import Product
from pauaffiliate.payments.flutterwave import FlutterwaveGateway
from pauaffiliate.referral.service import referral_service
from pauaffiliate.storage.db import db
from pauaffiliate.storage.models import utcnow

HOSTED_LINK = "https://checkout.flutterwave.test/v3/hosted/pay/abc123"


@pytest.fixture(autouse=True)
def database():
    """Fresh schema for every test."""
    db.create_tables()
    yield db
    db.drop_tables()


def make_user(role: UserRole, email: str, name: str | None = None) -> UserAccount:
    with db.session() as session:
        user = UserAccount(email=email, name=name, role=role, is_active=True)
        session.add(user)
        session.flush()
        return user


def make_business(email: str = "shop@example.com", name: str = "PAU Bookshop", verified: bool = True) -> UserAccount:
    owner = make_user(UserRole.BUSINESS, email, "Shop Owner")
    with db.session() as session:
        session.add(BusinessProfile(
            id=owner.id,
            name=name,
            verified=verified,
            verified_at=utcnow() if verified else None,
        ))
    return owner


def make_product(business_id: str, price: str = "5000.00", commission_rate: str = "10", name: str = "Data Structures Textbook") -> Product:
    with db.session() as session:
        product = Product(
            business_id=business_id,
            name=name,
            description="Second edition",
            price=Decimal(price),
            commission_rate=Decimal(commission_rate),
        )
        session.add(product)
        session.flush()
        return product


@pytest.fixture
def affiliate():
    return make_user(UserRole.AFFILIATE, "ada@example.com", "Ada Affiliate")


@pytest.fixture
def business():
    return make_business()


@pytest.fixture
def admin():
    return make_user(UserRole.ADMIN, "admin@example.com", "Platform Admin")


@pytest.fixture
def product(business):
    return make_product(business.id)


@pytest.fixture
def referral_link(affiliate, product):
    return referral_service.get_or_create_link(affiliate.id, product.id)


@pytest.fixture
def binding(referral_link):
    return referral_service.resolve_code(referral_link.code).binding


# ==================== PROCESSOR ====================


def charge_data(
    tx_ref: str,
    amount: str = "5000.00",
    status: str = "successful",
    currency: str = "NGN",
    transaction_id: int = 4821337,
) -> dict:
    """A charge shaped like Flutterwave's verify response data."""
    return {
        "id": transaction_id,
        "tx_ref": tx_ref,
        "flw_ref": "FLW-MOCK-9f8e7d",
        "amount": amount,
        "currency": currency,
        "charged_amount": amount,
        "status": status,
        "payment_type": "card",
        "customer": {"id": 991, "email": "buyer@example.com", "name": "Bola Buyer"},
    }


class FakeProcessor:
    """In-memory Flutterwave served through httpx.MockTransport."""

    def __init__(self):
        self.charges: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []

    def add_charge(self, data: dict) -> str:
        self.charges[str(data["id"])] = data
        return str(data["id"])

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.method == "POST" and request.url.path.endswith("/payments"):
            return httpx.Response(200, json={
                "status": "success",
                "message": "Hosted Link",
                "data": {"link": HOSTED_LINK},
            })

        transaction_id = request.url.path.rstrip("/").split("/")[-2]
        charge = self.charges.get(transaction_id)
        if charge is None:
            return httpx.Response(404, json={
                "status": "error",
                "message": "No transaction was found for this id",
                "data": None,
            })
        return httpx.Response(200, json={
            "status": "success",
            "message": "Transaction fetched successfully",
            "data": charge,
        })

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def processor():
    return FakeProcessor()


@pytest.fixture
def gateway(processor):
    return FlutterwaveGateway(transport=processor.transport)
