"""Validated shapes of everything exchanged with Flutterwave."""

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

SUCCESSFUL = "successful"

# Flutterwave transaction ids are numeric
TRANSACTION_ID_PATTERN = r"^\d+$"


class CheckoutCustomer(BaseModel):
    email: str
    name: str | None = None
    phone_number: str | None = None


class CheckoutCustomizations(BaseModel):
    title: str = "Payment"
    description: str = "Purchase payment"
    logo: str = ""


class CheckoutSession(BaseModel):
    """Hosted checkout opened for a pending sale."""
    tx_ref: str
    link: str
    public_key: str | None = None


class ProcessorResult(BaseModel):
    """What the hosted page reported back through the redirect."""
    status: str
    tx_ref: str
    transaction_id: str


class ProcessorEnvelope(BaseModel):
    """Every Flutterwave API reply: ``{status, message, data}``."""
    status: str
    message: str | None = None
    data: Any = None


class HostedLinkData(BaseModel):
    link: str


class ProcessorCustomer(BaseModel):
    model_config = ConfigDict(extra="ignore")

    email: str | None = None
    name: str | None = None


class ChargeData(BaseModel):
    """Charge as returned by the verify endpoint and in webhook payloads."""
    model_config = ConfigDict(extra="ignore")

    id: str
    tx_ref: str
    flw_ref: str | None = None
    status: str
    amount: Decimal
    currency: str
    payment_type: str | None = None
    customer: ProcessorCustomer = Field(default_factory=ProcessorCustomer)

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value: Any) -> str:
        return str(value)

    @property
    def successful(self) -> bool:
        return self.status.lower() == SUCCESSFUL


class VerificationResult(BaseModel):
    """A charge the processor has corroborated as successful."""
    transaction_id: str
    tx_ref: str
    status: str
    amount: Decimal
    currency: str
    payment_method: str | None = None
    customer_email: str | None = None
    customer_name: str | None = None

    @classmethod
    def from_charge(cls, charge: ChargeData) -> "VerificationResult":
        return cls(
            transaction_id=charge.id,
            tx_ref=charge.tx_ref,
            status=charge.status,
            amount=charge.amount,
            currency=charge.currency,
            payment_method=charge.payment_type,
            customer_email=charge.customer.email,
            customer_name=charge.customer.name,
        )


class WebhookEnvelope(BaseModel):
    """Any signed webhook body, before its data is read as a charge."""
    model_config = ConfigDict(extra="ignore")

    event: str
    data: dict[str, Any] = Field(default_factory=dict)

    @property
    def is_successful_charge(self) -> bool:
        status = str(self.data.get("status") or "").lower()
        return self.event == "charge.completed" and status == SUCCESSFUL


class WebhookEvent(BaseModel):
    """Inbound webhook body: ``{event, data: {status, tx_ref, id, amount, ...}}``."""
    model_config = ConfigDict(extra="ignore")

    event: str
    data: ChargeData

    @property
    def is_successful_charge(self) -> bool:
        return self.event == "charge.completed" and self.data.successful
