"""Flutterwave payment integration.

Hosted checkout, redirect callback interpretation, server-to-server
verification and webhook signature checks. The secret key and webhook hash
never leave this module.
"""

import hmac
import re
from decimal import Decimal

import httpx
from pydantic import ValidationError as SchemaError
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from pauaffiliate.errors import (
    CheckoutUnavailableError,
    PaymentCancelledError,
    PaymentFailedError,
    VerificationError,
)
from pauaffiliate.logging_config import get_logger
from pauaffiliate.payments.schemas import (
    SUCCESSFUL,
    TRANSACTION_ID_PATTERN,
    ChargeData,
    CheckoutCustomer,
    CheckoutCustomizations,
    CheckoutSession,
    HostedLinkData,
    ProcessorEnvelope,
    ProcessorResult,
    VerificationResult,
    WebhookEnvelope,
    WebhookEvent,
)
from pauaffiliate.settings import settings

logger = get_logger(__name__)

PAYMENT_OPTIONS = "card,mobilemoney,ussd"


class FlutterwaveGateway:
    """Adapter around the Flutterwave v3 API."""

    def __init__(
        self,
        secret_key: str | None = None,
        public_key: str | None = None,
        webhook_secret: str | None = None,
        base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize gateway.

        Args:
            secret_key: Private bearer credential (defaults to settings)
            public_key: Client-exposed key (defaults to settings)
            webhook_secret: Shared webhook hash (defaults to settings)
            base_url: API root (defaults to settings)
            transport: Optional httpx transport, used by tests
        """
        self.secret_key = secret_key or settings.flutterwave_secret_key
        self.public_key = public_key or settings.flutterwave_public_key
        self.webhook_secret = webhook_secret or settings.flutterwave_webhook_secret
        self.base_url = (base_url or settings.flutterwave_base_url).rstrip("/")
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=settings.processor_timeout_seconds,
            transport=self.transport,
            headers={
                "Authorization": f"Bearer {self.secret_key}",
                "Content-Type": "application/json",
            },
        )

    # ==================== CHECKOUT ====================

    async def initialize_checkout(
        self,
        amount: Decimal,
        currency: str,
        customer: CheckoutCustomer,
        tx_ref: str,
        customizations: CheckoutCustomizations | None = None,
        redirect_url: str | None = None,
    ) -> CheckoutSession:
        """Open a hosted checkout for a pending sale.

        Args:
            amount: Amount to charge
            currency: ISO currency code
            customer: Buyer details
            tx_ref: Transaction reference of the pending sale
            customizations: Title, description and logo shown on the page
            redirect_url: Where the processor sends the buyer afterwards

        Returns:
            CheckoutSession with the hosted link

        Raises:
            CheckoutUnavailableError: If the processor is not configured or unreachable
        """
        if not self.secret_key:
            raise CheckoutUnavailableError("Payment processor not configured")

        customizations = customizations or CheckoutCustomizations()
        payload = {
            "tx_ref": tx_ref,
            "amount": str(amount),
            "currency": currency,
            "payment_options": PAYMENT_OPTIONS,
            "customer": customer.model_dump(exclude_none=True),
            "customizations": customizations.model_dump(),
        }
        if redirect_url:
            payload["redirect_url"] = redirect_url

        try:
            async with self._client() as client:
                response = await client.post("/payments", json=payload)
            envelope = ProcessorEnvelope.model_validate(response.json())
            if response.status_code != 200 or envelope.status != "success":
                raise CheckoutUnavailableError(envelope.message or "Checkout could not be opened")
            hosted = HostedLinkData.model_validate(envelope.data)
        except httpx.HTTPError as e:
            logger.error("checkout_unavailable", tx_ref=tx_ref, error=str(e))
            raise CheckoutUnavailableError("Payment processor is unreachable. Please try again.") from e
        except (ValueError, SchemaError) as e:
            logger.error("checkout_malformed_reply", tx_ref=tx_ref, error=str(e))
            raise CheckoutUnavailableError("Payment processor returned an unexpected reply") from e

        logger.info("checkout_initialized", tx_ref=tx_ref, amount=str(amount), currency=currency)
        return CheckoutSession(tx_ref=tx_ref, link=hosted.link, public_key=self.public_key)

    def handle_callback(self, status: str | None, tx_ref: str | None, transaction_id: str | None) -> ProcessorResult:
        """Interpret the redirect from the hosted checkout page.

        Raises:
            PaymentCancelledError: If the buyer closed the checkout
            PaymentFailedError: For any other non-successful status
        """
        status = (status or "").lower()
        logger.info("checkout_callback_received", status=status, tx_ref=tx_ref)

        if status == "cancelled":
            raise PaymentCancelledError()
        if status not in (SUCCESSFUL, "completed") or not tx_ref or not transaction_id:
            raise PaymentFailedError(status or "unknown")

        return ProcessorResult(status=SUCCESSFUL, tx_ref=tx_ref, transaction_id=transaction_id)

    # ==================== VERIFICATION ====================

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(settings.processor_max_retries),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=5),
        reraise=True,
    )
    async def _fetch_verification(self, transaction_id: str) -> httpx.Response:
        async with self._client() as client:
            return await client.get(f"/transactions/{transaction_id}/verify")

    async def verify_transaction(self, transaction_id: str, tx_ref: str) -> VerificationResult:
        """Ask the processor, server to server, whether a charge succeeded.

        Args:
            transaction_id: Processor's transaction id
            tx_ref: Our transaction reference the charge must belong to

        Returns:
            VerificationResult for a successful charge

        Raises:
            VerificationError: If the charge is not corroborated as successful
        """
        if not self.secret_key:
            raise VerificationError("Payment processor not configured")
        if not transaction_id or not tx_ref:
            raise VerificationError("Missing transaction_id or tx_ref")
        if not re.fullmatch(TRANSACTION_ID_PATTERN, transaction_id):
            logger.warning("verification_bad_transaction_id", transaction_id=transaction_id)
            raise VerificationError("Invalid transaction_id")

        try:
            response = await self._fetch_verification(transaction_id)
            envelope = ProcessorEnvelope.model_validate(response.json())
        except httpx.HTTPError as e:
            logger.error("verification_unreachable", transaction_id=transaction_id, error=str(e))
            raise VerificationError("Payment processor is unreachable") from e
        except (ValueError, SchemaError) as e:
            logger.error("verification_malformed_reply", transaction_id=transaction_id, error=str(e))
            raise VerificationError("Payment processor returned an unexpected reply") from e

        if response.status_code != 200 or envelope.status != "success" or envelope.data is None:
            logger.warning(
                "verification_rejected",
                transaction_id=transaction_id,
                http_status=response.status_code,
                message=envelope.message,
            )
            raise VerificationError(envelope.message or "Payment verification failed")

        try:
            charge = ChargeData.model_validate(envelope.data)
        except SchemaError as e:
            raise VerificationError("Payment processor returned an unexpected reply") from e

        if charge.tx_ref != tx_ref:
            logger.warning(
                "verification_tx_ref_mismatch",
                transaction_id=transaction_id,
                expected=tx_ref,
                actual=charge.tx_ref,
            )
            raise VerificationError("Transaction does not belong to this sale")

        if not charge.successful:
            logger.info("verification_not_successful", transaction_id=transaction_id, status=charge.status)
            raise VerificationError(
                f"Payment was not successful: {charge.status}",
                definitive=True,
                processor_status=charge.status,
            )

        logger.info("verification_succeeded", transaction_id=transaction_id, tx_ref=tx_ref)
        return VerificationResult.from_charge(charge)

    # ==================== WEBHOOKS ====================

    def verify_webhook_signature(self, signature: str | None) -> bool:
        """Compare the ``verif-hash`` header with the configured secret."""
        if not self.webhook_secret or not signature:
            return False
        return hmac.compare_digest(signature.encode(), self.webhook_secret.encode())

    def parse_webhook_envelope(self, body: bytes) -> WebhookEnvelope:
        """Read the event name and raw data of a webhook body.

        Raises:
            ValueError: If the body is not JSON or has no event
        """
        try:
            return WebhookEnvelope.model_validate_json(body)
        except SchemaError as e:
            raise ValueError(f"Invalid webhook payload: {e.error_count()} error(s)") from e

    def charge_event(self, envelope: WebhookEnvelope) -> WebhookEvent:
        """Validate the data of a charge event.

        Raises:
            ValueError: If the data is not a well-formed charge
        """
        try:
            return WebhookEvent.model_validate(envelope.model_dump())
        except SchemaError as e:
            raise ValueError(f"Invalid charge in webhook: {e.error_count()} error(s)") from e

    def parse_webhook(self, body: bytes) -> WebhookEvent:
        """Parse a webhook body carrying a charge.

        Raises:
            ValueError: If the body is not a valid charge webhook payload
        """
        return self.charge_event(self.parse_webhook_envelope(body))


# Singleton instance
flutterwave_gateway = FlutterwaveGateway()
