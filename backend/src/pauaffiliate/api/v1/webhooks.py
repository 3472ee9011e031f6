"""Webhook endpoints for external services."""

from datetime import timedelta

from fastapi import APIRouter, HTTPException, Request, status
from sqlalchemy.exc import IntegrityError

from pauaffiliate.auth.models import ProcessedWebhookEvent
from pauaffiliate.errors import AlreadySettledError, SaleNotFoundError, VerificationError
from pauaffiliate.logging_config import get_logger
from pauaffiliate.payments.flutterwave import flutterwave_gateway
from pauaffiliate.sales.settlement import settlement_service
from pauaffiliate.settings import settings
from pauaffiliate.storage.db import db
from pauaffiliate.storage.models import utcnow

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

SIGNATURE_HEADER = "verif-hash"


def is_event_processed(event_id: str, source: str) -> bool:
    """Check if a webhook event has already been processed.

    Args:
        event_id: The unique event ID from the webhook source
        source: The webhook source (e.g., "flutterwave")

    Returns:
        True if already processed, False otherwise
    """
    with db.session() as session:
        existing = session.query(ProcessedWebhookEvent).filter(
            ProcessedWebhookEvent.event_id == event_id,
            ProcessedWebhookEvent.source == source,
        ).first()
        return existing is not None


def mark_event_processed(event_id: str, event_type: str, source: str) -> None:
    """Mark a webhook event as processed.

    Args:
        event_id: The unique event ID from the webhook source
        event_type: The type of event (e.g., "charge.completed")
        source: The webhook source (e.g., "flutterwave")
    """
    try:
        with db.session() as session:
            session.add(ProcessedWebhookEvent(
                event_id=event_id,
                event_type=event_type,
                source=source,
                processed_at=utcnow(),
            ))
    except IntegrityError:
        # A concurrent delivery got there first
        logger.info("webhook_event_already_marked", event_id=event_id, source=source)


def cleanup_old_events(days: int | None = None) -> int:
    """Remove webhook events older than specified days.

    Args:
        days: Number of days to keep events (defaults to settings)

    Returns:
        Number of deleted events
    """
    cutoff = utcnow() - timedelta(days=days or settings.webhook_event_retention_days)
    with db.session() as session:
        deleted = session.query(ProcessedWebhookEvent).filter(
            ProcessedWebhookEvent.processed_at < cutoff
        ).delete()

    logger.info("webhook_events_cleaned_up", deleted=deleted)
    return deleted


@router.post("/flutterwave")
async def flutterwave_webhook(request: Request):
    """Handle Flutterwave webhook events.

    Verifies the ``verif-hash`` header and settles the sale for successful
    charges. Redelivered events are acknowledged without reprocessing.
    """
    if not flutterwave_gateway.webhook_secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Webhooks not configured",
        )

    if not flutterwave_gateway.verify_webhook_signature(request.headers.get(SIGNATURE_HEADER)):
        logger.warning("webhook_signature_invalid", source="flutterwave")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid signature",
        )

    payload = await request.body()
    try:
        envelope = flutterwave_gateway.parse_webhook_envelope(payload)
    except ValueError as e:
        logger.warning("flutterwave_webhook_invalid", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )

    # Transfers, refunds and unsuccessful charges are acknowledged untouched
    if not envelope.is_successful_charge:
        logger.info(
            "flutterwave_webhook_ignored",
            event_type=envelope.event,
            event_status=envelope.data.get("status"),
        )
        return {"received": True, "message": "Event ignored"}

    try:
        event = flutterwave_gateway.charge_event(envelope)
    except ValueError as e:
        logger.warning("flutterwave_webhook_invalid", event_type=envelope.event, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )

    event_id = event.data.id
    if is_event_processed(event_id, "flutterwave"):
        logger.info("flutterwave_webhook_duplicate", event_id=event_id)
        return {"received": True, "duplicate": True}

    try:
        result = await settlement_service.settle_from_webhook(event)
    except AlreadySettledError as e:
        mark_event_processed(event_id, event.event, "flutterwave")
        return {"received": True, "already_settled": True, "sale_id": e.sale_id}
    except SaleNotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Pending sale not found",
        )
    except VerificationError as e:
        # Redelivery would not change the outcome
        logger.error("flutterwave_webhook_rejected", tx_ref=event.data.tx_ref, error=str(e))
        mark_event_processed(event_id, event.event, "flutterwave")
        return {"received": True, "settled": False, "detail": str(e)}

    mark_event_processed(event_id, event.event, "flutterwave")
    logger.info("flutterwave_charge_completed", tx_ref=event.data.tx_ref, sale_id=result.sale_id)

    return {
        "received": True,
        "settled": result.success,
        "sale_id": result.sale_id,
        "issues": [step.value for step in result.issues],
    }
