"""Translation of service errors into HTTP responses."""

from fastapi import Request, status
from fastapi.responses import JSONResponse

from pauaffiliate.errors import (
    AlreadySettledError,
    AttributionError,
    CheckoutUnavailableError,
    InsufficientBalanceError,
    InvalidStateTransitionError,
    MarketplaceError,
    NotFoundError,
    PaymentCancelledError,
    PaymentFailedError,
    PermissionDeniedError,
    UnverifiedBusinessError,
    ValidationError,
    VerificationError,
)
from pauaffiliate.logging_config import get_logger

logger = get_logger(__name__)

# Most specific first
STATUS_CODES: list[tuple[type[MarketplaceError], int]] = [
    (AlreadySettledError, status.HTTP_200_OK),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (AttributionError, status.HTTP_400_BAD_REQUEST),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (VerificationError, status.HTTP_400_BAD_REQUEST),
    (UnverifiedBusinessError, status.HTTP_403_FORBIDDEN),
    (PermissionDeniedError, status.HTTP_403_FORBIDDEN),
    (InsufficientBalanceError, status.HTTP_402_PAYMENT_REQUIRED),
    (InvalidStateTransitionError, status.HTTP_409_CONFLICT),
    (CheckoutUnavailableError, status.HTTP_503_SERVICE_UNAVAILABLE),
    (PaymentCancelledError, status.HTTP_402_PAYMENT_REQUIRED),
    (PaymentFailedError, status.HTTP_402_PAYMENT_REQUIRED),
]


def status_code_for(exc: MarketplaceError) -> int:
    for error_type, code in STATUS_CODES:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def error_body(exc: MarketplaceError) -> dict:
    """JSON body for an error; carries the fields clients act on."""
    body: dict = {"detail": str(exc), "error": type(exc).__name__}

    if isinstance(exc, AlreadySettledError):
        body.update(success=True, already_settled=True, sale_id=exc.sale_id)
    elif isinstance(exc, (PaymentCancelledError, PaymentFailedError)):
        body["retry"] = True
    elif isinstance(exc, InsufficientBalanceError):
        body.update(required=str(exc.required), available=str(exc.available))
    elif isinstance(exc, ValidationError) and exc.field:
        body["field"] = exc.field

    return body


async def marketplace_error_handler(request: Request, exc: MarketplaceError) -> JSONResponse:
    """Exception handler registered for every MarketplaceError."""
    code = status_code_for(exc)
    if code >= 500:
        logger.error("request_failed", path=request.url.path, error=str(exc), error_type=type(exc).__name__)
    else:
        logger.info("request_rejected", path=request.url.path, status=code, error_type=type(exc).__name__)

    return JSONResponse(status_code=code, content=error_body(exc))
