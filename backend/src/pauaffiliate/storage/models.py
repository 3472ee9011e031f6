"""Declarative base and column helpers shared by all models."""

import uuid
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import Numeric
from sqlalchemy.orm import DeclarativeBase

KOBO = Decimal("0.01")

# Money is stored with two decimal places (naira and kobo)
Money = Numeric(12, 2, asdecimal=True)


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def new_id() -> str:
    """Primary key for new rows."""
    return str(uuid.uuid4())


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how the columns are stored."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_money(value) -> Decimal:
    """Coerce a number to a Decimal rounded half-up to kobo."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(KOBO, rounding=ROUND_HALF_UP)
