"""
Module: fees_kernel.db.types
Responsibility: Annotated type aliases and the rounding helper for money
    columns.  Centralizes precision so that every model and service uses
    identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, selectors/ and engines.  MUST NOT import from any of those.

Invariants enforced:
    - No floats.  All monetary amounts are Decimal.
    - MONEY_DECIMAL_PLACES is the canonical precision of the single
      operating currency; round_money() is the only sanctioned rounding
      function.

Failure modes:
    - decimal.InvalidOperation if a non-finite Decimal is quantized.
"""

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated

from sqlalchemy import Numeric, String

# 38 digits total, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# SHA-256 hash as hex string (64 characters)
PayloadHash = Annotated[str, String(64)]

# Short identifier strings (reference codes, transaction ids)
ShortCode = Annotated[str, String(64)]

# Long text for notes and messages
LongText = Annotated[str, String(2000)]


MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP
ZERO = Decimal("0.00")


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary value to the currency precision.

    Preconditions: value is a finite Decimal.
    Postconditions: Returns value quantized to decimal_places.

    Args:
        value: The Decimal value to round.
        decimal_places: Number of decimal places to round to.
        rounding: Rounding mode (default: ROUND_HALF_UP).

    Returns:
        Rounded Decimal value.
    """
    quantize_str = "0." + "0" * decimal_places
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def has_money_precision(value: Decimal, decimal_places: int = MONEY_DECIMAL_PLACES) -> bool:
    """True if value needs no rounding to fit the currency precision."""
    return value == round_money(value, decimal_places)


def as_utc(value: datetime | None) -> datetime | None:
    """
    Attach UTC to a naive datetime read back from the database.

    Business times are always stored in UTC; SQLite drops the offset.
    """
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
