from __future__ import annotations

import math
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any


MONEY_QUANT = Decimal("0.01")

# Maximum price: 9,999,999,999.99 (Numeric(12, 2))
MAX_MONEY = Decimal("9999999999.99")


class ValidationError(ValueError):
    """400-level input problem."""


class NotFoundError(LookupError):
    """404-level: referenced order/business/item does not exist."""


def to_money(value: Any) -> Decimal:
    """Coerce a stored numeric (Decimal/float/int/None) into a 2dp Decimal."""
    if value is None:
        return Decimal("0.00")
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def parse_number(value: Any, field: str) -> Decimal | None:
    """
    Parse a merchant-supplied numeric field.

    - None / "" -> None (field not supplied)
    - "1 200,50" -> Decimal("1200.50")
    - bool, non-numeric text, NaN and infinities -> ValidationError
    """
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number")
    if isinstance(value, (int, Decimal)):
        number = Decimal(value)
    elif isinstance(value, float):
        if not math.isfinite(value):
            raise ValidationError(f"{field} must be a finite number")
        number = Decimal(str(value))
    else:
        text = str(value).strip().replace(" ", "").replace("\u00a0", "").replace(",", ".")
        if not text:
            return None
        try:
            number = Decimal(text)
        except InvalidOperation:
            raise ValidationError(f"{field} must be a number, got {value!r}")

    if not number.is_finite():
        raise ValidationError(f"{field} must be a finite number")
    return number


def parse_int(value: Any, field: str) -> int | None:
    number = parse_number(value, field)
    if number is None:
        return None
    if number != number.to_integral_value():
        raise ValidationError(f"{field} must be an integer")
    return int(number)


def to_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text if text else None
