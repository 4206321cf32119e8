from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation


def to_decimal(value: object) -> Decimal | None:
    """Return a finite Decimal for numeric-looking input, else None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        result = value
    else:
        text = str(value).strip()
        if not text or text.lower() in {"null", "none"}:
            return None
        try:
            result = Decimal(text)
        except (InvalidOperation, ValueError):
            return None
    if not result.is_finite():
        return None
    return result


def to_float(value: object) -> float | None:
    if value in (None, "", "null"):
        return None
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def format_fixed(value: object, decimals: int) -> str:
    """Fixed-point string rounded half-up, keeping trailing zeros ("0.020")."""
    number = to_decimal(value)
    if number is None:
        raise ValueError(f"not a finite number: {value!r}")
    decimals = max(0, int(decimals))
    step = Decimal(1).scaleb(-decimals)
    rounded = number.quantize(step, rounding=ROUND_HALF_UP)
    if rounded == 0:
        rounded = abs(rounded)
    return f"{rounded:.{decimals}f}"


def strip_trailing_zeros(value: object) -> str:
    """Canonical decimal text: "12345.0" -> "12345", "0.1000" -> "0.1", "-0" -> "0"."""
    number = to_decimal(value)
    if number is None:
        raise ValueError(f"not a finite number: {value!r}")
    if number == 0:
        return "0"
    text = f"{number:f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def round_significant(value: Decimal, figures: int) -> Decimal:
    if value == 0:
        return value
    exponent = value.adjusted() - figures + 1
    return value.quantize(Decimal(1).scaleb(exponent), rounding=ROUND_HALF_UP)
