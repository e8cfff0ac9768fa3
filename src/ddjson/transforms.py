"""Transform functions turning one raw value into a document fragment."""
from __future__ import annotations

import math
import numbers
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any

from ddjson.models import safe_repr

if TYPE_CHECKING:
    from ddjson.models import TransformFunction

__all__ = [
    "DURATION_MULTIPLIERS",
    "duration_nanosecond_transformer",
    "round_half_away_from_zero",
    "truncate_message_transformer",
]


# Nanoseconds per unit for each duration attribute.
DURATION_MULTIPLIERS: dict[str, int] = {
    "duration": 1_000_000_000,
    "duration_ms": 1_000_000,
    "duration_micros": 1_000,
    "duration_ns": 1,
}


def truncate_message_transformer(max_length: int | None) -> TransformFunction:
    """Return a transform placing the (optionally truncated) text under ``message``.

    Values that are not strings are rendered with :func:`repr` first. Truncation
    counts characters, not encoded bytes.
    """

    def transform(value: Any) -> dict[str, Any]:
        text = value if isinstance(value, str) else safe_repr(value)
        if max_length is not None and len(text) > max_length:
            text = text[:max_length]
        return {"message": text}

    return transform


def duration_nanosecond_transformer(multiplier: int) -> TransformFunction:
    """Return a transform converting a duration in some unit to whole nanoseconds."""

    def transform(value: Any) -> dict[str, Any]:
        return {"duration": _to_nanoseconds(value, multiplier)}

    return transform


def round_half_away_from_zero(value: numbers.Real | Decimal) -> int:
    """Round to the nearest integer, with ties moving away from zero."""
    if isinstance(value, numbers.Integral):
        return int(value)
    if isinstance(value, Decimal):
        return int(value.to_integral_value(rounding=ROUND_HALF_UP))
    return int(math.copysign(math.floor(abs(value) + 0.5), value))


def _to_nanoseconds(value: Any, multiplier: int) -> int | None:
    if isinstance(value, bool):
        return None
    if not isinstance(value, numbers.Real | Decimal):
        return None
    try:
        return round_half_away_from_zero(value * multiplier)
    except (ArithmeticError, InvalidOperation, ValueError):
        # NaN and infinities have no integral nanosecond value.
        return None

