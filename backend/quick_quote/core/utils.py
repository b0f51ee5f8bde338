# core/utils.py

import math
import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


def format_time(seconds: Optional[float]) -> str:
    """
    Formats a duration in seconds into a human-readable string (e.g., "1h 30m").

    Seconds are only shown for durations under an hour. Returns "N/A" for
    missing or negative input.
    """
    if seconds is None or not isinstance(seconds, (int, float)) or seconds < 0:
        return "N/A"
    if seconds == 0:
        return "0s"

    minutes, sec = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)

    parts = []
    if hours > 0:
        parts.append(f"{int(hours)}h")
    if minutes > 0:
        parts.append(f"{int(minutes)}m")
    if hours == 0 and sec > 0:
        parts.append(f"{int(math.ceil(sec))}s")
    return " ".join(parts) or "0s"


def to_decimal(value: Union[Decimal, float, int, str, None]) -> Decimal:
    """Converts a number to Decimal without inheriting binary float noise."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"Cannot convert non-finite value {value} to Decimal")
        return Decimal(repr(value))
    return Decimal(value)


def round_money(value: Decimal) -> Decimal:
    """Rounds to whole cents, half away from zero."""
    return to_decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)
