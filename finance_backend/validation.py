"""Coercion helpers applied to every value entering the ledger.

None of these raise: malformed input is clamped or defaulted so that every
derived computation stays defined for whatever ends up stored.
"""

from __future__ import annotations

import re
import unicodedata
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

ZERO = Decimal("0")
MAX_AMOUNT = Decimal("999999999")
MIN_DATE = datetime(2000, 1, 1)
MAX_TAGS = 10

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")
_FORBIDDEN_KEYS = {"__proto__", "constructor", "prototype"}


def coerce_decimal(
    value: Any,
    minimum: Decimal = ZERO,
    maximum: Decimal = MAX_AMOUNT,
) -> Decimal:
    """Return a non-negative Decimal clamped to ``[minimum, maximum]``.

    Non-numeric and non-finite input becomes 0 before clamping; negative
    numbers are taken as magnitudes.
    """
    if isinstance(value, bool) or value is None:
        return ZERO
    try:
        number = value if isinstance(value, Decimal) else Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return ZERO
    if not number.is_finite():
        return ZERO
    number = abs(number)
    if number < minimum:
        return minimum
    if number > maximum:
        return maximum
    return number


def coerce_datetime(value: Any, now: datetime | None = None) -> datetime:
    """Parse ``value`` into a naive local datetime inside the accepted window.

    Unparseable input becomes ``now``; out-of-range dates snap to the nearest
    bound (2000-01-01 .. now + 10 years).
    """
    reference = now or datetime.now()
    parsed = _parse_datetime(value)
    if parsed is None:
        return reference
    upper = _add_years(reference, 10)
    if parsed < MIN_DATE:
        return MIN_DATE
    if parsed > upper:
        return upper
    return parsed


def optional_datetime(value: Any, now: datetime | None = None) -> datetime | None:
    if value is None or value == "":
        return None
    return coerce_datetime(value, now=now)


def sanitize_text(value: Any, max_length: int = 200) -> str:
    if not isinstance(value, str):
        return ""
    text = unicodedata.normalize("NFKC", _CONTROL_CHARS.sub("", value))
    text = text.replace("<", "").replace(">", "")
    return text[:max_length].strip()


def coerce_tags(value: Any) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple, set, frozenset)):
        return ()
    tags = []
    for item in value:
        if not isinstance(item, str):
            continue
        tag = sanitize_text(item, 50)
        if tag and tag not in tags:
            tags.append(tag)
    return tuple(tags[:MAX_TAGS])


def coerce_list(value: Any, max_length: int) -> list:
    if not isinstance(value, (list, tuple)):
        return []
    return list(value[:max_length])


def strip_forbidden_keys(value: Any, max_depth: int = 8) -> Any:
    """Drop prototype-pollution keys from nested payloads coming from JSON."""
    if max_depth <= 0:
        return None
    if isinstance(value, dict):
        return {
            key: strip_forbidden_keys(item, max_depth - 1)
            for key, item in value.items()
            if key not in _FORBIDDEN_KEYS
        }
    if isinstance(value, list):
        return [strip_forbidden_keys(item, max_depth - 1) for item in value]
    return value


def _parse_datetime(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            return None
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            parsed = datetime.fromtimestamp(value / 1000)
        except (OverflowError, OSError, ValueError):
            return None
    else:
        return None
    if parsed.tzinfo is not None:
        try:
            parsed = parsed.astimezone().replace(tzinfo=None)
        except (OverflowError, OSError, ValueError):
            return None
    return parsed


def _add_years(value: datetime, years: int) -> datetime:
    try:
        return value.replace(year=value.year + years)
    except ValueError:
        return value.replace(year=value.year + years, day=28)
