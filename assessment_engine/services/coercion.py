"""Coercion of loosely-typed backend values.

The backend emits ids as numbers in one endpoint and strings in another,
dates as ISO strings, epoch numbers or Java LocalDateTime arrays, and
scores as numbers or numeric strings.  Every comparison in the engine goes
through these helpers so that drift never produces a crash or a false
match.  None of them raise.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

# Epoch values above this are treated as milliseconds (year 2286 in seconds).
_EPOCH_MS_THRESHOLD = 10_000_000_000


def field(record: Any, name: str) -> Any:
    """Read ``name`` from a mapping or an attribute object; None if absent."""
    if record is None:
        return None
    if isinstance(record, Mapping):
        return record.get(name)
    return getattr(record, name, None)


def canonical_id(value: Any) -> str | None:
    """Canonical string form of an id, or None when it cannot be a join key.

    7, 7.0 and "7" all become "7".  Booleans, blanks, NaN and containers
    are rejected.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            return None
        return str(int(value)) if value.is_integer() else repr(value)
    if isinstance(value, str):
        text = value.strip()
        return text or None
    if isinstance(value, UUID):
        return str(value)
    return None


def as_number(value: Any) -> int | float | None:
    """Numeric value of ``value`` (ints stay ints), or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
        if not math.isfinite(number):
            return None
        return int(number) if number.is_integer() and "." not in text else number
    return None


def as_bool(value: Any, default: bool = False) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        text = value.strip().lower()
        if text in ("true", "1", "yes", "y"):
            return True
        if text in ("false", "0", "no", "n"):
            return False
    return default


def parse_instant(value: Any) -> datetime | None:
    """Parse a backend timestamp into an aware UTC datetime.

    Accepts ISO-8601 strings (a trailing ``Z`` included), epoch seconds or
    milliseconds, numeric strings of either, and Java LocalDateTime arrays
    ``[year, month, day, hour, minute, second, nanos]``.  Naive values are
    taken to be UTC.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, (list, tuple)):
        return _from_parts(value)
    number = as_number(value)
    if number is not None:
        try:
            seconds = number / 1000 if abs(number) >= _EPOCH_MS_THRESHOLD else number
            return datetime.fromtimestamp(seconds, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return None


def _from_parts(parts: list[Any] | tuple[Any, ...]) -> datetime | None:
    if len(parts) < 3:
        return None
    ints: list[int] = []
    for part in parts[:7]:
        number = as_number(part)
        if number is None:
            return None
        ints.append(int(number))
    year, month, day, *rest = ints
    hour, minute, second, nanos = (rest + [0, 0, 0, 0])[:4]
    try:
        return datetime(
            year, month, day, hour, minute, second, nanos // 1000, tzinfo=UTC
        )
    except (ValueError, OverflowError):
        return None
