from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime


Clock = Callable[[], datetime]


def utcnow() -> datetime:
    # Columns are naive UTC DateTime(); keep comparisons in the same shape.
    return datetime.now(UTC).replace(tzinfo=None)
