from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from .clock import utcnow


def compute_backoff(attempt: int, delay: float, multiplier: float = 1.0) -> float:
    """Compute the delay before retry ``attempt`` (1-based)."""
    return delay * multiplier ** max(0, attempt - 1)


def compute_retry_at(
    attempt: int,
    delay: float,
    multiplier: float = 1.0,
    now: Optional[datetime] = None,
) -> datetime:
    """Return the time at which retry ``attempt`` becomes due."""
    return (now or utcnow()) + timedelta(seconds=compute_backoff(attempt, delay, multiplier))
