from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional, Sequence

from ..contracts import utcnow

DEFAULT_RETRY_DELAYS = (1.0, 2.0, 4.0, 8.0)


def retry_delay(attempt: int, delays: Sequence[float] = DEFAULT_RETRY_DELAYS) -> float:
    """Seconds to wait after failed ``attempt`` (1-based) before retrying.

    Attempts beyond the ladder reuse its last entry.
    """
    if not delays:
        return 0.0
    index = min(max(attempt, 1), len(delays)) - 1
    return float(delays[index])


def next_retry_at(
    attempt: int,
    delays: Sequence[float] = DEFAULT_RETRY_DELAYS,
    now: Optional[datetime] = None,
) -> datetime:
    """Wall-clock time of the retry that follows failed ``attempt``."""
    return (now or utcnow()) + timedelta(seconds=retry_delay(attempt, delays))
