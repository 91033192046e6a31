from __future__ import annotations

import random
from datetime import datetime, timedelta


def compute_backoff(attempt: int, base: float = 1.5, jitter: float = 0.5) -> float:
    """Compute exponential backoff with jitter, in seconds."""
    delay = base ** attempt
    return delay + random.uniform(0, jitter) if jitter else delay


def retry_not_before(
    started_at: datetime, attempt: int, base: float, jitter: float = 0.0
) -> datetime:
    """Earliest time a step attempted ``attempt`` times may be dispatched again."""
    return started_at + timedelta(seconds=compute_backoff(attempt, base, jitter))
