# backend/app/workers/backoff.py
from __future__ import annotations

import random


def backoff_seconds(retries: int, *, base: int = 5, cap: int = 120) -> int:
    """
    Exponential backoff with jitter.
    retries is the current retry count (0 for first retry attempt).
    """
    base = max(1, int(base or 1))
    cap = max(base, int(cap or base))

    delay = min(cap, base * (2 ** max(0, int(retries))))

    # jitter: +/- 20%
    jitter = int(delay * 0.2)
    if jitter > 0:
        delay = max(1, delay + random.randint(-jitter, jitter))
    return delay
