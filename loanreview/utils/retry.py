from __future__ import annotations

import random


def compute_backoff(
    attempt: int, interval: float = 1.0, rate: float = 2.0, jitter: float = 0.5
) -> float:
    """Compute exponential backoff with jitter for the given retry ``attempt``."""
    delay = interval * rate ** attempt
    return delay + random.uniform(0, jitter)
