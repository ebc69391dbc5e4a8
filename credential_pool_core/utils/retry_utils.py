"""
Retry helpers shared by upstream callers.
"""

import random


def calculate_backoff_delay(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    multiplier: float = 2.0,
    jitter: bool = False,
) -> float:
    """
    Calculate exponential backoff delay.

    Args:
        attempt: Attempt number that just failed (1-based)
        base_delay: Delay after the first failure, in seconds
        max_delay: Upper bound for the delay, in seconds
        multiplier: Growth factor per attempt
        jitter: Add up to 10% random jitter

    Returns:
        Delay in seconds, ``min(base_delay * multiplier ** (attempt - 1), max_delay)``
    """
    attempt = max(attempt, 1)
    delay = min(base_delay * (multiplier ** (attempt - 1)), max_delay)

    if jitter:
        delay += random.uniform(0, delay * 0.1)

    return delay
