"""Retry delay calculation shared by the event dispatcher."""

import random
from datetime import datetime, timedelta


def calculate_exponential_backoff(
    retry_count: int,
    base_delay: int = 60,
    max_delay: int = 900,
    multiplier: float = 2.0,
    jitter: bool = True,
) -> int:
    """
    Calculate exponential backoff delay with jitter.

    Args:
        retry_count: Failed attempts so far, 0-based
        base_delay: Delay after the first failure, in seconds
        max_delay: Upper bound for the delay, in seconds
        multiplier: Growth factor between consecutive attempts
        jitter: Spread retries by ±25% so failed webhooks do not retry in lockstep

    Returns:
        Delay in seconds before next retry

    Example (base 60, no jitter):
        retry_count=0: 60s
        retry_count=1: 120s
        retry_count=2: 240s
        retry_count=3: 480s
        retry_count=4: 900s (capped at max_delay)
    """
    if retry_count < 0:
        return base_delay

    delay = min(base_delay * (multiplier**retry_count), max_delay)

    if jitter:
        jitter_range = delay * 0.25
        delay = delay + random.uniform(-jitter_range, jitter_range)

    # Never below the base delay, never above the cap
    return min(max(int(delay), base_delay), max_delay)


def next_retry_time(
    now: datetime,
    retry_count: int,
    base_delay: int = 60,
    max_delay: int = 900,
    jitter: bool = True,
) -> datetime:
    """Absolute time of the next attempt after ``retry_count`` failures."""
    delay = calculate_exponential_backoff(
        retry_count, base_delay=base_delay, max_delay=max_delay, jitter=jitter
    )
    return now + timedelta(seconds=delay)
