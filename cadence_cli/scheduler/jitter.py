"""Jittered due-time calculation."""

import random
from datetime import datetime, timedelta
from typing import Optional


def jitter_bounds(base_minutes: int, variation_minutes: int) -> tuple[int, int]:
    """Inclusive minute range a jittered delay is drawn from.

    The lower bound never drops below zero, so a variation larger than
    the base interval makes the occurrence eligible immediately.

    Raises:
        ValueError: If base is not positive or variation is negative
    """
    if base_minutes <= 0:
        raise ValueError(f"base_minutes must be positive, got {base_minutes}")
    if variation_minutes < 0:
        raise ValueError(f"variation_minutes must be non-negative, got {variation_minutes}")
    return max(0, base_minutes - variation_minutes), base_minutes + variation_minutes


def jittered_delay(
    base_minutes: int,
    variation_minutes: int,
    rng: Optional[random.Random] = None,
) -> int:
    """Draw a delay in whole minutes, uniform over the jitter bounds."""
    low, high = jitter_bounds(base_minutes, variation_minutes)
    return (rng or random).randint(low, high)


def next_due_time(
    base_minutes: int,
    variation_minutes: int,
    now: datetime,
    rng: Optional[random.Random] = None,
) -> datetime:
    """Compute the next due time for an occurrence.

    Args:
        base_minutes: Base interval in minutes (positive)
        variation_minutes: Jitter bound in minutes (non-negative)
        now: Reference time
        rng: Random source (module-level ``random`` if not provided)

    Returns:
        ``now`` plus a delay drawn uniformly from
        ``[max(0, base - variation), base + variation]`` minutes
    """
    return now + timedelta(minutes=jittered_delay(base_minutes, variation_minutes, rng))
