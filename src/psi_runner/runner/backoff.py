"""Exponential backoff with jitter for re-queued tasks."""

from __future__ import annotations

import random


#: Upper bound of the random jitter, as a fraction of the capped delay.
JITTER_FRACTION: float = 0.25


def compute_backoff(
    attempt: int,
    *,
    base_seconds: float,
    max_seconds: float,
    rng: random.Random | None = None,
) -> float:
    """Return the cooldown before a task may be claimed for another attempt.

    The delay doubles with every failed attempt: ``base * 2 ** (attempt - 1)``,
    capped at ``max_seconds``.  Up to :data:`JITTER_FRACTION` of the capped
    delay is added at random so that tasks failing together do not all come
    back together.

    Args:
        attempt: Failed attempts so far, including the one just made (>= 1).
        base_seconds: Delay after the first failure.
        max_seconds: Cap applied before jitter.
        rng: Random source.  ``None`` uses the module-level generator.

    Returns:
        Delay in seconds, never negative.
    """
    if attempt < 1:
        raise ValueError(f"attempt must be >= 1, got {attempt}")
    # Exponent clamp keeps the float product finite for absurd retry budgets.
    delay = min(base_seconds * (2 ** min(attempt - 1, 32)), max_seconds)
    delay = max(delay, 0.0)
    jitter = (rng or random).uniform(0.0, delay * JITTER_FRACTION)
    return delay + jitter
