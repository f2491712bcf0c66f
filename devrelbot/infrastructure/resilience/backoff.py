"""Exponential backoff with jitter.

Pure function with an injectable random source, so callers and tests can
reason about exact bounds.
"""

import random
from typing import Callable, Optional

RandomSource = Callable[[], float]


def backoff_delay_ms(
    retry_number: int,
    base_delay_ms: float,
    max_delay_ms: Optional[float] = None,
    rng: RandomSource = random.random,
) -> float:
    """Delay to wait before retry number `retry_number` (1-based).

    The delay is base_delay_ms * 2**(retry_number - 1) plus a jitter drawn
    uniformly from [0, base_delay_ms], capped at max_delay_ms.

    Args:
        retry_number: 1 for the first retry (i.e. before the second attempt).
        base_delay_ms: Base delay; also the jitter range.
        max_delay_ms: Optional upper bound on the returned delay.
        rng: Returns a float in [0, 1).

    Returns:
        The delay in milliseconds.
    """
    if retry_number < 1:
        raise ValueError("retry_number must be >= 1")
    if base_delay_ms < 0:
        raise ValueError("base_delay_ms must be >= 0")
    delay = base_delay_ms * (2 ** (retry_number - 1)) + rng() * base_delay_ms
    if max_delay_ms is not None:
        delay = min(delay, max_delay_ms)
    return delay
