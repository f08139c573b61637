"""Backoff helpers shared by the generation and post-processing steps."""

import random
from collections.abc import Awaitable, Callable

Sleeper = Callable[[float], Awaitable[None]]
Jitter = Callable[[float, float], float]

MAX_JITTER_SECONDS = 2.0


def backoff_delay(attempt: int, jitter: Jitter = random.uniform) -> float:
    """Exponential backoff with jitter: 2^attempt seconds plus up to 2s."""
    return float(2**attempt) + jitter(0.0, MAX_JITTER_SECONDS)
