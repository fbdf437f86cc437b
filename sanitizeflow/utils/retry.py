from __future__ import annotations

import asyncio
import random
from typing import Awaitable, Callable, Optional

from ..config import RetryConfig

Sleep = Callable[[float], Awaitable[None]]


def compute_backoff(
    attempt: int,
    base: float = 1.0,
    jitter: float = 0.5,
    cap: Optional[float] = None,
) -> float:
    """Compute exponential backoff with jitter.

    ``attempt`` counts failed attempts so far, starting at 1.
    """
    delay = base * (2 ** max(attempt - 1, 0))
    if cap is not None:
        delay = min(delay, cap)
    return delay + random.uniform(0, jitter)


async def schedule_retry(
    attempt: int, policy: RetryConfig, sleep: Sleep = asyncio.sleep
) -> float:
    """Sleep for computed backoff delay before retrying."""
    delay = compute_backoff(
        attempt, base=policy.base_delay, jitter=policy.jitter, cap=policy.max_delay
    )
    await sleep(delay)
    return delay
