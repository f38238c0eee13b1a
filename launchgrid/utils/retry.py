from __future__ import annotations

import asyncio
import random
from typing import Callable, Optional

Backoff = Callable[[int], float]


def compute_backoff(
    attempt: int, base: float = 1.5, jitter: float = 0.5, scale: float = 1.0
) -> float:
    """Compute exponential backoff with jitter."""
    delay = scale * base ** attempt
    return delay + random.uniform(0, jitter)


async def schedule_retry(attempt: int, backoff: Optional[Backoff] = None) -> None:
    """Sleep for computed backoff delay before retrying."""
    delay = (backoff or compute_backoff)(attempt)
    if delay > 0:
        await asyncio.sleep(delay)
