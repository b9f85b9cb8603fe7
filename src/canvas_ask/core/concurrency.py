"""Bounded-parallelism runner for independent async jobs.

Used by the related-notes search (document reads) and by context assembly
(node materialization). Results come back in submission order.
"""

import asyncio
import logging
import os
from typing import Awaitable, Callable, List, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Job = Callable[[], Awaitable[T]]

MIN_WORKERS = 2
MAX_WORKERS = 16


def get_concurrency(preferred: int, cpu_count: Optional[int] = None) -> int:
    """Pick a worker count from the caller's preference and the hardware.

    With a known CPU count the result is capped at twice the cores, kept
    within [2, 16], and never above `preferred` (except that it never drops
    below 2). Without a hint the preference is returned unchanged.

    Args:
        preferred: Concurrency the caller asked for
        cpu_count: Hardware hint (defaults to os.cpu_count())

    Returns:
        Effective concurrency limit
    """
    hint = os.cpu_count() if cpu_count is None else cpu_count
    if hint and hint > 0:
        hardware_cap = max(MIN_WORKERS, min(2 * hint, MAX_WORKERS))
        return max(MIN_WORKERS, min(preferred, hardware_cap))
    return preferred


async def run_with_concurrency(jobs: Sequence[Job[T]], limit: int = 6) -> List[T]:
    """Run zero-argument async jobs with at most `limit` outstanding.

    Workers share a cursor and claim the next unclaimed index until the list
    is exhausted. Job errors are not caught here: each job is expected to turn
    its own failures into a neutral result.

    Args:
        jobs: Zero-argument coroutine functions
        limit: Maximum number of concurrently running jobs

    Returns:
        Results indexed like `jobs`, regardless of completion order
    """
    if not jobs:
        return []

    results: List[Optional[T]] = [None] * len(jobs)
    cursor = 0

    async def worker() -> None:
        nonlocal cursor
        while True:
            idx = cursor
            if idx >= len(jobs):
                return
            cursor += 1
            results[idx] = await jobs[idx]()

    worker_count = max(1, min(limit, len(jobs)))
    logger.debug(f"Running {len(jobs)} jobs on {worker_count} workers")
    await asyncio.gather(*(worker() for _ in range(worker_count)))
    return results  # type: ignore[return-value]
