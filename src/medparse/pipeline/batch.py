"""Bounded-concurrency batch execution for backend calls."""

import asyncio
import logging
from typing import Awaitable, Callable, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def process_batch(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    concurrency: int,
) -> list[R]:
    """Run `worker` over `items` with at most `concurrency` calls in flight.

    A fixed pool of coroutines pulls the next index from a shared iterator,
    so results land at the index of their input whatever order calls finish in.

    Args:
        items: Inputs, one call each.
        worker: Coroutine function applied to every item.
        concurrency: Maximum number of concurrent calls.

    Returns:
        Results with `result[i]` produced from `items[i]`.

    Raises:
        ValueError: If concurrency is below 1.
        Exception: The first failure from any call. Remaining calls are
            cancelled and completed results are discarded.
    """
    if concurrency < 1:
        raise ValueError(f"concurrency must be >= 1, got {concurrency}")
    if not items:
        return []

    results: list = [None] * len(items)
    indices = iter(range(len(items)))

    async def run_worker() -> None:
        for index in indices:
            results[index] = await worker(items[index])

    pool_size = min(concurrency, len(items))
    logger.debug("Running batch of %d item(s) with %d worker(s)", len(items), pool_size)

    tasks = [asyncio.ensure_future(run_worker()) for _ in range(pool_size)]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise

    return results
