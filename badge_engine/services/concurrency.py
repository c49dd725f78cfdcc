"""
Batched concurrency helpers.
"""

import asyncio
from typing import Awaitable, Callable, Iterable, List, Sequence, TypeVar


T = TypeVar("T")
R = TypeVar("R")


async def gather_or_cancel(aws: Iterable[Awaitable[R]]) -> List[R]:
    """gather() that cancels the remaining siblings as soon as one fails."""
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


def chunked(items: Sequence[T], size: int) -> List[Sequence[T]]:
    return [items[i:i + size] for i in range(0, len(items), size)]


async def run_in_batches(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    batch_size: int,
    delay: float = 0.0,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> List[R]:
    """
    Run worker over items in fixed-size concurrent batches.

    Batches run in submission order with a pacing delay between them.
    Results come back in input order.
    """
    results: List[R] = []
    batches = chunked(items, batch_size)
    for index, batch in enumerate(batches):
        results.extend(await gather_or_cancel(worker(item) for item in batch))
        if delay and index < len(batches) - 1:
            await sleep(delay)
    return results
