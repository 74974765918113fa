"""
Bounded-concurrency batch runner with per-item error collection
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')
R = TypeVar('R')


@dataclass
class BatchOutcome(Generic[T, R]):
    """Result of one item: value on success, error otherwise"""
    item: T
    value: Optional[R] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def map_with_concurrency(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    concurrency: int = 3
) -> List[BatchOutcome]:
    """
    Run worker over items with at most `concurrency` in flight.

    Workers pull the next index from a shared cursor, so completion order is
    unconstrained but outcomes are returned in input order. A failing item is
    recorded on its outcome and never stops the rest of the batch.
    """
    outcomes: List[Optional[BatchOutcome]] = [None] * len(items)
    cursor = 0

    async def run_worker():
        nonlocal cursor
        while cursor < len(items):
            index = cursor
            cursor += 1
            item = items[index]
            try:
                outcomes[index] = BatchOutcome(item=item, value=await worker(item))
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.debug(f"Batch item {item!r} failed: {e}")
                outcomes[index] = BatchOutcome(item=item, error=e)

    width = max(1, min(int(concurrency), len(items)))
    if items:
        await asyncio.gather(*(run_worker() for _ in range(width)))
    return outcomes
