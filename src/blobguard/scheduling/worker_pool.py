"""Bounded-concurrency worker pool for batch storage passes.

Each item becomes an asyncio task gated by a semaphore; the synchronous per-item
work runs in a thread via asyncio.to_thread. Every task pushes a TaskOutcome
onto a queue drained by a single collector, so a failing item is recorded and
never cancels its siblings. Outcomes are returned in input order.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass(frozen=True)
class TaskOutcome(Generic[T, R]):
    """Result of processing one item.

    Attributes:
        index: Position of the item in the input sequence.
        item: The input item.
        result: Return value of the worker function (None on failure).
        error: Exception raised by the worker function (None on success).
    """

    index: int
    item: T
    result: R | None = None
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def run_bounded_async(
    items: Sequence[T],
    func: Callable[[T], R],
    max_concurrency: int,
) -> list[TaskOutcome[T, R]]:
    """Apply func to every item with at most max_concurrency in flight.

    Raises:
        ValueError: If max_concurrency is not positive.
    """
    if max_concurrency <= 0:
        raise ValueError("max_concurrency must be positive")
    if not items:
        return []

    semaphore = asyncio.Semaphore(max_concurrency)
    queue: asyncio.Queue[TaskOutcome[T, R]] = asyncio.Queue()

    async def worker(index: int, item: T) -> None:
        async with semaphore:
            try:
                result = await asyncio.to_thread(func, item)
            except Exception as e:
                logger.error("Worker item failed: index=%d error=%s", index, type(e).__name__)
                await queue.put(TaskOutcome(index=index, item=item, error=e))
            else:
                await queue.put(TaskOutcome(index=index, item=item, result=result))

    async def collector() -> list[TaskOutcome[T, R]]:
        collected: list[TaskOutcome[T, R]] = []
        while len(collected) < len(items):
            collected.append(await queue.get())
            queue.task_done()
        return collected

    collector_task = asyncio.create_task(collector())
    await asyncio.gather(*(worker(i, item) for i, item in enumerate(items)))
    outcomes = await collector_task
    outcomes.sort(key=lambda outcome: outcome.index)
    return outcomes


def run_bounded(
    items: Sequence[T],
    func: Callable[[T], R],
    max_concurrency: int,
) -> list[TaskOutcome[T, R]]:
    """Synchronous entry point: runs run_bounded_async on a fresh event loop.

    When called from a thread that already runs an event loop, the pass runs on
    its own loop in a helper thread and the caller blocks until it finishes.
    Async callers that must not block use run_bounded_async or asyncio.to_thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(run_bounded_async(items, func, max_concurrency))

    logger.debug("Event loop running; executing batch of %d on a helper thread", len(items))
    with ThreadPoolExecutor(max_workers=1, thread_name_prefix="blobguard-batch") as executor:
        future = executor.submit(asyncio.run, run_bounded_async(items, func, max_concurrency))
        return future.result()
