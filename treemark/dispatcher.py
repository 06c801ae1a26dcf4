"""
Bounded-concurrency batch driver shared by the liveness and enrichment phases
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, List, NamedTuple, Optional, Sequence, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Progress(NamedTuple):
    completed: int
    total: int
    percent: float


ProcessFn = Callable[[List[T]], Awaitable[None]]
ProgressFn = Callable[[Progress], None]
BatchErrorFn = Callable[[List[T], BaseException], None]


@dataclass
class DispatchStats:
    total: int = 0
    batches: int = 0
    completed: int = 0
    failed_batches: int = 0


def make_batches(items: Sequence[T], batch_size: int) -> List[List[T]]:
    batch_size = max(1, batch_size)
    return [list(items[i:i + batch_size]) for i in range(0, len(items), batch_size)]


class BatchDispatcher:
    """Runs process() over sequential batches with at most max_in_flight
    batches outstanding. A finished batch frees its slot immediately, the
    next queued batch does not wait for the rest of its cohort."""

    def __init__(self, batch_size: int, max_in_flight: int, pace_delay: float = 0.0):
        self.batch_size = max(1, batch_size)
        self.max_in_flight = max(1, max_in_flight)
        self.pace_delay = pace_delay

    async def run(
        self,
        items: Sequence[T],
        process: ProcessFn,
        on_progress: Optional[ProgressFn] = None,
        on_batch_error: Optional[BatchErrorFn] = None,
    ) -> DispatchStats:
        batches = make_batches(items, self.batch_size)
        stats = DispatchStats(total=len(items), batches=len(batches))

        if not batches:
            if on_progress:
                on_progress(Progress(0, 0, 100.0))
            return stats

        logger.info(f"Dispatching {len(batches)} batches of up to {self.batch_size} items, "
                    f"{self.max_in_flight} in flight")

        slots = asyncio.Semaphore(self.max_in_flight)

        async def _run_batch(index: int, batch: List[T]):
            try:
                await process(batch)
            except Exception as e:
                stats.failed_batches += 1
                logger.warning(f"Batch {index + 1}/{len(batches)} failed: {e}")
                if on_batch_error:
                    on_batch_error(batch, e)
            finally:
                stats.completed += len(batch)
                if on_progress:
                    percent = min(stats.completed / stats.total * 100, 100.0)
                    on_progress(Progress(stats.completed, stats.total, max(percent, 0.0)))
                if self.pace_delay:
                    await asyncio.sleep(self.pace_delay)
                slots.release()

        tasks = []
        for index, batch in enumerate(batches):
            await slots.acquire()
            tasks.append(asyncio.ensure_future(_run_batch(index, batch)))

        await asyncio.gather(*tasks)
        logger.info(f"Dispatch finished: {stats.completed}/{stats.total} items, "
                    f"{stats.failed_batches} failed batches")
        return stats
