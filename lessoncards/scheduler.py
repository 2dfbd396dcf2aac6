from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Sequence, TypeVar


logger = logging.getLogger(__name__)

T = TypeVar('T')

Sleep = Callable[[float], Awaitable[Any]]


@dataclass(frozen=True)
class BatchPolicy:
    batch_size: int
    inter_batch_delay: float


@dataclass(frozen=True)
class TaskOutcome(Generic[T]):
    index: int
    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def run_batched(
    tasks: Sequence[Callable[[], Awaitable[T]]],
    batch_size: int,
    inter_batch_delay: float,
    *,
    sleep: Sleep = asyncio.sleep,
    label: str = 'tasks',
) -> list[TaskOutcome[T]]:
    """Run task factories in fixed-size concurrent groups.

    Each group is awaited as a whole before ``sleep(inter_batch_delay)`` and the
    next group. Exceptions are captured per task; results keep input order.
    """
    size = max(1, int(batch_size))
    delay = max(0.0, float(inter_batch_delay))
    outcomes: list[TaskOutcome[T]] = []
    total_batches = (len(tasks) + size - 1) // size

    for batch_index, start in enumerate(range(0, len(tasks), size)):
        group = tasks[start:start + size]
        logger.debug('Processing %s batch %d/%d (%d task(s))', label, batch_index + 1, total_batches, len(group))
        results = await asyncio.gather(*(factory() for factory in group), return_exceptions=True)
        for offset, result in enumerate(results):
            index = start + offset
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.warning('%s task %d failed: %s: %s', label, index, type(result).__name__, result)
                outcomes.append(TaskOutcome(index=index, error=result))
            else:
                outcomes.append(TaskOutcome(index=index, value=result))

        if batch_index < total_batches - 1 and delay > 0:
            await sleep(delay)

    return outcomes


async def run_with_policy(
    tasks: Sequence[Callable[[], Awaitable[T]]],
    policy: BatchPolicy,
    *,
    sleep: Sleep = asyncio.sleep,
    label: str = 'tasks',
) -> list[TaskOutcome[T]]:
    return await run_batched(
        tasks,
        policy.batch_size,
        policy.inter_batch_delay,
        sleep=sleep,
        label=label,
    )
