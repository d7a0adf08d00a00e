import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

log = logging.getLogger("ledger_workload.worker_pool")

T = TypeVar("T")
R = TypeVar("R")


async def worker_pool(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    *,
    concurrency: int,
    preserve_order: bool = True,
    continue_on_error: bool = False,
) -> list[R | Exception]:
    """Run ``worker`` over ``items`` with at most ``concurrency`` calls in flight.

    With ``continue_on_error`` a failing item leaves its exception in the result
    list. Without it the first failure stops any further dispatch, lets the calls
    already in flight settle, and is then raised.
    """
    total = len(items)
    if total == 0:
        return []

    limit = max(1, min(concurrency, total))
    slots: list[R | Exception | None] = [None] * total
    completed: list[R | Exception] = []
    next_index = 0
    first_error: Exception | None = None

    async def _run_slot() -> None:
        nonlocal next_index, first_error
        while next_index < total and first_error is None:
            idx = next_index
            next_index += 1
            try:
                outcome: R | Exception = await worker(items[idx])
            except Exception as e:
                if not continue_on_error:
                    if first_error is None:
                        first_error = e
                    return
                log.debug("worker_pool item %s failed: %s", idx, e)
                outcome = e
            slots[idx] = outcome
            completed.append(outcome)

    async with asyncio.TaskGroup() as tg:
        for _ in range(limit):
            tg.create_task(_run_slot())

    if first_error is not None:
        raise first_error

    if preserve_order:
        return slots  # type: ignore[return-value]
    return completed
