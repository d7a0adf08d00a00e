"""Bounded-concurrency batch submission of transaction requests.

Each request is retried on transient failures, optionally through a shared
circuit breaker, and reported to the batch observer as it settles.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from time import perf_counter
from typing import TypeVar

import ledger_workload.constants as C
from ledger_workload.circuit_breaker import CircuitBreaker
from ledger_workload.errors import BatchSubmissionError, format_error_message, is_retryable
from ledger_workload.models import (
    BatchItemResult,
    BatchOptions,
    BatchResult,
    LedgerClient,
    Transaction,
    TransactionRequest,
)
from ledger_workload.worker_pool import worker_pool

log = logging.getLogger("ledger_workload.batch")

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


def retry_delay(attempt: int) -> float:
    return min(C.RETRY_BASE_DELAY * 2**attempt, C.RETRY_MAX_DELAY)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    max_retries: int,
    name: str = "operation",
    breaker: CircuitBreaker | None = None,
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Run ``operation`` up to ``1 + max_retries`` times.

    An open breaker and non-retryable errors (4xx, unbalanced requests) end the
    loop immediately; the last error is raised unchanged.
    """
    attempt = 0
    while True:
        try:
            if breaker is not None:
                return await breaker.execute(operation)
            return await operation()
        except Exception as e:
            if attempt >= max_retries or not is_retryable(e):
                raise
            attempt += 1
            delay = retry_delay(attempt)
            log.debug("Retry %s/%s for %s after %.2fs: %s", attempt, max_retries, name, delay, e)
            await sleep(delay)


async def create_transaction_batch(
    client: LedgerClient,
    organization_id: str,
    ledger_id: str,
    requests: Sequence[TransactionRequest],
    options: BatchOptions,
    *,
    breaker: CircuitBreaker | None = None,
    sleep: Sleep = asyncio.sleep,
) -> BatchResult:
    items = [req.with_metadata(options.batch_metadata) for req in requests]
    slots: list[BatchItemResult | None] = [None] * len(items)
    observer = options.observer
    concurrency = max(1, options.concurrency)

    async def _submit(index: int) -> BatchItemResult:
        req = items[index]
        if options.delay_between_transactions > 0 and index >= concurrency:
            await sleep(options.delay_between_transactions)

        started = perf_counter()
        try:
            txn: Transaction = await with_retry(
                lambda: client.create_transaction(organization_id, ledger_id, req),
                max_retries=options.max_retries,
                name=req.description,
                breaker=breaker,
                sleep=sleep,
            )
        except Exception as e:
            item = BatchItemResult(status=C.ItemStatus.FAILED, error=format_error_message(e))
            slots[index] = item
            if observer is not None:
                try:
                    observer.on_error(req, index, e)
                except Exception:
                    log.exception("Batch observer on_error raised for item %s", index)
            if options.stop_on_error:
                raise
            return item

        item = BatchItemResult(status=C.ItemStatus.SUCCESS, transaction=txn)
        slots[index] = item
        if observer is not None:
            try:
                observer.on_success(req, index, txn, perf_counter() - started)
            except Exception:
                log.exception("Batch observer on_success raised for item %s", index)
        return item

    try:
        await worker_pool(
            range(len(items)),
            _submit,
            concurrency=concurrency,
            preserve_order=True,
            continue_on_error=not options.stop_on_error,
        )
    except Exception as e:
        settled = [s for s in slots if s is not None]
        raise BatchSubmissionError(
            f"Batch stopped after {len(settled)}/{len(items)} items: {format_error_message(e)}",
            results=settled,
        ) from e

    result = BatchResult(results=[s for s in slots if s is not None])
    result.success_count = sum(1 for r in result.results if r.ok)
    result.failure_count = len(result.results) - result.success_count
    log.debug(
        "Batch of %s in ledger %s: %s ok, %s failed",
        len(items),
        ledger_id,
        result.success_count,
        result.failure_count,
    )
    return result
