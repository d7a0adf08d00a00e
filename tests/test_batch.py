import logging

import pytest

from conftest import LEDGER, ORG, FakeLedgerClient, make_accounts
from ledger_workload.batch import create_transaction_batch, retry_delay, with_retry
from ledger_workload.circuit_breaker import CircuitBreaker, CircuitBreakerOptions
from ledger_workload.errors import BatchSubmissionError, CircuitOpenError, LedgerAPIError
from ledger_workload.helpers import build_deposit_request
from ledger_workload.models import BatchOptions


def deposits(n):
    return [build_deposit_request(acc, 100) for acc in make_accounts(*["BRL"] * n)]


class RecordingObserver:
    def __init__(self):
        self.successes = []
        self.errors = []

    def on_success(self, item, index, result, elapsed):
        self.successes.append((index, result.id))

    def on_error(self, item, index, error):
        self.errors.append((index, error))


def fail_times(n, error):
    calls = {"count": 0}

    def _fail(request):
        calls["count"] += 1
        if calls["count"] <= n:
            return error
        return None

    return _fail


def test_retry_delay_is_capped():
    assert [retry_delay(a) for a in (1, 2, 3, 5, 10)] == [0.2, 0.4, 0.8, 2.0, 2.0]


@pytest.mark.asyncio
async def test_transient_errors_are_retried(no_sleep):
    client = FakeLedgerClient(fail=fail_times(2, LedgerAPIError(503, "unavailable")))
    options = BatchOptions(concurrency=1, max_retries=3)

    result = await create_transaction_batch(client, ORG, LEDGER, deposits(1), options, sleep=no_sleep)

    assert result.success_count == 1 and result.failure_count == 0
    assert len(client.requests) == 3
    assert [c.args[0] for c in no_sleep.await_args_list] == [0.2, 0.4]


@pytest.mark.asyncio
async def test_client_errors_are_not_retried(no_sleep):
    client = FakeLedgerClient(fail=lambda req: LedgerAPIError(400, "bad request"))
    options = BatchOptions(concurrency=1, max_retries=3)

    result = await create_transaction_batch(client, ORG, LEDGER, deposits(1), options, sleep=no_sleep)

    assert result.failure_count == 1
    assert result.results[0].error == "400: bad request"
    assert len(client.requests) == 1
    no_sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_open_breaker_is_not_retried(clock, no_sleep):
    breaker = CircuitBreaker(CircuitBreakerOptions(failure_threshold=1, minimum_requests=1), clock=clock)
    client = FakeLedgerClient(fail=lambda req: LedgerAPIError(500, "down"))

    with pytest.raises(LedgerAPIError):
        await with_retry(lambda: client.create_transaction(ORG, LEDGER, None), max_retries=0, breaker=breaker)
    with pytest.raises(CircuitOpenError):
        await with_retry(
            lambda: client.create_transaction(ORG, LEDGER, None), max_retries=5, breaker=breaker, sleep=no_sleep
        )
    assert len(client.requests) == 1
    no_sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_observer_sees_every_item(no_sleep):
    failing = {"@user1", "@user3"}
    client = FakeLedgerClient(
        fail=lambda req: LedgerAPIError(422, "rejected") if req.operations[1].account_id in failing else None
    )
    observer = RecordingObserver()
    options = BatchOptions(concurrency=2, max_retries=0, observer=observer)

    result = await create_transaction_batch(client, ORG, LEDGER, deposits(5), options, sleep=no_sleep)

    assert result.success_count == 3 and result.failure_count == 2
    assert sorted(i for i, _ in observer.successes) == [0, 2, 4]
    assert sorted(i for i, _ in observer.errors) == [1, 3]
    assert [r.ok for r in result.results] == [True, False, True, False, True]


@pytest.mark.asyncio
async def test_observer_errors_do_not_break_the_batch(no_sleep, caplog):
    class Exploding:
        def on_success(self, *args):
            raise RuntimeError("observer bug")

        def on_error(self, *args):
            raise RuntimeError("observer bug")

    caplog.set_level(logging.ERROR, logger="ledger_workload")
    client = FakeLedgerClient()
    options = BatchOptions(concurrency=2, observer=Exploding())

    result = await create_transaction_batch(client, ORG, LEDGER, deposits(3), options, sleep=no_sleep)

    assert result.success_count == 3
    assert "observer on_success raised" in caplog.text


@pytest.mark.asyncio
async def test_stop_on_error_raises_with_partial_results(no_sleep):
    client = FakeLedgerClient(fail=lambda req: LedgerAPIError(400, "E1") if len(client.requests) == 2 else None)
    options = BatchOptions(concurrency=1, max_retries=0, stop_on_error=True)

    with pytest.raises(BatchSubmissionError) as info:
        await create_transaction_batch(client, ORG, LEDGER, deposits(5), options, sleep=no_sleep)

    results = info.value.results
    assert [r.ok for r in results] == [True, False]
    assert results[1].error == "400: E1"
    assert len(client.requests) == 2


@pytest.mark.asyncio
async def test_batch_metadata_reaches_every_request(no_sleep):
    client = FakeLedgerClient()
    options = BatchOptions(concurrency=2, batch_metadata={"batchId": "b-1", "type": "ignored"})

    await create_transaction_batch(client, ORG, LEDGER, deposits(3), options, sleep=no_sleep)

    assert all(r.metadata["batchId"] == "b-1" for r in client.requests)
    assert all(r.metadata["type"] == "deposit" for r in client.requests)


@pytest.mark.asyncio
async def test_delay_applies_after_first_round(no_sleep):
    client = FakeLedgerClient()
    options = BatchOptions(concurrency=2, delay_between_transactions=0.05)

    await create_transaction_batch(client, ORG, LEDGER, deposits(5), options, sleep=no_sleep)

    assert no_sleep.await_count == 3
    assert all(c.args[0] == 0.05 for c in no_sleep.await_args_list)
