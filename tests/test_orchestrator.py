import pytest

from conftest import LEDGER, ORG, FakeLedgerClient, make_accounts
from ledger_workload.errors import LedgerAPIError
from ledger_workload.models import GenerationRequest
from ledger_workload.orchestrator import TransactionOrchestrator
from ledger_workload.progress import ProgressReporter


def request_for(ids, tpa=1, aliases=None):
    return GenerationRequest(
        organization_id=ORG,
        ledger_id=LEDGER,
        account_ids=list(ids),
        account_aliases=list(aliases or [f"@{i}" for i in ids]),
        transactions_per_account=tpa,
    )


@pytest.fixture
def orchestrator_for(state, fast_settings, no_sleep):
    def _make(client, **kwargs):
        return TransactionOrchestrator(client, state, settings=fast_settings, sleep=no_sleep, **kwargs)

    return _make


@pytest.mark.asyncio
async def test_fewer_than_two_accounts_is_rejected(orchestrator_for, state):
    client = FakeLedgerClient({"a1": "BRL"})
    orch = orchestrator_for(client)

    assert await orch.generate_transactions(request_for(["a1"], tpa=5)) == []
    assert state.error_count("transaction") == 1
    assert client.lookups == []
    assert client.requests == []


@pytest.mark.asyncio
async def test_deposits_then_settlement_then_transfers(orchestrator_for, no_sleep):
    client = FakeLedgerClient({f"a{i}": "BRL" for i in range(4)})
    orch = orchestrator_for(client)
    phases = []

    txns = await orch.generate_transactions(
        request_for([f"a{i}" for i in range(4)], tpa=3),
        on_progress=lambda phase, done, total: phases.append(phase),
    )

    assert len(txns) == 12
    kinds = [r.metadata["type"] for r in client.requests]
    assert kinds[:4] == ["deposit"] * 4
    assert kinds[4:] == ["transfer"] * 8
    no_sleep.assert_any_await(3.0)
    order = [p for i, p in enumerate(phases) if i == 0 or phases[i - 1] != p]
    assert order == [
        "validate",
        "prepare_accounts",
        "generate_deposits",
        "settlement_delay",
        "generate_transfers",
        "done",
    ]


@pytest.mark.asyncio
async def test_one_transaction_per_account_skips_transfers(orchestrator_for):
    client = FakeLedgerClient({"a1": "USD", "a2": "USD"})
    orch = orchestrator_for(client)

    txns = await orch.generate_transactions(request_for(["a1", "a2"], tpa=1))

    assert len(txns) == 2
    assert all(r.metadata["type"] == "deposit" for r in client.requests)


@pytest.mark.asyncio
async def test_lookup_failures_fall_back_to_known_assets(orchestrator_for, state):
    client = FakeLedgerClient({"a1": "USD", "a2": "USD"})
    state.set_account_asset(LEDGER, "a3", "GOLD")
    orch = orchestrator_for(client)

    accounts = await orch.prepare_accounts(request_for(["a1", "a2", "a3", "a4"]))

    assert [a.asset_code for a in accounts] == ["USD", "USD", "GOLD", "GOLD"]
    assert accounts[2].deposit_amount == 500_000
    assert state.get_account_asset(LEDGER, "a1") == "USD"


@pytest.mark.asyncio
async def test_lookup_failure_without_state_uses_default_asset(orchestrator_for):
    orch = orchestrator_for(FakeLedgerClient())

    accounts = await orch.prepare_accounts(request_for(["x1", "x2"], aliases=["@x1", ""]))

    assert [a.asset_code for a in accounts] == ["BRL", "BRL"]
    assert [a.account_alias for a in accounts] == ["@x1", "x2"]


@pytest.mark.asyncio
async def test_reporters_are_created_per_phase(orchestrator_for, clock):
    created = []

    def factory(label, total):
        reporter = ProgressReporter(label, total, clock=clock)
        created.append(reporter)
        return reporter

    client = FakeLedgerClient({"a1": "BRL", "a2": "BRL"})
    orch = orchestrator_for(client)
    await orch.generate_transactions(request_for(["a1", "a2"], tpa=2), reporter_factory=factory)

    assert [r.label for r in created] == ["deposits", "transfers"]
    assert all(r.is_complete() for r in created)


@pytest.mark.asyncio
async def test_single_transaction_with_mismatched_assets(orchestrator_for, state):
    client = FakeLedgerClient()
    orch = orchestrator_for(client)
    source, target = make_accounts("USD", "BRL")

    assert await orch.create_single_transaction(ORG, LEDGER, source, target) is None
    assert state.error_count("transaction") == 1
    assert client.requests == []


@pytest.mark.asyncio
async def test_single_transaction_records_id(orchestrator_for, state):
    client = FakeLedgerClient()
    orch = orchestrator_for(client)
    source, target = make_accounts("USD", "USD")

    txn = await orch.create_single_transaction(ORG, LEDGER, source, target)

    assert txn is not None
    assert state.transaction_ids(LEDGER) == [txn.id]
    assert client.requests[0].metadata["type"] == "transfer"


@pytest.mark.asyncio
async def test_single_transaction_conflict_returns_none(orchestrator_for, state):
    client = FakeLedgerClient(fail=lambda req: LedgerAPIError(409, "Transaction already exists"))
    orch = orchestrator_for(client)
    source, target = make_accounts("USD", "USD")

    assert await orch.create_single_transaction(ORG, LEDGER, source, target) is None
    assert state.error_count("transaction") == 0


@pytest.mark.asyncio
async def test_single_transaction_other_errors_are_raised(orchestrator_for, state):
    client = FakeLedgerClient(fail=lambda req: LedgerAPIError(400, "invalid amount"))
    orch = orchestrator_for(client)
    source, target = make_accounts("USD", "USD")

    with pytest.raises(LedgerAPIError, match="invalid amount"):
        await orch.create_single_transaction(ORG, LEDGER, source, target)
    assert state.error_count("transaction") == 1


@pytest.mark.asyncio
async def test_transfer_reporter_completes_with_lone_asset(orchestrator_for, clock):
    created = {}
    totals = []

    def factory(label, total):
        created[label] = ProgressReporter(label, total, clock=clock)
        return created[label]

    def on_progress(phase, done, total):
        if phase == "generate_transfers":
            totals.append(total)

    client = FakeLedgerClient({"a1": "BRL", "a2": "BRL", "a3": "USD"})
    orch = orchestrator_for(client)
    await orch.generate_transactions(
        request_for(["a1", "a2", "a3"], tpa=2), reporter_factory=factory, on_progress=on_progress
    )

    m = created["transfers"].get_metrics()
    assert (m.total_items, m.completed_items, m.skipped_items) == (3, 2, 1)
    assert created["transfers"].is_complete()
    assert set(totals) == {3}
