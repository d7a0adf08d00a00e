from unittest.mock import AsyncMock

import pytest

from ledger_workload.config import BatchSettings, GenerationSettings
from ledger_workload.errors import LedgerAPIError
from ledger_workload.models import AccountWithAsset, Transaction
from ledger_workload.state import InMemoryGenerationState

ORG = "org-1"
LEDGER = "ledger-1"


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLedgerClient:
    """In-memory ledger: accounts map id -> asset code, ``fail`` maps a request to an error."""

    def __init__(self, assets=None, fail=None):
        self.assets = dict(assets or {})
        self.fail = fail
        self.requests = []
        self.lookups = []

    async def get_account(self, organization_id, ledger_id, account_id):
        self.lookups.append(account_id)
        if account_id not in self.assets:
            raise LedgerAPIError(404, f"account {account_id} not found")
        return {"id": account_id, "assetCode": self.assets[account_id]}

    async def create_transaction(self, organization_id, ledger_id, request):
        self.requests.append(request)
        if self.fail is not None and (err := self.fail(request)) is not None:
            raise err
        return Transaction(
            id=f"txn-{len(self.requests)}",
            description=request.description,
            asset_code=request.asset_code,
            amount=request.amount,
            status="APPROVED",
        )


def make_accounts(*assets: str) -> list[AccountWithAsset]:
    return [
        AccountWithAsset(account_id=f"acc-{i:04d}", account_alias=f"@user{i}", asset_code=asset)
        for i, asset in enumerate(assets)
    ]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def state():
    return InMemoryGenerationState()


@pytest.fixture
def no_sleep():
    return AsyncMock()


@pytest.fixture
def fast_settings():
    return GenerationSettings(
        settlement_delay=3.0,
        deposits=BatchSettings(max_retries=0, delay_between_transactions=0.0),
        transfers=BatchSettings(max_retries=0, delay_between_transactions=0.0),
    )
