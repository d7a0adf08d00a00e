import json

import httpx
import pytest

from conftest import LEDGER, ORG, make_accounts
from ledger_workload.client import MidazClient
from ledger_workload.errors import LedgerAPIError, LedgerConnectionError
from ledger_workload.helpers import build_transfer_request


def make_client(handler, **kwargs):
    return MidazClient(
        "http://onboarding.test",
        "http://transaction.test",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_create_transaction_posts_json_body():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"id": "txn-1", "assetCode": "USD", "status": {"code": "APPROVED"}})

    source, target = make_accounts("USD", "USD")
    req = build_transfer_request(source, target, 150)

    async with make_client(handler, token="secret") as client:
        txn = await client.create_transaction(ORG, LEDGER, req)

    assert txn.id == "txn-1"
    assert txn.status == "APPROVED"
    assert seen["url"] == f"http://transaction.test/v1/organizations/{ORG}/ledgers/{LEDGER}/transactions/json"
    assert seen["headers"]["Authorization"] == "Bearer secret"
    assert seen["headers"]["Idempotency-Key"]
    assert seen["headers"]["X-Request-Id"]
    assert seen["body"]["assetCode"] == "USD"
    assert [op["type"] for op in seen["body"]["operations"]] == ["DEBIT", "CREDIT"]


@pytest.mark.asyncio
async def test_get_account_uses_onboarding_service():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.host == "onboarding.test"
        assert request.url.path == f"/v1/organizations/{ORG}/ledgers/{LEDGER}/accounts/acc-1"
        return httpx.Response(200, json={"id": "acc-1", "assetCode": "BRL"})

    async with make_client(handler) as client:
        data = await client.get_account(ORG, LEDGER, "acc-1")

    assert data["assetCode"] == "BRL"


@pytest.mark.asyncio
async def test_conflict_response_raises_api_error():
    def handler(request):
        return httpx.Response(409, json={"code": "0084", "message": "Transaction already exists"})

    source, target = make_accounts("USD", "USD")
    async with make_client(handler) as client:
        with pytest.raises(LedgerAPIError) as info:
            await client.create_transaction(ORG, LEDGER, build_transfer_request(source, target, 1))

    assert info.value.status_code == 409
    assert info.value.is_conflict
    assert not info.value.is_retryable
    assert info.value.message == "Transaction already exists"


@pytest.mark.asyncio
async def test_server_errors_are_retryable():
    def handler(request):
        return httpx.Response(503, text="")

    async with make_client(handler) as client:
        with pytest.raises(LedgerAPIError) as info:
            await client.get_account(ORG, LEDGER, "acc-1")

    assert info.value.is_retryable
    assert info.value.message == "Service Unavailable"


@pytest.mark.asyncio
async def test_transport_failures_become_connection_errors():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with make_client(handler) as client:
        with pytest.raises(LedgerConnectionError, match="connection refused"):
            await client.get_account(ORG, LEDGER, "acc-1")
