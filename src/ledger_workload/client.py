"""httpx client for the Midaz onboarding and transaction services."""

import logging
import uuid

import httpx

import ledger_workload.constants as C
from ledger_workload.errors import LedgerAPIError, LedgerConnectionError, format_error_message
from ledger_workload.models import Transaction, TransactionRequest

log = logging.getLogger("ledger_workload.client")


class MidazClient:
    def __init__(
        self,
        onboarding_url: str,
        transaction_url: str,
        *,
        token: str | None = None,
        timeout: float = C.RPC_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._onboarding = httpx.AsyncClient(
            base_url=onboarding_url, headers=headers, timeout=timeout, transport=transport
        )
        self._transaction = httpx.AsyncClient(
            base_url=transaction_url, headers=headers, timeout=timeout, transport=transport
        )

    async def __aenter__(self) -> "MidazClient":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._onboarding.aclose()
        await self._transaction.aclose()

    async def _request(self, http: httpx.AsyncClient, method: str, url: str, **kwargs) -> dict:
        headers = {"X-Request-Id": str(uuid.uuid4()), **kwargs.pop("headers", {})}
        try:
            r = await http.request(method, url, headers=headers, **kwargs)
        except httpx.TransportError as e:
            log.debug("%s %s transport error: %s", method, url, e)
            raise LedgerConnectionError(f"{method} {url}: {type(e).__name__}: {e}") from e

        if r.is_error:
            try:
                body = r.json()
            except ValueError:
                body = r.text
            message = format_error_message(body) if body else r.reason_phrase
            log.debug("%s %s -> %s %s", method, url, r.status_code, message)
            raise LedgerAPIError(r.status_code, message, body)
        return r.json() if r.content else {}

    async def get_account(self, organization_id: str, ledger_id: str, account_id: str) -> dict:
        url = f"/v1/organizations/{organization_id}/ledgers/{ledger_id}/accounts/{account_id}"
        return await self._request(self._onboarding, "GET", url)

    async def create_transaction(
        self, organization_id: str, ledger_id: str, request: TransactionRequest
    ) -> Transaction:
        url = f"/v1/organizations/{organization_id}/ledgers/{ledger_id}/transactions/json"
        data = await self._request(
            self._transaction,
            "POST",
            url,
            json=request.to_payload(),
            headers={"Idempotency-Key": str(uuid.uuid4())},
        )
        return Transaction.from_response(data)
