import asyncio
import logging
from collections.abc import Callable

import ledger_workload.constants as C
from ledger_workload.batch import Sleep, with_retry
from ledger_workload.circuit_breaker import CircuitBreaker
from ledger_workload.config import GenerationSettings
from ledger_workload.errors import UnbalancedTransactionError, format_error_message, is_conflict
from ledger_workload.generators import DepositGenerator, TransferGenerator
from ledger_workload.helpers import build_transfer_request
from ledger_workload.models import (
    AccountWithAsset,
    GenerationRequest,
    GenerationState,
    LedgerClient,
    ProgressCallback,
    Transaction,
)
from ledger_workload.progress import ProgressReporter
from ledger_workload.strategies import (
    AssetClassDepositStrategy,
    DepositStrategy,
    RandomTransferStrategy,
    TransferStrategy,
)
from ledger_workload.worker_pool import worker_pool

log = logging.getLogger("ledger_workload.orchestrator")

ReporterFactory = Callable[[str, int], ProgressReporter]


class TransactionOrchestrator:
    """Runs one generation pass against a ledger.

    Phases run strictly in order: validate, prepare accounts, deposits,
    settlement delay, transfers. Deposits always run before transfers so that
    transfer sources are funded.
    """

    def __init__(
        self,
        client: LedgerClient,
        state: GenerationState,
        *,
        settings: GenerationSettings | None = None,
        deposit_strategy: DepositStrategy | None = None,
        transfer_strategy: TransferStrategy | None = None,
        logger: logging.Logger | None = None,
        breaker: CircuitBreaker | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.client = client
        self.state = state
        self.settings = settings or GenerationSettings()
        self.log = logger or log
        self.breaker = breaker
        self._sleep = sleep
        self.deposit_strategy = deposit_strategy or AssetClassDepositStrategy()
        self.transfer_strategy = transfer_strategy or RandomTransferStrategy(scale=self.settings.scale)
        common = dict(settings=self.settings, logger=logger, breaker=breaker, sleep=sleep)
        self.deposits = DepositGenerator(client, state, strategy=self.deposit_strategy, **common)
        self.transfers = TransferGenerator(client, state, strategy=self.transfer_strategy, **common)
        self.phase: C.Phase | None = None
        self.reporter: ProgressReporter | None = None

    def _enter(self, phase: C.Phase, on_progress: ProgressCallback | None, total: int = 0) -> None:
        self.phase = phase
        self.log.debug("Entering phase %s", phase)
        if on_progress is not None:
            on_progress(phase, 0, total)

    def _start_reporter(self, factory: ReporterFactory | None, label: str, total: int) -> ProgressReporter | None:
        if factory is None:
            return None
        self.reporter = factory(label, total)
        self.reporter.start()
        return self.reporter

    @staticmethod
    def _stop_reporter(reporter: ProgressReporter | None) -> None:
        if reporter is not None:
            reporter.stop()

    async def generate_transactions(
        self,
        request: GenerationRequest,
        *,
        on_progress: ProgressCallback | None = None,
        reporter_factory: ReporterFactory | None = None,
    ) -> list[Transaction]:
        org, ledger = request.organization_id, request.ledger_id

        self._enter(C.Phase.VALIDATE, on_progress)
        if len(request.account_ids) < 2:
            self.log.warning(
                "Need at least 2 accounts to generate transactions in ledger %s, got %s",
                ledger,
                len(request.account_ids),
            )
            self.state.increment_error_count(C.TRANSACTION_ENTITY)
            self._enter(C.Phase.DONE, on_progress)
            return []

        self._enter(C.Phase.PREPARE_ACCOUNTS, on_progress, len(request.account_ids))
        accounts = await self.prepare_accounts(request)
        self.log.info("Prepared %s accounts in ledger %s", len(accounts), ledger)

        self._enter(C.Phase.GENERATE_DEPOSITS, on_progress, len(accounts))
        reporter = self._start_reporter(reporter_factory, "deposits", len(accounts))
        try:
            deposits = await self.deposits.generate(org, ledger, accounts, reporter=reporter, on_progress=on_progress)
        finally:
            self._stop_reporter(reporter)

        delay = self.settings.settlement_delay
        self._enter(C.Phase.SETTLEMENT_DELAY, on_progress)
        if delay > 0:
            self.log.info("Waiting %.1fs for deposits to settle", delay)
            await self._sleep(delay)

        transfers: list[Transaction] = []
        transfers_per_account = max(0, request.transactions_per_account - 1)
        if transfers_per_account > 0:
            total = len(accounts) * transfers_per_account
            self._enter(C.Phase.GENERATE_TRANSFERS, on_progress, total)
            reporter = self._start_reporter(reporter_factory, "transfers", total)
            try:
                transfers = await self.transfers.generate(
                    org,
                    ledger,
                    accounts,
                    transfers_per_account,
                    reporter=reporter,
                    on_progress=on_progress,
                )
            finally:
                self._stop_reporter(reporter)
        else:
            self.log.info("One transaction per account requested, skipping transfers")

        self._enter(C.Phase.DONE, on_progress)
        self.log.info(
            "Generated %s transactions in ledger %s (%s deposits, %s transfers)",
            len(deposits) + len(transfers),
            ledger,
            len(deposits),
            len(transfers),
        )
        return deposits + transfers

    async def prepare_accounts(self, request: GenerationRequest) -> list[AccountWithAsset]:
        """Resolve each account's asset code, falling back to what the state already knows."""
        org, ledger = request.organization_id, request.ledger_id
        indexes = list(range(len(request.account_ids)))

        async def _lookup(i: int) -> str:
            data = await self.client.get_account(org, ledger, request.account_ids[i])
            asset_code = data.get("assetCode")
            if not asset_code:
                raise ValueError(f"Account {request.account_ids[i]} has no asset code")
            return asset_code

        results = await worker_pool(
            indexes,
            _lookup,
            concurrency=min(self.settings.max_concurrency, C.MAX_LOOKUP_CONCURRENCY),
            preserve_order=True,
            continue_on_error=True,
        )

        accounts = []
        for i, result in zip(indexes, results):
            account_id = request.account_ids[i]
            if isinstance(result, Exception):
                asset_code = self.fallback_asset(ledger, account_id)
                self.log.warning(
                    "Could not look up account %s, using asset %s: %s",
                    account_id,
                    asset_code,
                    format_error_message(result),
                )
            else:
                asset_code = result
                self.state.set_account_asset(ledger, account_id, asset_code)
            accounts.append(
                AccountWithAsset(
                    account_id=account_id,
                    account_alias=request.alias_for(i),
                    asset_code=asset_code,
                    deposit_amount=self.deposit_strategy.calculate_amount(asset_code),
                )
            )
        return accounts

    def fallback_asset(self, ledger_id: str, account_id: str) -> str:
        if known := self.state.get_account_asset(ledger_id, account_id):
            return known
        if codes := self.state.get_asset_codes(ledger_id):
            return codes[0]
        return self.settings.default_asset_code

    async def create_single_transaction(
        self,
        organization_id: str,
        ledger_id: str,
        source: AccountWithAsset,
        target: AccountWithAsset,
    ) -> Transaction | None:
        if source.asset_code != target.asset_code:
            self.log.warning(
                "Cannot transfer between %s (%s) and %s (%s): asset codes differ",
                source.account_alias,
                source.asset_code,
                target.account_alias,
                target.asset_code,
            )
            self.state.increment_error_count(C.TRANSACTION_ENTITY)
            return None

        try:
            request = build_transfer_request(
                source,
                target,
                self.transfer_strategy.calculate_amount(source.asset_code),
                scale=self.settings.scale,
                metadata={"generator": "single-transaction"},
            )
        except UnbalancedTransactionError as e:
            self.log.warning("Refusing unbalanced transfer: %s", e)
            self.state.increment_error_count(C.TRANSACTION_ENTITY)
            return None

        try:
            txn = await with_retry(
                lambda: self.client.create_transaction(organization_id, ledger_id, request),
                max_retries=self.settings.transfers.max_retries,
                name=request.description,
                breaker=self.breaker,
                sleep=self._sleep,
            )
        except Exception as e:
            if is_conflict(e):
                self.log.warning(
                    "Transaction %s -> %s already exists in ledger %s",
                    source.account_alias,
                    target.account_alias,
                    ledger_id,
                )
                return None
            self.log.error(
                "Failed to create transaction %s -> %s in ledger %s: %s",
                source.account_alias,
                target.account_alias,
                ledger_id,
                format_error_message(e),
            )
            self.state.increment_error_count(C.TRANSACTION_ENTITY)
            raise

        self.state.add_transaction_id(ledger_id, txn.id)
        return txn
