"""Deposit and transfer generators.

Both follow the same shape: partition accounts by asset code, size each
partition's concurrency from the global budget, build balanced two-leg requests,
submit one batch per partition, then count failures once per distinct message.
A failing partition is logged and counted but never stops the others.
"""

import asyncio
import logging
import time
import uuid
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, field

import ledger_workload.constants as C
from ledger_workload.batch import Sleep, create_transaction_batch
from ledger_workload.circuit_breaker import CircuitBreaker
from ledger_workload.config import BatchSettings, GenerationSettings
from ledger_workload.errors import UnbalancedTransactionError, format_error_message
from ledger_workload.helpers import (
    build_deposit_request,
    build_transfer_request,
    calculate_optimal_concurrency,
    extract_unique_error_messages,
    external_account_id,
    group_by_asset,
)
from ledger_workload.models import (
    AccountWithAsset,
    BatchItemResult,
    BatchOptions,
    BatchResult,
    GenerationState,
    LedgerClient,
    ProgressCallback,
    Transaction,
    TransactionRequest,
)
from ledger_workload.progress import ProgressReporter
from ledger_workload.strategies import (
    AssetClassDepositStrategy,
    DepositStrategy,
    RandomTransferStrategy,
    TransferStrategy,
)

log = logging.getLogger("ledger_workload.generators")


@dataclass(slots=True)
class RunTracker:
    """Aggregates what the batch observers report for one generator run."""

    phase: str
    total: int
    progress_every: int
    reporter: ProgressReporter | None = None
    on_progress: ProgressCallback | None = None
    transactions: list[Transaction] = field(default_factory=list)
    success_count: int = 0

    def record_success(self, txn: Transaction, elapsed: float) -> None:
        self.transactions.append(txn)
        self.success_count += 1
        if self.reporter is not None:
            self.reporter.report_item_completed(elapsed)
        if self.success_count % self.progress_every == 0 or self.success_count == self.total:
            self.emit()

    def record_failure(self) -> None:
        if self.reporter is not None:
            self.reporter.report_item_failed()

    def record_skip(self) -> None:
        if self.reporter is not None:
            self.reporter.report_item_skipped()

    def emit(self) -> None:
        if self.on_progress is not None:
            self.on_progress(self.phase, self.success_count, self.total)


class PartitionObserver:
    """Batch observer for one asset partition; items map by index onto ``accounts``."""

    def __init__(
        self,
        *,
        kind: str,
        tracker: RunTracker,
        state: GenerationState,
        ledger_id: str,
        asset_code: str,
        accounts: Sequence[AccountWithAsset],
        logger: logging.Logger,
    ) -> None:
        self.kind = kind
        self.tracker = tracker
        self.state = state
        self.ledger_id = ledger_id
        self.asset_code = asset_code
        self.accounts = accounts
        self.log = logger

    def on_success(self, item: TransactionRequest, index: int, result: Transaction, elapsed: float) -> None:
        self.state.add_transaction_id(self.ledger_id, result.id)
        if index < len(self.accounts):
            self.state.set_account_asset(self.ledger_id, self.accounts[index].account_id, self.asset_code)
        self.tracker.record_success(result, elapsed)

    def on_error(self, item: TransactionRequest, index: int, error: BaseException) -> None:
        alias = self.accounts[index].account_alias if index < len(self.accounts) else "unknown"
        self.log.error(
            "Failed to create %s for account %s (%s) in ledger %s: %s",
            self.kind,
            alias,
            self.asset_code,
            self.ledger_id,
            format_error_message(error),
        )
        self.tracker.record_failure()


class BatchGenerator(ABC):
    kind = "transaction"
    min_partition_size = 1
    progress_every = 10

    def __init__(
        self,
        client: LedgerClient,
        state: GenerationState,
        *,
        settings: GenerationSettings | None = None,
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

    @property
    @abstractmethod
    def batch_settings(self) -> BatchSettings: ...

    def partitions(self, accounts: Sequence[AccountWithAsset]) -> tuple[dict[str, list[AccountWithAsset]], int]:
        """Viable partitions plus the total partition count used for sharing concurrency."""
        groups = group_by_asset(accounts)
        viable = {}
        for asset_code, group in groups.items():
            if len(group) < self.min_partition_size:
                self.log.warning(
                    "Only %s account(s) with asset code %s - no %ss possible",
                    len(group),
                    asset_code,
                    self.kind,
                )
                continue
            viable[asset_code] = group
        return viable, len(groups)

    async def submit_partition(
        self,
        organization_id: str,
        ledger_id: str,
        asset_code: str,
        requests: list[TransactionRequest],
        accounts: Sequence[AccountWithAsset],
        *,
        partition_count: int,
        tracker: RunTracker,
        metadata: dict,
    ) -> BatchResult | None:
        bs = self.batch_settings
        concurrency = calculate_optimal_concurrency(len(requests), partition_count, self.settings.max_concurrency)
        self.log.info(
            "Processing %s %ss for asset %s with concurrency %s",
            len(requests),
            self.kind,
            asset_code,
            concurrency,
        )
        options = BatchOptions(
            concurrency=concurrency,
            max_retries=bs.max_retries,
            stop_on_error=bs.stop_on_error,
            delay_between_transactions=bs.delay_between_transactions,
            batch_metadata=metadata,
            observer=PartitionObserver(
                kind=self.kind,
                tracker=tracker,
                state=self.state,
                ledger_id=ledger_id,
                asset_code=asset_code,
                accounts=accounts,
                logger=self.log,
            ),
        )
        try:
            result = await create_transaction_batch(
                self.client,
                organization_id,
                ledger_id,
                requests,
                options,
                breaker=self.breaker,
                sleep=self._sleep,
            )
        except Exception as e:
            self.log.error(
                "Batch processing failed for %ss with asset %s in ledger %s (org %s, %s requests): %s",
                self.kind,
                asset_code,
                ledger_id,
                organization_id,
                len(requests),
                format_error_message(e),
                exc_info=True,
            )
            self.state.increment_error_count(C.TRANSACTION_ENTITY)
            partial = getattr(e, "results", None) or []
            if partial:
                self.count_unique_errors(partial, asset_code, ledger_id)
            # never dispatched
            for _ in range(len(requests) - len(partial)):
                tracker.record_skip()
            return None

        self.log.info(
            "%s batch for asset %s completed: %s successful, %s failed",
            self.kind.capitalize(),
            asset_code,
            result.success_count,
            result.failure_count,
        )
        self.count_unique_errors(result.results, asset_code, ledger_id)
        return result

    def count_unique_errors(self, results: Sequence[BatchItemResult], asset_code: str, ledger_id: str) -> int:
        messages = extract_unique_error_messages(results)
        for message in sorted(messages):
            self.log.warning("%s error for asset %s in ledger %s: %s", self.kind.capitalize(), asset_code, ledger_id, message)
            self.state.increment_error_count(C.TRANSACTION_ENTITY)
        return len(messages)


class DepositGenerator(BatchGenerator):
    kind = "deposit"
    min_partition_size = 1
    progress_every = C.DEPOSIT_PROGRESS_EVERY

    def __init__(self, client: LedgerClient, state: GenerationState, *, strategy: DepositStrategy | None = None, **kwargs) -> None:
        super().__init__(client, state, **kwargs)
        self.strategy = strategy or AssetClassDepositStrategy()

    @property
    def batch_settings(self) -> BatchSettings:
        return self.settings.deposits

    async def generate(
        self,
        organization_id: str,
        ledger_id: str,
        accounts: Sequence[AccountWithAsset],
        *,
        reporter: ProgressReporter | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> list[Transaction]:
        partitions, partition_count = self.partitions(accounts)
        total = sum(len(group) for group in partitions.values())
        tracker = RunTracker(
            phase=C.Phase.GENERATE_DEPOSITS,
            total=total,
            progress_every=self.progress_every,
            reporter=reporter,
            on_progress=on_progress,
        )
        self.log.info("Processing deposits for %s accounts grouped by asset code", total)

        for asset_code, group in partitions.items():
            self.log.info("Creating %s deposits for asset code %s", len(group), asset_code)
            external = external_account_id(asset_code, self.settings.external_account_template)
            requests = [
                build_deposit_request(
                    acc,
                    acc.deposit_amount if acc.deposit_amount is not None else self.strategy.calculate_amount(asset_code),
                    scale=self.settings.scale,
                    external_account=external,
                )
                for acc in group
            ]
            await self.submit_partition(
                organization_id,
                ledger_id,
                asset_code,
                requests,
                group,
                partition_count=partition_count,
                tracker=tracker,
                metadata={"type": "deposit", "generator": "bulk-initial-deposits", "assetCode": asset_code},
            )

        self.log.info("Successfully created %s deposits out of %s accounts", tracker.success_count, total)
        tracker.emit()
        return tracker.transactions


class TransferGenerator(BatchGenerator):
    kind = "transfer"
    min_partition_size = 2
    progress_every = C.TRANSFER_PROGRESS_EVERY

    def __init__(self, client: LedgerClient, state: GenerationState, *, strategy: TransferStrategy | None = None, **kwargs) -> None:
        super().__init__(client, state, **kwargs)
        self.strategy = strategy or RandomTransferStrategy(scale=self.settings.scale)

    @property
    def batch_settings(self) -> BatchSettings:
        return self.settings.transfers

    def build_requests(
        self, group: Sequence[AccountWithAsset], transfers_per_account: int, tracker: RunTracker
    ) -> tuple[list[TransactionRequest], list[AccountWithAsset]]:
        requests: list[TransactionRequest] = []
        sources: list[AccountWithAsset] = []
        for source in group:
            for _ in range(transfers_per_account):
                target = self.strategy.select_target_account(source, group)
                if target is None:
                    self.log.debug("No transfer target for %s, skipping", source.account_alias)
                    tracker.record_skip()
                    continue
                try:
                    req = build_transfer_request(
                        source,
                        target,
                        self.strategy.calculate_amount(source.asset_code),
                        scale=self.settings.scale,
                        metadata={
                            "batchProcessed": True,
                            "transferId": f"transfer-{uuid.uuid4().hex[:12]}-{source.account_id[-4:]}-{target.account_id[-4:]}",
                        },
                    )
                except UnbalancedTransactionError as e:
                    self.log.warning("Skipping transfer %s -> %s: %s", source.account_alias, target.account_alias, e)
                    self.state.increment_error_count(C.TRANSACTION_ENTITY)
                    tracker.record_skip()
                    continue
                requests.append(req)
                sources.append(source)
        return requests, sources

    async def generate(
        self,
        organization_id: str,
        ledger_id: str,
        accounts: Sequence[AccountWithAsset],
        transfers_per_account: int,
        *,
        reporter: ProgressReporter | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> list[Transaction]:
        if transfers_per_account <= 0:
            return []

        partitions, partition_count = self.partitions(accounts)
        total = len(accounts) * transfers_per_account
        tracker = RunTracker(
            phase=C.Phase.GENERATE_TRANSFERS,
            total=total,
            progress_every=self.progress_every,
            reporter=reporter,
            on_progress=on_progress,
        )
        # accounts in partitions too small to transfer within still count as planned
        for acc in accounts:
            if acc.asset_code not in partitions:
                for _ in range(transfers_per_account):
                    tracker.record_skip()

        if not partitions:
            self.log.warning("No possible transfers between accounts with matching asset codes in ledger %s", ledger_id)
            tracker.emit()
            return []

        self.log.info("Preparing to generate %s transfers across %s asset(s)", total, len(partitions))

        for asset_code, group in partitions.items():
            requests, sources = self.build_requests(group, transfers_per_account, tracker)
            if not requests:
                continue
            await self.submit_partition(
                organization_id,
                ledger_id,
                asset_code,
                requests,
                sources,
                partition_count=partition_count,
                tracker=tracker,
                metadata={
                    "type": "transfer-batch",
                    "assetCode": asset_code,
                    "batchId": f"batch-{int(time.time() * 1000)}-{asset_code}",
                },
            )

        self.log.info("Successfully generated %s transfers in ledger %s", tracker.success_count, ledger_id)
        tracker.emit()
        return tracker.transactions
