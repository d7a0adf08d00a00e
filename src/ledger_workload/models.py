"""Domain data structures and the collaborator interfaces the engine talks to."""

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

import ledger_workload.constants as C
from ledger_workload.errors import UnbalancedTransactionError


@dataclass(frozen=True, slots=True)
class AccountWithAsset:
    account_id: str
    account_alias: str
    asset_code: str
    deposit_amount: int | None = None


@dataclass(frozen=True, slots=True)
class Amount:
    value: int
    scale: int
    asset_code: str

    def to_payload(self) -> dict:
        return {"value": self.value, "scale": self.scale, "assetCode": self.asset_code}


@dataclass(frozen=True, slots=True)
class Operation:
    account_id: str
    type: C.OperationType
    amount: Amount

    def to_payload(self) -> dict:
        return {"accountId": self.account_id, "type": str(self.type), "amount": self.amount.to_payload()}


@dataclass(slots=True)
class TransactionRequest:
    description: str
    amount: int
    scale: int
    asset_code: str
    operations: list[Operation]
    metadata: dict[str, Any] = field(default_factory=dict)

    def total(self, op_type: C.OperationType) -> int:
        return sum(op.amount.value for op in self.operations if op.type == op_type)

    def ensure_balanced(self) -> "TransactionRequest":
        """Raise UnbalancedTransactionError unless debits equal credits in a single asset."""
        if not self.operations:
            raise UnbalancedTransactionError(f"'{self.description}' has no operations")
        assets = {op.amount.asset_code for op in self.operations}
        if assets != {self.asset_code}:
            raise UnbalancedTransactionError(
                f"'{self.description}' mixes assets {sorted(assets)} (expected {self.asset_code})"
            )
        debits = self.total(C.OperationType.DEBIT)
        credits = self.total(C.OperationType.CREDIT)
        if debits != credits:
            raise UnbalancedTransactionError(f"'{self.description}' debits {debits} != credits {credits}")
        return self

    def with_metadata(self, extra: Mapping[str, Any] | None) -> "TransactionRequest":
        if not extra:
            return self
        return TransactionRequest(
            description=self.description,
            amount=self.amount,
            scale=self.scale,
            asset_code=self.asset_code,
            operations=list(self.operations),
            metadata={**extra, **self.metadata},
        )

    def to_payload(self) -> dict:
        return {
            "description": self.description,
            "amount": self.amount,
            "scale": self.scale,
            "assetCode": self.asset_code,
            "metadata": dict(self.metadata),
            "operations": [op.to_payload() for op in self.operations],
        }


@dataclass(slots=True)
class Transaction:
    id: str
    description: str | None = None
    asset_code: str | None = None
    amount: int | None = None
    status: str | None = None
    raw: dict = field(default_factory=dict, repr=False)

    @classmethod
    def from_response(cls, data: dict) -> "Transaction":
        status = data.get("status")
        if isinstance(status, dict):
            status = status.get("code")
        return cls(
            id=str(data["id"]),
            description=data.get("description"),
            asset_code=data.get("assetCode"),
            amount=data.get("amount"),
            status=status,
            raw=data,
        )


@dataclass(slots=True)
class BatchItemResult:
    status: C.ItemStatus
    transaction: Transaction | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == C.ItemStatus.SUCCESS


@dataclass(slots=True)
class BatchResult:
    success_count: int = 0
    failure_count: int = 0
    results: list[BatchItemResult] = field(default_factory=list)


class BatchObserver(Protocol):
    """Receives per-item outcomes of a batch; the only side-effect channel out of one."""

    def on_success(self, item: TransactionRequest, index: int, result: Transaction, elapsed: float) -> None: ...
    def on_error(self, item: TransactionRequest, index: int, error: BaseException) -> None: ...


@dataclass(slots=True)
class BatchOptions:
    concurrency: int = 1
    max_retries: int = 3
    stop_on_error: bool = False
    delay_between_transactions: float = 0.0
    batch_metadata: dict[str, Any] = field(default_factory=dict)
    observer: BatchObserver | None = None


@dataclass(slots=True)
class GenerationRequest:
    organization_id: str
    ledger_id: str
    account_ids: list[str]
    account_aliases: list[str]
    transactions_per_account: int = 1

    def alias_for(self, index: int) -> str:
        if index < len(self.account_aliases) and self.account_aliases[index]:
            return self.account_aliases[index]
        return self.account_ids[index]


# (phase, completed, total)
ProgressCallback = Callable[[str, int, int], None]


class LedgerClient(Protocol):
    async def get_account(self, organization_id: str, ledger_id: str, account_id: str) -> dict: ...
    async def create_transaction(self, organization_id: str, ledger_id: str, request: TransactionRequest) -> Transaction: ...


class AccountAssetStore(Protocol):
    def get_account_asset(self, ledger_id: str, account_id: str) -> str | None: ...
    def set_account_asset(self, ledger_id: str, account_id: str, asset_code: str) -> None: ...
    def get_asset_codes(self, ledger_id: str) -> list[str]: ...


class TransactionIdSink(Protocol):
    def add_transaction_id(self, ledger_id: str, transaction_id: str) -> None: ...


class ErrorCounter(Protocol):
    def increment_error_count(self, entity: str) -> None: ...


class GenerationState(AccountAssetStore, TransactionIdSink, ErrorCounter, Protocol):
    pass
