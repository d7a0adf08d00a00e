from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

import ledger_workload.constants as C
from ledger_workload.models import (
    AccountWithAsset,
    Amount,
    BatchItemResult,
    Operation,
    TransactionRequest,
)


def calculate_optimal_concurrency(item_count: int, partition_count: int, max_concurrency: int) -> int:
    """Share the global budget between asset partitions.

    Each partition gets ``max_concurrency // partition_count`` but never fewer
    than 2, never more than the per-partition cap, and never more than it has
    items to send.
    """
    share = max(C.MIN_PARTITION_CONCURRENCY, max_concurrency // max(partition_count, 1))
    return max(1, min(share, C.MAX_PARTITION_CONCURRENCY, item_count))


def group_by_asset(accounts: Iterable[AccountWithAsset]) -> dict[str, list[AccountWithAsset]]:
    groups: dict[str, list[AccountWithAsset]] = {}
    for acc in accounts:
        groups.setdefault(acc.asset_code, []).append(acc)
    return groups


def extract_unique_error_messages(results: Iterable[BatchItemResult]) -> set[str]:
    return {r.error or "Unknown error" for r in results if not r.ok}


def external_account_id(asset_code: str, template: str = C.EXTERNAL_ACCOUNT_TEMPLATE) -> str:
    return template.replace("{asset_code}", asset_code).replace("{assetCode}", asset_code)


def _legs(debit_account: str, credit_account: str, value: int, scale: int, asset_code: str) -> list[Operation]:
    amount = Amount(value=value, scale=scale, asset_code=asset_code)
    return [
        Operation(account_id=debit_account, type=C.OperationType.DEBIT, amount=amount),
        Operation(account_id=credit_account, type=C.OperationType.CREDIT, amount=amount),
    ]


def build_deposit_request(
    account: AccountWithAsset,
    amount: int,
    *,
    scale: int = C.DEFAULT_SCALE,
    external_account: str | None = None,
    metadata: Mapping[str, Any] | None = None,
) -> TransactionRequest:
    """Fund ``account`` from the asset's external source account."""
    asset = account.asset_code
    source = external_account or external_account_id(asset)
    return TransactionRequest(
        description=f"Initial deposit of {asset} to {account.account_alias}",
        amount=amount,
        scale=scale,
        asset_code=asset,
        metadata={
            "type": "deposit",
            "generatedOn": datetime.now(timezone.utc).isoformat(),
            **(metadata or {}),
        },
        operations=_legs(source, account.account_alias, amount, scale, asset),
    ).ensure_balanced()


def build_transfer_request(
    source: AccountWithAsset,
    target: AccountWithAsset,
    amount: int,
    *,
    scale: int = C.DEFAULT_SCALE,
    metadata: Mapping[str, Any] | None = None,
) -> TransactionRequest:
    """Move ``amount`` from ``source`` to ``target``; both must hold the same asset."""
    return TransactionRequest(
        description=f"Transfer between {source.account_alias} and {target.account_alias}",
        amount=amount,
        scale=scale,
        asset_code=source.asset_code,
        metadata={
            "type": "transfer",
            "source": source.account_alias,
            "target": target.account_alias,
            **(metadata or {}),
        },
        operations=[
            Operation(
                account_id=source.account_alias,
                type=C.OperationType.DEBIT,
                amount=Amount(value=amount, scale=scale, asset_code=source.asset_code),
            ),
            Operation(
                account_id=target.account_alias,
                type=C.OperationType.CREDIT,
                amount=Amount(value=amount, scale=scale, asset_code=target.asset_code),
            ),
        ],
    ).ensure_balanced()
