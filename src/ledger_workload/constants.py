from typing import Final
from enum import StrEnum


class OperationType(StrEnum):
    DEBIT  = "DEBIT"
    CREDIT = "CREDIT"


class CircuitState(StrEnum):
    CLOSED    = "CLOSED"
    OPEN      = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class ItemStatus(StrEnum):
    SUCCESS = "success"
    FAILED  = "failed"


class Phase(StrEnum):
    VALIDATE           = "validate"
    PREPARE_ACCOUNTS   = "prepare_accounts"
    GENERATE_DEPOSITS  = "generate_deposits"
    SETTLEMENT_DELAY   = "settlement_delay"
    GENERATE_TRANSFERS = "generate_transfers"
    DONE               = "done"


# Error counter key used by the generators and orchestrator
TRANSACTION_ENTITY: Final = "transaction"

# Per asset partition hard cap, regardless of the global budget
MAX_PARTITION_CONCURRENCY: Final = 10
MIN_PARTITION_CONCURRENCY: Final = 2
MAX_LOOKUP_CONCURRENCY: Final = 10

DEFAULT_SCALE: Final = 2
DEFAULT_ASSET_CODE: Final = "BRL"
EXTERNAL_ACCOUNT_TEMPLATE: Final = "@external/{asset_code}"

CRYPTO_ASSETS: Final = frozenset({"BTC", "ETH"})
COMMODITY_ASSETS: Final = frozenset({"GOLD", "SILVER"})

# Deposit amounts are integers at DEFAULT_SCALE (1000000 == 10000.00)
DEPOSIT_AMOUNT_CRYPTO: Final = 10_000
DEPOSIT_AMOUNT_COMMODITY: Final = 500_000
DEPOSIT_AMOUNT_DEFAULT: Final = 1_000_000

# Transfer ranges are in major units
TRANSFER_RANGE_CRYPTO: Final = (0.1, 1.0)
TRANSFER_RANGE_COMMODITY: Final = (1.0, 10.0)
TRANSFER_RANGE_DEFAULT: Final = (100.0, 500.0)

RETRY_BASE_DELAY: Final = 0.1
RETRY_MAX_DELAY: Final = 2.0
RPC_TIMEOUT: Final = 30.0
SAMPLE_WINDOW: Final = 100

DEPOSIT_PROGRESS_EVERY: Final = 10
TRANSFER_PROGRESS_EVERY: Final = 20

__all__ = [
    "COMMODITY_ASSETS",
    "CRYPTO_ASSETS",
    "DEFAULT_ASSET_CODE",
    "DEFAULT_SCALE",
    "DEPOSIT_AMOUNT_COMMODITY",
    "DEPOSIT_AMOUNT_CRYPTO",
    "DEPOSIT_AMOUNT_DEFAULT",
    "DEPOSIT_PROGRESS_EVERY",
    "EXTERNAL_ACCOUNT_TEMPLATE",
    "MAX_LOOKUP_CONCURRENCY",
    "MAX_PARTITION_CONCURRENCY",
    "MIN_PARTITION_CONCURRENCY",
    "RETRY_BASE_DELAY",
    "RETRY_MAX_DELAY",
    "RPC_TIMEOUT",
    "SAMPLE_WINDOW",
    "TRANSACTION_ENTITY",
    "TRANSFER_PROGRESS_EVERY",
    "TRANSFER_RANGE_COMMODITY",
    "TRANSFER_RANGE_CRYPTO",
    "TRANSFER_RANGE_DEFAULT",

    ######
    "CircuitState",
    "ItemStatus",
    "OperationType",
    "Phase",
]
