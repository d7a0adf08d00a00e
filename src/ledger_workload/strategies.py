"""Amount and counterparty decisions, kept apart from the submission machinery.

Generators take these as injected objects; they never pick amounts or targets
themselves.
"""

import random
from collections.abc import Sequence
from typing import Protocol

import ledger_workload.constants as C
from ledger_workload.models import AccountWithAsset


class DepositStrategy(Protocol):
    def calculate_amount(self, asset_code: str) -> int: ...


class TransferStrategy(Protocol):
    def calculate_amount(self, asset_code: str) -> int: ...
    def select_target_account(
        self, source: AccountWithAsset, candidates: Sequence[AccountWithAsset]
    ) -> AccountWithAsset | None: ...


def generate_amount(minimum: float, maximum: float, scale: int = C.DEFAULT_SCALE, *, rng: random.Random | None = None) -> int:
    """Random amount in [minimum, maximum] major units, as an integer at ``scale``."""
    rng = rng or random
    lo, hi = sorted((minimum, maximum))
    value = round(rng.uniform(lo, hi) * 10**scale)
    return max(value, 1)


class AssetClassDepositStrategy:
    """Fixed deposit per asset class: crypto, commodities, everything else."""

    def __init__(
        self,
        *,
        crypto: int = C.DEPOSIT_AMOUNT_CRYPTO,
        commodity: int = C.DEPOSIT_AMOUNT_COMMODITY,
        default: int = C.DEPOSIT_AMOUNT_DEFAULT,
    ) -> None:
        self.crypto = crypto
        self.commodity = commodity
        self.default = default

    def calculate_amount(self, asset_code: str) -> int:
        code = asset_code.upper()
        if code in C.CRYPTO_ASSETS:
            return self.crypto
        if code in C.COMMODITY_ASSETS:
            return self.commodity
        return self.default


class RandomTransferStrategy:
    """Small random transfers to a random peer holding the same asset."""

    def __init__(self, *, scale: int = C.DEFAULT_SCALE, rng: random.Random | None = None) -> None:
        self.scale = scale
        self.rng = rng or random.Random()

    def amount_range(self, asset_code: str) -> tuple[float, float]:
        code = asset_code.upper()
        if code in C.CRYPTO_ASSETS:
            return C.TRANSFER_RANGE_CRYPTO
        if code in C.COMMODITY_ASSETS:
            return C.TRANSFER_RANGE_COMMODITY
        return C.TRANSFER_RANGE_DEFAULT

    def calculate_amount(self, asset_code: str) -> int:
        lo, hi = self.amount_range(asset_code)
        return generate_amount(lo, hi, self.scale, rng=self.rng)

    def select_target_account(
        self, source: AccountWithAsset, candidates: Sequence[AccountWithAsset]
    ) -> AccountWithAsset | None:
        pool = [
            acc for acc in candidates
            if acc.account_id != source.account_id and acc.asset_code == source.asset_code
        ]
        if not pool:
            return None
        return self.rng.choice(pool)
