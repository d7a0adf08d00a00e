from collections import Counter


class InMemoryGenerationState:
    """Per-ledger asset mappings, generated transaction ids and error tallies.

    Callbacks from many in-flight requests write here, but they all run on the
    event loop thread, so plain dict updates are enough.
    """

    def __init__(self) -> None:
        self._account_assets: dict[str, dict[str, str]] = {}
        self._asset_codes: dict[str, list[str]] = {}
        self._transaction_ids: dict[str, list[str]] = {}
        self.error_counts: Counter[str] = Counter()

    def set_account_asset(self, ledger_id: str, account_id: str, asset_code: str) -> None:
        self._account_assets.setdefault(ledger_id, {})[account_id] = asset_code
        codes = self._asset_codes.setdefault(ledger_id, [])
        if asset_code not in codes:
            codes.append(asset_code)

    def get_account_asset(self, ledger_id: str, account_id: str) -> str | None:
        return self._account_assets.get(ledger_id, {}).get(account_id)

    def get_asset_codes(self, ledger_id: str) -> list[str]:
        return list(self._asset_codes.get(ledger_id, []))

    def add_transaction_id(self, ledger_id: str, transaction_id: str) -> None:
        self._transaction_ids.setdefault(ledger_id, []).append(transaction_id)

    def transaction_ids(self, ledger_id: str | None = None) -> list[str]:
        if ledger_id is not None:
            return list(self._transaction_ids.get(ledger_id, []))
        return [tid for ids in self._transaction_ids.values() for tid in ids]

    def increment_error_count(self, entity: str) -> None:
        self.error_counts[entity] += 1

    def error_count(self, entity: str | None = None) -> int:
        if entity is None:
            return sum(self.error_counts.values())
        return self.error_counts[entity]

    def snapshot_stats(self) -> dict:
        return {
            "ledgers": len(self._account_assets),
            "accounts_with_asset": sum(len(v) for v in self._account_assets.values()),
            "asset_codes": {k: list(v) for k, v in self._asset_codes.items()},
            "transactions": sum(len(v) for v in self._transaction_ids.values()),
            "errors": dict(self.error_counts),
        }
