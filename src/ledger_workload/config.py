import os
import tomllib
from pathlib import Path

from pydantic import BaseModel, Field

from ledger_workload.circuit_breaker import CircuitBreakerOptions
from ledger_workload.progress import ProgressOptions
import ledger_workload.constants as C

pkg_root = Path(__file__).parent
config_file = pkg_root / "config.toml"


class ApiSettings(BaseModel):
    onboarding_url: str = "http://localhost:3000"
    transaction_url: str = "http://localhost:3001"
    timeout: float = Field(default=C.RPC_TIMEOUT, ge=1.0, le=300.0)
    token: str | None = None


class BatchSettings(BaseModel):
    max_retries: int = Field(default=3, ge=0, le=10)
    stop_on_error: bool = False
    delay_between_transactions: float = Field(default=0.0, ge=0.0)


class GenerationSettings(BaseModel):
    max_concurrency: int = Field(default=10, ge=1, le=100)
    default_asset_code: str = C.DEFAULT_ASSET_CODE
    settlement_delay: float = Field(default=3.0, ge=0.0)
    scale: int = Field(default=C.DEFAULT_SCALE, ge=0, le=18)
    external_account_template: str = C.EXTERNAL_ACCOUNT_TEMPLATE
    deposits: BatchSettings = Field(default_factory=lambda: BatchSettings(delay_between_transactions=0.1))
    transfers: BatchSettings = Field(default_factory=lambda: BatchSettings(delay_between_transactions=0.02))


class CircuitBreakerSettings(BaseModel):
    enabled: bool = True
    failure_threshold: int = Field(default=3, ge=1, le=20)
    recovery_timeout: float = Field(default=30.0, ge=1.0, le=300.0)
    monitoring_period: float = Field(default=120.0, ge=10.0, le=3600.0)
    minimum_requests: int = Field(default=2, ge=1, le=50)
    success_threshold: float = Field(default=0.6, ge=0.1, le=1.0)

    def to_options(self) -> CircuitBreakerOptions:
        return CircuitBreakerOptions(**self.model_dump(exclude={"enabled"}))


class ProgressSettings(BaseModel):
    enabled: bool = True
    update_interval: float = Field(default=2.0, le=60.0)
    show_eta: bool = True
    show_throughput: bool = True
    show_progress_bar: bool = True
    progress_bar_width: int = Field(default=30, ge=10, le=100)

    def to_options(self) -> ProgressOptions:
        return ProgressOptions(**self.model_dump(exclude={"enabled"}))


class Settings(BaseModel):
    api: ApiSettings = Field(default_factory=ApiSettings)
    generation: GenerationSettings = Field(default_factory=GenerationSettings)
    circuit_breaker: CircuitBreakerSettings = Field(default_factory=CircuitBreakerSettings)
    progress: ProgressSettings = Field(default_factory=ProgressSettings)


def load_settings(path: Path | str | None = None) -> Settings:
    """Read the TOML config (the packaged one by default) and apply env overrides.

    ONBOARDING_URL, TRANSACTION_URL and MIDAZ_TOKEN take precedence over the file.
    """
    cfg = tomllib.loads(Path(path or config_file).read_text())
    api = cfg.setdefault("api", {})
    api["onboarding_url"] = os.getenv("ONBOARDING_URL", api.get("onboarding_url", ApiSettings().onboarding_url))
    api["transaction_url"] = os.getenv("TRANSACTION_URL", api.get("transaction_url", ApiSettings().transaction_url))
    if token := os.getenv("MIDAZ_TOKEN"):
        api["token"] = token
    return Settings.model_validate(cfg)
