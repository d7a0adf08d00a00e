import logging
from dataclasses import asdict, dataclass, field

import ledger_workload.constants as C
from ledger_workload.circuit_breaker import CircuitBreaker
from ledger_workload.state import InMemoryGenerationState

MIN_SUCCESS_RATE = 90.0
MIN_THROUGHPUT = 5.0


def format_duration(seconds: float) -> str:
    total = int(seconds)
    hours, rem = divmod(total, 3600)
    minutes, secs = divmod(rem, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


@dataclass(slots=True)
class RunSummary:
    duration: float
    duration_formatted: str
    accounts: int
    transactions: int
    transaction_errors: int
    success_rate: float
    throughput_per_second: float
    circuit_breaker_trips: int = 0
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)

    def log(self, logger: logging.Logger) -> None:
        logger.info("Generation finished in %s", self.duration_formatted)
        logger.info(
            "Transactions: %s generated, %s errors (%.1f%% success, %.2f/s)",
            self.transactions,
            self.transaction_errors,
            self.success_rate,
            self.throughput_per_second,
        )
        if self.circuit_breaker_trips:
            logger.warning("Circuit breaker tripped %s time(s)", self.circuit_breaker_trips)
        for rec in self.recommendations:
            logger.info("Recommendation: %s", rec)


def build_summary(
    state: InMemoryGenerationState,
    duration: float,
    *,
    accounts: int = 0,
    breaker: CircuitBreaker | None = None,
) -> RunSummary:
    transactions = len(state.transaction_ids())
    errors = state.error_count(C.TRANSACTION_ENTITY)
    attempted = transactions + errors
    success_rate = 100.0 * transactions / attempted if attempted else 100.0
    throughput = transactions / duration if duration > 0 else 0.0

    recommendations = []
    if success_rate < MIN_SUCCESS_RATE:
        recommendations.append(
            f"Investigate high failure rate for transaction generation ({100 - success_rate:.1f}% failures)"
        )
    if transactions and throughput < MIN_THROUGHPUT:
        recommendations.append("Consider increasing batch size or concurrency for better performance")
    if accounts > 0 and transactions / accounts < 1:
        recommendations.append("Low transaction count per account - consider increasing transactions per account")

    return RunSummary(
        duration=duration,
        duration_formatted=format_duration(duration),
        accounts=accounts,
        transactions=transactions,
        transaction_errors=errors,
        success_rate=success_rate,
        throughput_per_second=throughput,
        circuit_breaker_trips=breaker.get_stats().trips if breaker is not None else 0,
        recommendations=recommendations,
    )
