"""Error taxonomy for the generation engine.

Transient upstream failures surface as LedgerAPIError / LedgerConnectionError,
the breaker rejects with CircuitOpenError without ever calling the ledger, and a
batch that aborts early raises BatchSubmissionError with whatever results it had
collected so far.
"""

from collections.abc import Mapping
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ledger_workload.models import BatchItemResult


class WorkloadError(Exception):
    """Base class for errors raised by ledger_workload."""


class CircuitOpenError(WorkloadError):
    """The breaker refused the call; the wrapped operation was never invoked."""

    def __init__(self, name: str = "ledger", message: str = "Circuit breaker is OPEN"):
        super().__init__(message)
        self.name = name


class UnbalancedTransactionError(WorkloadError, ValueError):
    pass


class BatchSubmissionError(WorkloadError):
    """A batch call gave up before every item settled."""

    def __init__(self, message: str, results: "list[BatchItemResult] | None" = None):
        super().__init__(message)
        self.results = list(results or [])


class LedgerConnectionError(WorkloadError):
    pass


class LedgerAPIError(WorkloadError):
    def __init__(self, status_code: int, message: str, body: object = None):
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.body = body

    @property
    def is_conflict(self) -> bool:
        return self.status_code == 409 or "already exists" in self.message.lower()

    @property
    def is_retryable(self) -> bool:
        # 408/429 are worth another try, every other 4xx is a caller mistake
        if self.status_code in (408, 429):
            return True
        return self.status_code >= 500


def is_retryable(error: BaseException) -> bool:
    if isinstance(error, (CircuitOpenError, UnbalancedTransactionError)):
        return False
    if isinstance(error, LedgerAPIError):
        return error.is_retryable
    return True


def is_conflict(error: BaseException) -> bool:
    if isinstance(error, LedgerAPIError):
        return error.is_conflict
    text = str(error).lower()
    return "already exists" in text or "conflict" in text


def format_error_message(error: object) -> str:
    """Normalise anything that was raised or reported as an error into a message.

    Args:
        error: An exception, a plain string, a mapping payload from the API
            (``message``/``error``/``detail`` keys), or ``None``.

    Returns:
        A non-empty message string.
    """
    match error:
        case None:
            return "Unknown error"
        case str() as text:
            return text or "Unknown error"
        case LedgerAPIError() as exc:
            return str(exc)
        case BaseException() as exc:
            text = str(exc)
            return text if text else type(exc).__name__
        case Mapping() as payload:
            for key in ("message", "error", "detail"):
                value = payload.get(key)
                if value:
                    return format_error_message(value)
            return repr(dict(payload))
        case _:
            return repr(error)
