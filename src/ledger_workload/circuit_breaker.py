"""Circuit breaker guarding calls to the ledger service.

CLOSED -> OPEN once enough failures pile up inside the monitoring window, OPEN
rejects without calling anything until the recovery timeout has passed, then a
single HALF_OPEN probe decides between CLOSED and OPEN again.
"""

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import TypeVar

import ledger_workload.constants as C
from ledger_workload.errors import CircuitOpenError

log = logging.getLogger("ledger_workload.circuit_breaker")

T = TypeVar("T")


@dataclass(slots=True)
class CircuitBreakerOptions:
    failure_threshold: int = 3
    recovery_timeout: float = 30.0  # seconds
    monitoring_period: float = 120.0  # seconds, <= 0 counts every failure since reset
    minimum_requests: int = 2
    success_threshold: float = 0.6  # single probe design: any probe success closes


@dataclass(slots=True)
class CircuitBreakerState:
    state: C.CircuitState
    failures: int
    successes: int
    requests: int
    last_failure_time: float | None
    last_state_change_time: float
    trips: int = 0


class CircuitBreaker:
    def __init__(
        self,
        options: CircuitBreakerOptions | None = None,
        *,
        name: str = "ledger",
        clock: Callable[[], float] = time.monotonic,
        logger: logging.Logger | None = None,
    ) -> None:
        self.options = options or CircuitBreakerOptions()
        self.name = name
        self._clock = clock
        self._log = logger or log
        self._events: deque[tuple[float, bool]] = deque()
        self._probe_in_flight = False
        self._stats = CircuitBreakerState(
            state=C.CircuitState.CLOSED,
            failures=0,
            successes=0,
            requests=0,
            last_failure_time=None,
            last_state_change_time=self._clock(),
        )

    @property
    def state(self) -> C.CircuitState:
        self._check_recovery()
        return self._stats.state

    def get_stats(self) -> CircuitBreakerState:
        self._check_recovery()
        self._prune(self._clock())
        return replace(self._stats)

    def is_available(self) -> bool:
        self._check_recovery()
        if self._stats.state == C.CircuitState.HALF_OPEN:
            return not self._probe_in_flight
        return self._stats.state == C.CircuitState.CLOSED

    def manual_reset(self) -> None:
        trips = self._stats.trips
        self._events.clear()
        self._probe_in_flight = False
        self._stats = CircuitBreakerState(
            state=C.CircuitState.CLOSED,
            failures=0,
            successes=0,
            requests=0,
            last_failure_time=None,
            last_state_change_time=self._clock(),
            trips=trips,
        )
        self._log.info("Circuit breaker '%s' manually reset", self.name)

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        self._admit()
        try:
            result = await operation()
        except asyncio.CancelledError:
            self._probe_in_flight = False
            raise
        except Exception:
            self._on_failure()
            raise
        self._on_success()
        return result

    # ------------------------------------------------------------------

    def _check_recovery(self) -> None:
        """OPEN never outlives the recovery timeout, whether or not a call arrives."""
        s = self._stats
        if s.state == C.CircuitState.OPEN and self._clock() - s.last_state_change_time >= self.options.recovery_timeout:
            self._transition(C.CircuitState.HALF_OPEN)

    def _admit(self) -> None:
        self._check_recovery()
        if self._stats.state == C.CircuitState.OPEN:
            raise CircuitOpenError(self.name)

        if self._stats.state == C.CircuitState.HALF_OPEN:
            # only the first caller gets to probe
            if self._probe_in_flight:
                raise CircuitOpenError(self.name)
            self._probe_in_flight = True

    def _on_success(self) -> None:
        if self._stats.state == C.CircuitState.HALF_OPEN:
            self._probe_in_flight = False
            self._reset_counters()
            self._record(ok=True)
            self._transition(C.CircuitState.CLOSED)
            return
        self._record(ok=True)

    def _on_failure(self) -> None:
        now = self._record(ok=False)
        self._stats.last_failure_time = now
        if self._stats.state == C.CircuitState.HALF_OPEN:
            self._probe_in_flight = False
            self._transition(C.CircuitState.OPEN)
            return

        s = self._stats
        if (
            s.state == C.CircuitState.CLOSED
            and s.failures >= self.options.failure_threshold
            and s.requests >= self.options.minimum_requests
        ):
            self._transition(C.CircuitState.OPEN)

    def _record(self, *, ok: bool) -> float:
        now = self._clock()
        self._prune(now)
        self._events.append((now, ok))
        self._stats.requests += 1
        if ok:
            self._stats.successes += 1
        else:
            self._stats.failures += 1
        return now

    def _prune(self, now: float) -> None:
        period = self.options.monitoring_period
        if period <= 0:
            return
        while self._events and now - self._events[0][0] > period:
            _, ok = self._events.popleft()
            self._stats.requests -= 1
            if ok:
                self._stats.successes -= 1
            else:
                self._stats.failures -= 1

    def _reset_counters(self) -> None:
        self._events.clear()
        self._stats.failures = 0
        self._stats.successes = 0
        self._stats.requests = 0

    def _transition(self, new_state: C.CircuitState) -> None:
        old = self._stats.state
        self._stats.state = new_state
        self._stats.last_state_change_time = self._clock()
        if new_state == C.CircuitState.OPEN:
            if old == C.CircuitState.CLOSED:
                self._stats.trips += 1
            self._log.warning(
                "Circuit breaker '%s' %s -> OPEN (failures=%s, requests=%s), retry in %.1fs",
                self.name,
                old,
                self._stats.failures,
                self._stats.requests,
                self.options.recovery_timeout,
            )
        else:
            self._log.info("Circuit breaker '%s' %s -> %s", self.name, old, new_state)
