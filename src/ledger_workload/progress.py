"""Progress tracking for long running generation phases.

A ProgressReporter counts completed/failed/skipped items for one named unit of
work, keeps a bounded window of per-item durations, and derives throughput and
an ETA from them. Lines are emitted on a timer (when an event loop is running
and ``update_interval`` is positive), on ``force_update()``, and once more from
``stop()``.
"""

import asyncio
import contextlib
import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import ledger_workload.constants as C

log = logging.getLogger("ledger_workload.progress")


@dataclass(slots=True)
class ProgressOptions:
    update_interval: float = 2.0  # seconds, <= 0 disables the timer
    show_eta: bool = True
    show_throughput: bool = True
    show_progress_bar: bool = True
    progress_bar_width: int = 30


@dataclass(frozen=True, slots=True)
class ProgressMetrics:
    total_items: int
    completed_items: int
    failed_items: int
    skipped_items: int
    throughput_per_second: float
    average_item_time: float  # seconds
    estimated_completion: datetime | None = None

    @property
    def processed_items(self) -> int:
        return self.completed_items + self.failed_items + self.skipped_items

    def to_dict(self) -> dict:
        return {
            "total_items": self.total_items,
            "completed_items": self.completed_items,
            "failed_items": self.failed_items,
            "skipped_items": self.skipped_items,
            "throughput_per_second": round(self.throughput_per_second, 3),
            "average_item_time": round(self.average_item_time, 4),
            "estimated_completion": self.estimated_completion.isoformat() if self.estimated_completion else None,
        }


class ProgressReporter:
    def __init__(
        self,
        label: str,
        total_items: int,
        logger: logging.Logger | None = None,
        options: ProgressOptions | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.label = label
        self.total_items = max(0, total_items)
        self.options = options or ProgressOptions()
        self._log = logger or log
        self._clock = clock
        self._completed = 0
        self._failed = 0
        self._skipped = 0
        self._samples: deque[float] = deque(maxlen=C.SAMPLE_WINDOW)
        self._started_at = clock()
        self._timer: asyncio.Task | None = None
        self._running = False

    # ---- lifecycle ---------------------------------------------------

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._started_at = self._clock()
        if self.options.update_interval <= 0:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._log.debug("%s: no running event loop, periodic progress disabled", self.label)
            return
        self._timer = loop.create_task(self._tick(), name=f"progress:{self.label}")

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._running = False
        m = self.get_metrics()
        elapsed = self._clock() - self._started_at
        self._log.info(
            "%s finished: %s succeeded, %s failed, %s skipped of %s in %.1fs",
            self.label,
            m.completed_items,
            m.failed_items,
            m.skipped_items,
            m.total_items,
            elapsed,
        )

    async def _tick(self) -> None:
        with contextlib.suppress(asyncio.CancelledError):
            while True:
                await asyncio.sleep(self.options.update_interval)
                self.force_update()

    # ---- reporting ---------------------------------------------------

    def report_item_completed(self, duration: float | None = None) -> None:
        self._completed += 1
        if duration is not None and duration >= 0:
            self._samples.append(duration)

    def report_item_failed(self) -> None:
        self._failed += 1

    def report_item_skipped(self) -> None:
        self._skipped += 1

    def report_batch_completed(self, count: int, total_duration: float) -> None:
        if count <= 0:
            return
        self._completed += count
        per_item = total_duration / count
        self._samples.extend([per_item] * min(count, C.SAMPLE_WINDOW))

    def as_callback(self) -> Callable[[str, int, int], None]:
        """Adapt to the ``(phase, completed, total)`` progress callback shape."""

        def _callback(phase: str, completed: int, total: int) -> None:
            if total and total != self.total_items:
                self.total_items = total
            if completed > self._completed:
                self._completed = completed

        return _callback

    # ---- derived values ----------------------------------------------

    def get_metrics(self) -> ProgressMetrics:
        elapsed = max(self._clock() - self._started_at, 0.0)
        throughput = self._completed / elapsed if elapsed > 0 else 0.0
        average = sum(self._samples) / len(self._samples) if self._samples else 0.0

        eta = None
        if throughput > 0:
            remaining = max(self.total_items - (self._completed + self._failed + self._skipped), 0)
            eta = datetime.now(timezone.utc) + timedelta(seconds=remaining / throughput)

        return ProgressMetrics(
            total_items=self.total_items,
            completed_items=self._completed,
            failed_items=self._failed,
            skipped_items=self._skipped,
            throughput_per_second=throughput,
            average_item_time=average,
            estimated_completion=eta,
        )

    def is_complete(self) -> bool:
        if self.total_items == 0:
            return True
        return self._completed + self._failed + self._skipped >= self.total_items

    def force_update(self) -> None:
        self._log.info(self.format_line(self.get_metrics()))

    def format_line(self, m: ProgressMetrics) -> str:
        processed = m.processed_items
        pct = 100.0 if m.total_items == 0 else min(processed / m.total_items * 100, 100.0)
        parts = [f"{self.label}:"]
        if self.options.show_progress_bar:
            width = max(self.options.progress_bar_width, 1)
            filled = int(width * pct / 100)
            parts.append("[" + "#" * filled + "-" * (width - filled) + "]")
        parts.append(f"{processed}/{m.total_items} ({pct:.1f}%)")
        if m.failed_items or m.skipped_items:
            parts.append(f"failed={m.failed_items} skipped={m.skipped_items}")
        if self.options.show_throughput:
            parts.append(f"{m.throughput_per_second:.2f}/s")
        if self.options.show_eta and m.estimated_completion is not None:
            remaining = (m.estimated_completion - datetime.now(timezone.utc)).total_seconds()
            parts.append(f"ETA {max(remaining, 0):.0f}s")
        return " ".join(parts)
