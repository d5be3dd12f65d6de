from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional


ERROR_KINDS = ("decode", "validation", "store", "channel", "internal")


@dataclass(frozen=True)
class StatsSnapshot:
    messages_processed: int
    items_stored: int
    errors: int
    errors_by_kind: dict[str, int]
    last_processed: Optional[datetime]
    start_time: datetime
    uptime_s: float
    processing_rate: float = field(default=0.0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "messagesProcessed": self.messages_processed,
            "itemsStored": self.items_stored,
            "errors": self.errors,
            "errorsByKind": dict(self.errors_by_kind),
            "lastProcessed": self.last_processed.isoformat() if self.last_processed else None,
            "startTime": self.start_time.isoformat(),
            "uptimeSeconds": self.uptime_s,
            "processingRate": self.processing_rate,
        }


class StatsTracker:
    """
    Process-wide processing counters.

    Safe for concurrent handler threads: every mutation and every snapshot
    takes the same lock, so a snapshot never mixes values from two updates.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self._lock = threading.Lock()
        self._clock = clock
        self._wall_clock = wall_clock
        self._started = clock()
        self._start_time = wall_clock()
        self._messages_processed = 0
        self._items_stored = 0
        self._errors_by_kind = {k: 0 for k in ERROR_KINDS}
        self._last_processed: Optional[datetime] = None

    def record_success(self) -> None:
        now = self._wall_clock()
        with self._lock:
            self._messages_processed += 1
            self._items_stored += 1
            self._last_processed = now

    def record_error(self, kind: str = "internal") -> None:
        k = kind if kind in self._errors_by_kind else "internal"
        with self._lock:
            self._errors_by_kind[k] += 1

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            uptime_s = max(0.0, self._clock() - self._started)
            processed = self._messages_processed
            snap = StatsSnapshot(
                messages_processed=processed,
                items_stored=self._items_stored,
                errors=sum(self._errors_by_kind.values()),
                errors_by_kind=dict(self._errors_by_kind),
                last_processed=self._last_processed,
                start_time=self._start_time,
                uptime_s=uptime_s,
                # messages per minute of uptime
                processing_rate=(processed / (uptime_s / 60.0)) if uptime_s > 0 else 0.0,
            )
        return snap
