"""
Long-lived receive loop over the Pub/Sub subscription.

One dedicated thread owns the subscription: it opens a streaming pull, blocks
on its future, and re-subscribes after channel faults. Message handlers run on
the streaming pull's bounded executor, never on the loop thread.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Optional, Protocol

from items_consumer.channel import DeliveryHandler
from items_consumer.errors import exc_code
from items_consumer.stats import StatsTracker
from items_consumer.structured_logging import log_event

logger = logging.getLogger(__name__)


class Channel(Protocol):
    @property
    def subscription_path(self) -> str: ...

    def subscribe(self, handler: DeliveryHandler, *, max_in_flight: int, max_lease_duration_s: int) -> Any: ...


class SubscriptionRunner:
    def __init__(
        self,
        *,
        channel: Channel,
        handler: DeliveryHandler,
        stats: StatsTracker,
        max_in_flight: int,
        max_lease_duration_s: int = 600,
        reconnect_delay_s: float = 5.0,
    ) -> None:
        self._channel = channel
        self._handler = handler
        self._stats = stats
        self._max_in_flight = max(1, int(max_in_flight))
        self._max_lease_duration_s = int(max_lease_duration_s)
        self._reconnect_delay_s = max(0.0, float(reconnect_delay_s))

        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._future: Any = None
        self._thread: Optional[threading.Thread] = None
        self._subscribe_count = 0

    @property
    def running(self) -> bool:
        t = self._thread
        return bool(t is not None and t.is_alive())

    @property
    def subscribe_count(self) -> int:
        with self._lock:
            return self._subscribe_count

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name="subscription-runner", daemon=True)
        self._thread.start()

    def stop(self, *, timeout_s: float = 30.0) -> bool:
        """
        Stop intake and drain: in-flight handlers finish before the loop exits.

        Returns True if the loop thread exited within `timeout_s`.
        """
        self._stop.set()
        with self._lock:
            future = self._future
        if future is not None:
            future.cancel()
        t = self._thread
        if t is None:
            return True
        t.join(timeout=max(0.0, float(timeout_s)))
        drained = not t.is_alive()
        log_event(
            logger,
            "subscription.stopped",
            severity="INFO" if drained else "WARNING",
            subscription=self._channel.subscription_path,
            drained=drained,
        )
        return drained

    def _open(self) -> Any:
        future = self._channel.subscribe(
            self._handler,
            max_in_flight=self._max_in_flight,
            max_lease_duration_s=self._max_lease_duration_s,
        )
        with self._lock:
            self._future = future
            self._subscribe_count += 1
        # stop() may have run between subscribe() and publishing the future.
        if self._stop.is_set():
            future.cancel()
        return future

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                future = self._open()
                log_event(
                    logger,
                    "subscription.started",
                    severity="INFO",
                    subscription=self._channel.subscription_path,
                    maxInFlight=self._max_in_flight,
                    maxLeaseDurationS=self._max_lease_duration_s,
                )
                future.result()
            except Exception as e:
                if self._stop.is_set():
                    break
                self._stats.record_error("channel")
                log_event(
                    logger,
                    "subscription.error",
                    severity="ERROR",
                    subscription=self._channel.subscription_path,
                    errorType=e.__class__.__name__,
                    errorCode=exc_code(e),
                    error=str(e),
                    reconnectDelayS=self._reconnect_delay_s,
                )
            else:
                if self._stop.is_set():
                    break
                log_event(
                    logger,
                    "subscription.closed",
                    severity="WARNING",
                    subscription=self._channel.subscription_path,
                    reconnectDelayS=self._reconnect_delay_s,
                )
            finally:
                with self._lock:
                    self._future = None
            self._stop.wait(self._reconnect_delay_s)
        log_event(logger, "subscription.closed", severity="INFO", subscription=self._channel.subscription_path)
