from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


class SubscriptionCheck(Protocol):
    def check_subscription(self, *, timeout_s: float) -> None: ...


class StoreCheck(Protocol):
    def check_reachable(self, *, timeout_s: float) -> None: ...


@dataclass(frozen=True)
class ReadinessReport:
    checks: dict[str, str]
    failing: list[str] = field(default_factory=list)

    @property
    def ready(self) -> bool:
        return not self.failing

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"status": "ready" if self.ready else "not ready", "checks": dict(self.checks)}
        if self.failing:
            out["failing"] = list(self.failing)
        return out


class ReadinessProbe:
    """
    Dependency reachability for traffic gating.

    Read-only: looks up subscription metadata and reads at most one store
    document. It never pulls, acks or writes.
    """

    def __init__(self, *, channel: SubscriptionCheck, store: StoreCheck, timeout_s: float = 5.0) -> None:
        self._channel = channel
        self._store = store
        self._timeout_s = float(timeout_s)

    def check(self) -> ReadinessReport:
        checks: dict[str, str] = {}
        failing: list[str] = []
        for name, fn in (
            ("pubsub", self._channel.check_subscription),
            ("firestore", self._store.check_reachable),
        ):
            try:
                fn(timeout_s=self._timeout_s)
                checks[name] = "connected"
            except Exception as e:
                checks[name] = f"error: {e}"
                failing.append(name)
        return ReadinessReport(checks=checks, failing=failing)
