"""
Failure taxonomy for the ingestion pipeline.

DecodeError, ValidationError and StoreError are per-delivery: each one ends the
current delivery attempt with a nack. ChannelError belongs to the subscription
as a whole and never maps to a single message.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence


class ConfigError(RuntimeError):
    pass


class PipelineError(Exception):
    kind = "internal"
    # Permanent failures will fail identically on every redelivery.
    permanent = False


class DecodeError(PipelineError):
    kind = "decode"
    permanent = True


@dataclass(frozen=True)
class Violation:
    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


class ValidationError(PipelineError):
    kind = "validation"
    permanent = True

    def __init__(self, violations: Sequence[Violation]) -> None:
        self.violations = list(violations)
        super().__init__("invalid event: " + "; ".join(str(v) for v in self.violations))

    @property
    def fields(self) -> list[str]:
        return [v.field for v in self.violations]


class StoreError(PipelineError):
    kind = "store"

    def __init__(self, message: str, *, code: str = "", transient: bool = False) -> None:
        super().__init__(message)
        self.code = code
        self.transient = transient


class ChannelError(PipelineError):
    kind = "channel"

    def __init__(self, message: str, *, code: str = "") -> None:
        super().__init__(message)
        self.code = code


def exc_code(exc: BaseException) -> str:
    """
    Best-effort extraction of a stable Google/gRPC error code string.
    """
    # google.api_core exceptions carry the HTTP status in `.code`; prefer the gRPC one.
    code = getattr(exc, "grpc_status_code", None) or getattr(exc, "code", None)
    if callable(code):
        try:
            code = code()
        except TypeError:
            return ""
    if code is None:
        return ""
    # grpc.StatusCode has a `.name`
    name = getattr(code, "name", None)
    if isinstance(name, str) and name.strip():
        return name.strip().upper()
    return str(code).strip().upper()


_TRANSIENT_CODES = {"UNAVAILABLE", "DEADLINE_EXCEEDED", "ABORTED", "INTERNAL", "RESOURCE_EXHAUSTED", "UNKNOWN"}
_TRANSIENT_NAMES = {"ServiceUnavailable", "DeadlineExceeded", "InternalServerError", "Aborted", "ResourceExhausted", "Unknown", "RetryError"}


def is_transient(exc: BaseException) -> bool:
    if exc_code(exc) in _TRANSIENT_CODES:
        return True
    return exc.__class__.__name__ in _TRANSIENT_NAMES
