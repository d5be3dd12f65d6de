"""
Structured JSON logging + request IDs (stdlib-only).

Goals:
- One JSON object per log line (stdout), ingested by Cloud Logging as jsonPayload
- Consistent core fields: service, env, version, request_id, event_type, severity
- FastAPI middleware that reads/propagates X-Request-ID and emits one
  http.request log line per request
"""

from __future__ import annotations

import json
import logging
import os
import sys
import time
import traceback
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Iterator, Optional


_REQUEST_ID: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

_RESERVED_ATTRS: frozenset[str] = frozenset(
    {
        # logging.LogRecord built-ins
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        # our injected keys
        "service",
        "env",
        "version",
        "request_id",
        "event_type",
        "severity",
        "message",
        "timestamp",
    }
)

_SEVERITIES = {"DEFAULT", "DEBUG", "INFO", "NOTICE", "WARNING", "ERROR", "CRITICAL", "ALERT", "EMERGENCY"}

# Cloud Logging severities without a stdlib level map onto the nearest one.
_SEVERITY_LEVELS = {
    "NOTICE": logging.INFO,
    "ALERT": logging.CRITICAL,
    "EMERGENCY": logging.CRITICAL,
}


def _utc_ts() -> str:
    return datetime.now(timezone.utc).isoformat()


def _clean_text(v: Any, *, max_len: int = 2000) -> str:
    try:
        s = "" if v is None else str(v)
    except Exception:
        s = ""
    s = s.replace("\n", " ").replace("\r", " ").strip()
    if len(s) > max_len:
        s = s[: max_len - 1] + "…"
    return s


def _normalize_severity(level: str | int | None) -> str:
    if isinstance(level, int):
        return _normalize_severity(str(logging.getLevelName(level)))
    s = _clean_text(level or "INFO", max_len=16).upper()
    if s in _SEVERITIES:
        return s
    if s == "WARN":
        return "WARNING"
    if s == "FATAL":
        return "CRITICAL"
    return "INFO"


def get_request_id() -> Optional[str]:
    rid = _REQUEST_ID.get()
    return _clean_text(rid, max_len=128) if rid else None


@contextmanager
def bind_request_id(*, request_id: str | None = None) -> Iterator[str]:
    rid = _clean_text(request_id or "", max_len=128) or uuid.uuid4().hex
    token = _REQUEST_ID.set(rid)
    try:
        yield rid
    finally:
        _REQUEST_ID.reset(token)


class JsonLogFormatter(logging.Formatter):
    def __init__(self, *, service: str, env: str, version: str) -> None:
        super().__init__()
        self._service = _clean_text(service, max_len=128) or "unknown"
        self._env = _clean_text(env, max_len=64) or "unknown"
        self._version = _clean_text(version, max_len=128) or "unknown"

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (format required by logging)
        payload: dict[str, Any] = {
            "timestamp": _utc_ts(),
            "severity": _normalize_severity(getattr(record, "severity", None) or record.levelname),
            "service": self._service,
            "env": self._env,
            "version": self._version,
            "request_id": _clean_text(getattr(record, "request_id", None) or get_request_id() or "", max_len=128) or None,
            "event_type": _clean_text(getattr(record, "event_type", None) or "", max_len=128) or "log",
            "message": _clean_text(record.getMessage(), max_len=4000),
            "logger": _clean_text(record.name, max_len=256),
        }

        if record.exc_info:
            payload["exception"] = "".join(traceback.format_exception(*record.exc_info))[-8000:]
        elif record.stack_info:
            payload["stack"] = _clean_text(record.stack_info, max_len=8000)

        # Extra fields provided via logger.*(..., extra={...})
        for k, v in record.__dict__.items():
            if k in _RESERVED_ATTRS or k.startswith("_"):
                continue
            payload[str(k)] = v

        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False, default=str)


def _route_uvicorn_through_root() -> None:
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        lg = logging.getLogger(name)
        lg.handlers = []
        lg.propagate = True


def init_structured_logging(
    *,
    service: str,
    env: str,
    version: str,
    level: str | int | None = None,
) -> None:
    """
    Configure stdlib logging to emit JSON lines to stdout.

    Safe to call multiple times (last call wins).
    """
    lvl = level or os.getenv("LOG_LEVEL", "INFO").upper()
    root = logging.getLogger()
    root.setLevel(lvl)

    root.handlers = []
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(lvl)
    handler.setFormatter(JsonLogFormatter(service=service, env=env, version=version))
    root.addHandler(handler)

    logging.captureWarnings(True)
    _route_uvicorn_through_root()


def log_event(
    logger: logging.Logger,
    event_type: str,
    *,
    severity: str = "INFO",
    message: str | None = None,
    exc_info: bool = False,
    **fields: Any,
) -> None:
    """
    Convenience wrapper for semantic events with stable `event_type`.
    """
    sev = _normalize_severity(severity)
    lvl = _SEVERITY_LEVELS.get(sev) or getattr(logging, sev, logging.INFO)
    logger.log(
        lvl,
        message or event_type,
        exc_info=exc_info,
        extra={"event_type": _clean_text(event_type, max_len=128), "severity": sev, **fields},
    )


def install_fastapi_request_id_middleware(app: Any) -> None:
    """
    FastAPI middleware:
    - Read/propagate X-Request-ID
    - Bind request_id for the request lifetime (available to handlers via get_request_id)
    - Emit one http.request JSON log line per request
    """
    from starlette.requests import Request  # noqa: WPS433

    http_logger = logging.getLogger("http")

    @app.middleware("http")
    async def _request_id_mw(request: Request, call_next):  # type: ignore[no-untyped-def]
        incoming = request.headers.get("x-request-id")
        start = time.perf_counter()
        status_code = 500
        with bind_request_id(request_id=incoming) as rid:
            request.state.request_id = rid
            try:
                resp = await call_next(request)
                status_code = int(getattr(resp, "status_code", 200))
            finally:
                log_event(
                    http_logger,
                    "http.request",
                    severity="INFO",
                    request_id=rid,
                    method=request.method,
                    path=str(request.url.path),
                    status_code=status_code,
                    duration_ms=int(max(0.0, (time.perf_counter() - start) * 1000.0)),
                )
        resp.headers["X-Request-ID"] = rid
        return resp
