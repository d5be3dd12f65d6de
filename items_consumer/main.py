"""
items-consumer service entrypoint.

Runtime assumptions (documented for deploy/debug):
- Served by uvicorn (`uvicorn items_consumer.main:app` or `python -m items_consumer`).
- Configuration is read from env at startup (see items_consumer.config); a missing
  project id, unreachable subscription or unreachable Firestore aborts startup
  instead of leaving a process that is "up" but silently not consuming.
- SIGTERM/SIGINT are handled by uvicorn; the lifespan exit drains in-flight
  messages before the Pub/Sub and Firestore clients are closed.
"""

from __future__ import annotations

import asyncio
import logging
import platform
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Optional

import psutil
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from items_consumer.channel import PubSubChannel
from items_consumer.config import Config, load_config_from_env
from items_consumer.pipeline import MessageProcessor
from items_consumer.readiness import ReadinessProbe
from items_consumer.runner import SubscriptionRunner
from items_consumer.stats import StatsTracker
from items_consumer.store import FirestoreItemStore
from items_consumer.structured_logging import (
    init_structured_logging,
    install_fastapi_request_id_middleware,
    log_event,
)

logger = logging.getLogger("items_consumer")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _memory_usage() -> dict[str, Any]:
    proc = psutil.Process()
    mem = proc.memory_info()
    return {
        "rss": mem.rss,
        "vms": mem.vms,
        "rss_mb": round(mem.rss / (1024 * 1024), 2),
        "percent": round(proc.memory_percent(), 2),
    }


def _cpu_usage() -> dict[str, float]:
    # Cumulative CPU seconds for this process.
    times = psutil.Process().cpu_times()
    return {"user": times.user, "system": times.system}


def _request_id(request: Request) -> Optional[str]:
    return getattr(request.state, "request_id", None)


def _close_quietly(name: str, closer: Any) -> None:
    try:
        closer()
    except Exception as e:
        log_event(logger, "shutdown.close_failed", severity="ERROR", resource=name, error=str(e))


def create_app(
    config: Optional[Config] = None,
    *,
    channel: Any = None,
    store: Any = None,
    stats: Optional[StatsTracker] = None,
    start_runner: bool = True,
    configure_logging: bool = True,
) -> FastAPI:
    """
    Build the service app.

    `channel`, `store` and `stats` may be injected (tests, local wiring);
    otherwise Pub/Sub and Firestore clients are created at startup.
    """
    app_stats = stats or StatsTracker()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        try:
            cfg = config or load_config_from_env()
        except Exception as e:
            log_event(logger, "startup.failed", severity="CRITICAL", stage="config", error=str(e))
            raise

        if configure_logging:
            init_structured_logging(
                service=cfg.service_name,
                env=cfg.env,
                version=cfg.service_version,
                level=cfg.log_level,
            )

        ch = None
        try:
            ch = channel or PubSubChannel(project_id=cfg.project_id, subscription_id=cfg.subscription_id)
            st = store or FirestoreItemStore(
                collection=cfg.firestore_collection,
                project_id=cfg.project_id,
                database=cfg.firestore_database,
                write_timeout_s=cfg.store_write_timeout_s,
            )
        except Exception as e:
            log_event(logger, "startup.failed", severity="CRITICAL", stage="clients", error=str(e), exc_info=True)
            if ch is not None:
                _close_quietly("pubsub", ch.close)
            raise

        probe = ReadinessProbe(channel=ch, store=st, timeout_s=cfg.ready_probe_timeout_s)
        report = await asyncio.to_thread(probe.check)
        if not report.ready:
            log_event(
                logger,
                "startup.failed",
                severity="CRITICAL",
                stage="dependencies",
                checks=report.checks,
                failing=report.failing,
            )
            _close_quietly("pubsub", ch.close)
            _close_quietly("firestore", st.close)
            raise RuntimeError(f"startup dependencies unavailable: {', '.join(report.failing)}")

        processor = MessageProcessor(
            store=st,
            stats=app_stats,
            processed_by=cfg.consumer_identity,
            ack_deadline_s=cfg.ack_deadline_s,
        )
        runner = SubscriptionRunner(
            channel=ch,
            handler=processor.process,
            stats=app_stats,
            max_in_flight=cfg.max_in_flight,
            max_lease_duration_s=cfg.max_lease_duration_s,
            reconnect_delay_s=cfg.reconnect_delay_s,
        )

        app.state.config = cfg
        app.state.probe = probe
        app.state.processor = processor
        app.state.runner = runner

        if start_runner:
            runner.start()

        log_event(
            logger,
            "startup",
            severity="INFO",
            subscription=ch.subscription_path,
            firestore_collection=cfg.firestore_collection,
            firestore_database=cfg.firestore_database,
            consumer_identity=cfg.consumer_identity,
            max_in_flight=cfg.max_in_flight,
            ack_deadline_s=cfg.ack_deadline_s,
            max_lease_duration_s=cfg.max_lease_duration_s,
            python_version=platform.python_version(),
        )
        try:
            yield
        finally:
            log_event(logger, "shutdown.begin", severity="INFO")
            await asyncio.to_thread(runner.stop, timeout_s=cfg.shutdown_drain_timeout_s)
            _close_quietly("pubsub", ch.close)
            _close_quietly("firestore", st.close)
            log_event(logger, "shutdown.complete", severity="INFO", stats=app_stats.snapshot().to_dict())

    app = FastAPI(title="Items Consumer (Pub/Sub → Firestore)", lifespan=lifespan)
    app.state.stats = app_stats
    install_fastapi_request_id_middleware(app)

    @app.get("/health")
    async def health() -> dict[str, Any]:
        cfg: Config = app.state.config
        snap = app.state.stats.snapshot()
        return {
            "status": "healthy",
            "timestamp": _utc_now_iso(),
            "service": cfg.service_name,
            "version": cfg.service_version,
            "environment": cfg.env,
            "uptime": snap.uptime_s,
            "memory": _memory_usage(),
            "stats": snap.to_dict(),
        }

    @app.get("/ready")
    async def ready(response: Response) -> dict[str, Any]:
        probe: ReadinessProbe = app.state.probe
        report = await asyncio.to_thread(probe.check)
        if not report.ready:
            log_event(logger, "readiness.failed", severity="ERROR", checks=report.checks, failing=report.failing)
        response.status_code = 200 if report.ready else 503
        return {"timestamp": _utc_now_iso(), **report.to_dict()}

    @app.get("/metrics")
    async def metrics() -> dict[str, Any]:
        cfg: Config = app.state.config
        snap = app.state.stats.snapshot()
        return {
            "timestamp": _utc_now_iso(),
            "uptime": snap.uptime_s,
            "memory": _memory_usage(),
            "cpu": _cpu_usage(),
            "environment": cfg.env,
            "python_version": platform.python_version(),
            "stats": snap.to_dict(),
            "processing_rate": snap.processing_rate,
        }

    @app.get("/api/stats")
    async def api_stats(request: Request) -> dict[str, Any]:
        snap = app.state.stats.snapshot()
        return {
            **snap.to_dict(),
            "uptime": snap.uptime_s,
            "processingRate": round(snap.processing_rate, 2),
            "requestId": _request_id(request),
        }

    @app.exception_handler(StarletteHTTPException)
    async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 404:
            log_event(logger, "http.not_found", severity="WARNING", path=request.url.path, method=request.method)
            return JSONResponse({"error": "Route not found", "requestId": _request_id(request)}, status_code=404)
        return JSONResponse({"error": str(exc.detail), "requestId": _request_id(request)}, status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        log_event(
            logger,
            "http.unhandled_error",
            severity="ERROR",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            errorType=exc.__class__.__name__,
        )
        return JSONResponse({"error": "Internal server error", "requestId": _request_id(request)}, status_code=500)

    return app


app = create_app()
