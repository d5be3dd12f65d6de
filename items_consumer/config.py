from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional

from items_consumer import __version__
from items_consumer.errors import ConfigError


DEFAULT_SUBSCRIPTION = "dogfydiet-dev-items-subscription"
DEFAULT_COLLECTION = "items"
DEFAULT_SERVICE_NAME = "items-consumer"

PROJECT_ENV_ALIASES = ("GOOGLE_CLOUD_PROJECT", "GCP_PROJECT", "GCP_PROJECT_ID", "PROJECT_ID")


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.getenv(name)
    if v is None:
        return default
    v = v.strip()
    return v if v else default


def _int_env(name: str, default: int, *, lo: int, hi: int) -> int:
    try:
        v = int(_env(name, str(default)) or default)
    except ValueError:
        v = default
    return max(lo, min(hi, v))


def _float_env(name: str, default: float, *, lo: float = 0.0) -> float:
    try:
        v = float(_env(name, str(default)) or default)
    except ValueError:
        v = default
    return max(lo, v)


@dataclass(frozen=True)
class Config:
    project_id: str
    subscription_id: str
    firestore_database: str
    firestore_collection: str
    service_name: str
    consumer_identity: str
    service_version: str
    env: str
    log_level: str
    port: int
    max_in_flight: int
    ack_deadline_s: int
    max_lease_duration_s: int
    reconnect_delay_s: float
    shutdown_drain_timeout_s: float
    ready_probe_timeout_s: float
    store_write_timeout_s: float


def load_config_from_env() -> Config:
    """
    Build the consumer config from the process environment.

    Raises ConfigError if no project id is available under any accepted name.
    """
    project_id = ""
    for name in PROJECT_ENV_ALIASES:
        project_id = _env(name) or ""
        if project_id:
            break
    if not project_id:
        raise ConfigError(f"Missing required env var: one of {', '.join(PROJECT_ENV_ALIASES)}")

    service_name = _env("SERVICE_NAME", DEFAULT_SERVICE_NAME) or DEFAULT_SERVICE_NAME

    return Config(
        project_id=project_id,
        subscription_id=_env("PUBSUB_SUBSCRIPTION", DEFAULT_SUBSCRIPTION) or DEFAULT_SUBSCRIPTION,
        firestore_database=_env("FIRESTORE_DATABASE", "(default)") or "(default)",
        firestore_collection=_env("FIRESTORE_COLLECTION", DEFAULT_COLLECTION) or DEFAULT_COLLECTION,
        service_name=service_name,
        consumer_identity=_env("CONSUMER_IDENTITY", service_name) or service_name,
        service_version=_env("SERVICE_VERSION", __version__) or __version__,
        env=_env("ENV", "development") or "development",
        log_level=(_env("LOG_LEVEL", "INFO") or "INFO").upper(),
        port=_int_env("PORT", 3001, lo=1, hi=65535),
        max_in_flight=_int_env("MAX_IN_FLIGHT", 10, lo=1, hi=1000),
        # Pub/Sub accepts ack deadlines between 10s and 600s.
        ack_deadline_s=_int_env("ACK_DEADLINE_S", 60, lo=10, hi=600),
        max_lease_duration_s=_int_env("MAX_LEASE_DURATION_S", 600, lo=10, hi=86400),
        reconnect_delay_s=_float_env("RECONNECT_DELAY_S", 5.0),
        shutdown_drain_timeout_s=_float_env("SHUTDOWN_DRAIN_TIMEOUT_S", 30.0),
        ready_probe_timeout_s=_float_env("READY_PROBE_TIMEOUT_S", 5.0, lo=0.1),
        store_write_timeout_s=_float_env("STORE_WRITE_TIMEOUT_S", 30.0, lo=0.1),
    )
