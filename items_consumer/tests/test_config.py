from __future__ import annotations

import pytest

from items_consumer import __version__
from items_consumer.config import load_config_from_env
from items_consumer.errors import ConfigError

_VARS = (
    "GOOGLE_CLOUD_PROJECT",
    "GCP_PROJECT",
    "GCP_PROJECT_ID",
    "PROJECT_ID",
    "PUBSUB_SUBSCRIPTION",
    "FIRESTORE_COLLECTION",
    "SERVICE_NAME",
    "CONSUMER_IDENTITY",
    "SERVICE_VERSION",
    "MAX_IN_FLIGHT",
    "ACK_DEADLINE_S",
    "ENV",
    "LOG_LEVEL",
    "PORT",
    "MAX_LEASE_DURATION_S",
    "FIRESTORE_DATABASE",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults(monkeypatch) -> None:
    monkeypatch.setenv("GOOGLE_CLOUD_PROJECT", "proj")
    cfg = load_config_from_env()
    assert cfg.project_id == "proj"
    assert cfg.subscription_id == "dogfydiet-dev-items-subscription"
    assert cfg.firestore_collection == "items"
    assert cfg.consumer_identity == "items-consumer"
    assert cfg.service_version == __version__
    assert cfg.max_in_flight == 10
    assert cfg.ack_deadline_s == 60
    assert cfg.max_lease_duration_s == 600
    assert cfg.env == "development"


def test_project_alias_and_overrides(monkeypatch) -> None:
    monkeypatch.setenv("GCP_PROJECT", "alias-proj")
    monkeypatch.setenv("SERVICE_NAME", "microservice-2")
    monkeypatch.setenv("MAX_IN_FLIGHT", "5000")
    monkeypatch.setenv("ACK_DEADLINE_S", "not-a-number")
    cfg = load_config_from_env()
    assert cfg.project_id == "alias-proj"
    assert cfg.consumer_identity == "microservice-2"
    assert cfg.max_in_flight == 1000
    assert cfg.ack_deadline_s == 60


def test_missing_project_fails_fast() -> None:
    with pytest.raises(ConfigError):
        load_config_from_env()
