from __future__ import annotations

import json
from typing import Any

from items_consumer.delivery import Delivery
from items_consumer.errors import DecodeError


def decode_payload(raw: bytes) -> dict[str, Any]:
    """
    Parse message bytes into a JSON object.

    Raises DecodeError for empty data, invalid UTF-8, invalid JSON or a
    top-level value that is not an object.
    """
    if not raw:
        raise DecodeError("empty_payload")
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecodeError(f"invalid_utf8: {e}") from e
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as e:
        raise DecodeError(f"invalid_payload_json: {e}") from e
    if not isinstance(payload, dict):
        raise DecodeError(f"payload_not_object: {type(payload).__name__}")
    return payload


def decode_delivery(delivery: Delivery) -> dict[str, Any]:
    return decode_payload(delivery.payload)
