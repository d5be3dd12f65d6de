from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


@dataclass(frozen=True)
class Delivery:
    """
    One delivery attempt of a Pub/Sub message.

    `ack_handle` is the transport's message object (anything exposing `ack()`,
    `nack()` and `modify_ack_deadline(seconds)`); only DeliveryAcknowledger
    should call it.
    """

    delivery_id: str
    payload: bytes
    attributes: dict[str, str]
    ack_handle: Any
    publish_time: Optional[datetime] = None
    delivery_attempt: Optional[int] = None
    received_monotonic: float = field(default_factory=time.monotonic)

    def held_for_s(self) -> float:
        return max(0.0, time.monotonic() - self.received_monotonic)

    @staticmethod
    def from_pubsub_message(message: Any) -> "Delivery":
        attrs: dict[str, str] = {}
        for k, v in dict(getattr(message, "attributes", {}) or {}).items():
            attrs[str(k)] = "" if v is None else str(v)

        publish_time = getattr(message, "publish_time", None)
        if isinstance(publish_time, datetime) and publish_time.tzinfo is None:
            publish_time = publish_time.replace(tzinfo=timezone.utc)
        elif not isinstance(publish_time, datetime):
            publish_time = None

        attempt = getattr(message, "delivery_attempt", None)

        return Delivery(
            delivery_id=str(getattr(message, "message_id", "") or ""),
            payload=bytes(getattr(message, "data", b"") or b""),
            attributes=attrs,
            ack_handle=message,
            publish_time=publish_time,
            delivery_attempt=int(attempt) if isinstance(attempt, int) else None,
        )
