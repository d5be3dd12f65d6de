from __future__ import annotations

import enum
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from items_consumer.acknowledger import DeliveryAcknowledger
from items_consumer.decoder import decode_delivery
from items_consumer.delivery import Delivery
from items_consumer.errors import PipelineError, StoreError, ValidationError
from items_consumer.stats import StatsTracker
from items_consumer.store import build_document
from items_consumer.structured_logging import log_event
from items_consumer.validator import validate_event

logger = logging.getLogger(__name__)


class ItemStore(Protocol):
    def upsert(self, item_id: str, document: dict[str, Any]) -> None: ...


class Outcome(str, enum.Enum):
    ACKED = "acked"
    NACKED = "nacked"


@dataclass(frozen=True)
class ProcessingResult:
    delivery_id: str
    outcome: Outcome
    item_id: Optional[str] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None
    violations: list[str] = field(default_factory=list)
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.ACKED


def _ms_since(start: float) -> int:
    return int(max(0.0, (time.monotonic() - start) * 1000.0))


class MessageProcessor:
    """
    decode -> validate -> store -> stats -> ack, for one delivery.

    Every delivery ends in exactly one stats update and exactly one ack/nack.
    No exception escapes `process`: per-message failures are terminal for the
    attempt and are nacked so the channel redelivers.
    """

    def __init__(
        self,
        *,
        store: ItemStore,
        stats: StatsTracker,
        processed_by: str,
        ack_deadline_s: int = 60,
    ) -> None:
        self._store = store
        self._stats = stats
        self._processed_by = str(processed_by)
        self._ack_deadline_s = int(ack_deadline_s)

    def process(self, delivery: Delivery) -> ProcessingResult:
        started = time.monotonic()
        acker = DeliveryAcknowledger(delivery, ack_deadline_s=self._ack_deadline_s)
        item_id: Optional[str] = None

        log_event(
            logger,
            "message.received",
            severity="DEBUG",
            messageId=delivery.delivery_id,
            eventType=delivery.attributes.get("eventType"),
            source=delivery.attributes.get("source"),
            deliveryAttempt=delivery.delivery_attempt,
        )

        try:
            record = decode_delivery(delivery)
            raw_id = record.get("id")
            item_id = raw_id if isinstance(raw_id, str) else None
            event = validate_event(record)
            item_id = event.id
            acker.extend_deadline_if_due()
            document = build_document(event, delivery, processed_by=self._processed_by)
            self._store.upsert(event.id, document)
        except Exception as e:
            return self._fail(delivery, acker, e, item_id=item_id, started=started)

        self._stats.record_success()
        duration_ms = _ms_since(started)
        log_event(
            logger,
            "message.processed",
            severity="INFO",
            messageId=delivery.delivery_id,
            itemId=event.id,
            category=event.category.value,
            processingTimeMs=duration_ms,
        )
        acker.ack()
        return ProcessingResult(
            delivery_id=delivery.delivery_id,
            outcome=Outcome.ACKED,
            item_id=event.id,
            duration_ms=duration_ms,
        )

    def _fail(
        self,
        delivery: Delivery,
        acker: DeliveryAcknowledger,
        exc: Exception,
        *,
        item_id: Optional[str],
        started: float,
    ) -> ProcessingResult:
        kind = exc.kind if isinstance(exc, PipelineError) else "internal"
        self._stats.record_error(kind)
        violations = [str(v) for v in exc.violations] if isinstance(exc, ValidationError) else []
        duration_ms = _ms_since(started)

        fields: dict[str, Any] = {
            "messageId": delivery.delivery_id,
            "itemId": item_id,
            "errorKind": kind,
            "errorType": exc.__class__.__name__,
            "error": str(exc),
            "deliveryAttempt": delivery.delivery_attempt,
            "processingTimeMs": duration_ms,
        }
        if violations:
            fields["violations"] = violations
        if isinstance(exc, StoreError):
            fields["storeCode"] = exc.code
            fields["transient"] = exc.transient
        if isinstance(exc, PipelineError) and exc.permanent:
            # Redelivery cannot fix these; surfaced for operators until a
            # dead-letter policy exists on the subscription.
            fields["dlq_candidate"] = True

        log_event(
            logger,
            "message.failed",
            severity="ERROR",
            exc_info=not isinstance(exc, PipelineError),
            **fields,
        )
        acker.nack()
        return ProcessingResult(
            delivery_id=delivery.delivery_id,
            outcome=Outcome.NACKED,
            item_id=item_id,
            error_kind=kind,
            error=str(exc),
            violations=violations,
            duration_ms=duration_ms,
        )
