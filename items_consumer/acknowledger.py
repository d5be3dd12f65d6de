from __future__ import annotations

import enum
import logging
import threading

from items_consumer.delivery import Delivery
from items_consumer.structured_logging import log_event

logger = logging.getLogger(__name__)


class AckState(str, enum.Enum):
    RECEIVED = "received"
    ACKED = "acked"
    NACKED = "nacked"


class DeliveryAcknowledger:
    """
    Resolves one delivery exactly once: RECEIVED -> ACKED | NACKED.

    A second ack/nack on a resolved delivery is a caller bug; it is logged and
    ignored so the channel never sees conflicting signals for one message.
    Nack is the only retry mechanism: Pub/Sub redelivers with its own backoff.
    """

    def __init__(self, delivery: Delivery, *, ack_deadline_s: int = 60) -> None:
        self._delivery = delivery
        self._ack_deadline_s = int(ack_deadline_s)
        self._state = AckState.RECEIVED
        self._lock = threading.Lock()

    @property
    def state(self) -> AckState:
        with self._lock:
            return self._state

    def _resolve(self, target: AckState) -> bool:
        with self._lock:
            if self._state is not AckState.RECEIVED:
                current = self._state
            else:
                self._state = target
                current = None
        if current is not None:
            log_event(
                logger,
                "ack.already_resolved",
                severity="WARNING",
                messageId=self._delivery.delivery_id,
                state=current.value,
                attempted=target.value,
            )
            return False
        handle = self._delivery.ack_handle
        if target is AckState.ACKED:
            handle.ack()
        else:
            handle.nack()
        return True

    def ack(self) -> bool:
        return self._resolve(AckState.ACKED)

    def nack(self) -> bool:
        return self._resolve(AckState.NACKED)

    def extend_deadline(self, seconds: int) -> bool:
        with self._lock:
            if self._state is not AckState.RECEIVED:
                return False
            self._delivery.ack_handle.modify_ack_deadline(int(seconds))
        log_event(
            logger,
            "ack.deadline_extended",
            severity="DEBUG",
            messageId=self._delivery.delivery_id,
            seconds=int(seconds),
        )
        return True

    def extend_deadline_if_due(self) -> bool:
        """
        Renew the lease once half of the ack deadline has been spent, so a slow
        write does not let the deadline lapse into a duplicate redelivery.
        """
        if self._delivery.held_for_s() < self._ack_deadline_s / 2.0:
            return False
        return self.extend_deadline(self._ack_deadline_s)
