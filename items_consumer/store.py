from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from google.cloud import firestore

from items_consumer.delivery import Delivery
from items_consumer.errors import StoreError, exc_code, is_transient
from items_consumer.models import ItemEvent


def build_document(
    event: ItemEvent,
    delivery: Delivery,
    *,
    processed_by: str,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """
    Stored shape: the event fields as delivered + processing metadata.
    """
    ts = now or datetime.now(timezone.utc)
    doc = event.to_fields()
    doc.update(
        {
            "processedAt": ts.isoformat(),
            "processedBy": str(processed_by),
            "messageId": delivery.delivery_id,
            "messageAttributes": dict(delivery.attributes),
        }
    )
    return doc


class FirestoreItemStore:
    """
    Merge-upserts item documents keyed by item id.

    Redelivery safety comes from the key + merge semantics: writing the same id
    again converges to one document, and fields missing from a later write
    keep their earlier values. There is no retry here (the client's own retry
    is disabled too); a failed write surfaces as StoreError and the delivery is
    nacked so Pub/Sub redelivers it.
    """

    def __init__(
        self,
        *,
        collection: str,
        project_id: Optional[str] = None,
        database: str = "(default)",
        client: Any = None,
        write_timeout_s: float = 30.0,
    ) -> None:
        if client is None:
            client = firestore.Client(project=project_id, database=database)
        self._db = client
        self._collection = str(collection)
        self._write_timeout_s = float(write_timeout_s)

    @property
    def collection(self) -> str:
        return self._collection

    def upsert(self, item_id: str, document: dict[str, Any]) -> None:
        ref = self._db.collection(self._collection).document(item_id)
        try:
            ref.set(document, merge=True, retry=None, timeout=self._write_timeout_s)
        except Exception as e:
            raise StoreError(
                f"firestore write failed for {self._collection}/{item_id}: {e.__class__.__name__}: {e}",
                code=exc_code(e),
                transient=is_transient(e),
            ) from e

    def check_reachable(self, *, timeout_s: float) -> None:
        """
        Cheap existence probe: read at most one document. Never writes.
        """
        try:
            list(self._db.collection(self._collection).limit(1).get(timeout=timeout_s))
        except Exception as e:
            raise StoreError(
                f"firestore unreachable: {e.__class__.__name__}: {e}",
                code=exc_code(e),
                transient=is_transient(e),
            ) from e

    def close(self) -> None:
        close = getattr(self._db, "close", None)
        if callable(close):
            close()
