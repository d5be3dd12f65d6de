from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable

from google.cloud import pubsub_v1
from google.cloud.pubsub_v1.subscriber.scheduler import ThreadScheduler

from items_consumer.delivery import Delivery
from items_consumer.errors import ChannelError, exc_code


DeliveryHandler = Callable[[Delivery], Any]


class PubSubChannel:
    """
    Pull-side view of one Pub/Sub subscription.

    `subscriber_client` may be injected (tests, emulator wiring); otherwise a
    SubscriberClient is built from Application Default Credentials.
    """

    def __init__(
        self,
        *,
        project_id: str,
        subscription_id: str,
        subscriber_client: Any = None,
    ) -> None:
        self.project_id = str(project_id)
        self.subscription_id = str(subscription_id)
        if subscriber_client is None:
            subscriber_client = pubsub_v1.SubscriberClient()
        self._client = subscriber_client
        self._subscription_path = self._client.subscription_path(self.project_id, self.subscription_id)

    @property
    def subscription_path(self) -> str:
        return self._subscription_path

    def subscribe(
        self,
        handler: DeliveryHandler,
        *,
        max_in_flight: int,
        max_lease_duration_s: int,
    ) -> Any:
        """
        Open a streaming pull and return its StreamingPullFuture.

        At most `max_in_flight` messages are leased and at most that many
        handlers run at once. Cancelling the future waits for running handlers
        to finish before it resolves.
        """
        bound = max(1, int(max_in_flight))
        flow = pubsub_v1.types.FlowControl(
            max_messages=bound,
            max_lease_duration=int(max_lease_duration_s),
        )
        scheduler = ThreadScheduler(
            executor=ThreadPoolExecutor(max_workers=bound, thread_name_prefix="items-consumer-handler")
        )

        def _callback(message: Any) -> None:
            handler(Delivery.from_pubsub_message(message))

        return self._client.subscribe(
            self._subscription_path,
            callback=_callback,
            flow_control=flow,
            scheduler=scheduler,
            await_callbacks_on_shutdown=True,
        )

    def check_subscription(self, *, timeout_s: float) -> None:
        """
        Metadata lookup only; never pulls or acks messages.
        """
        try:
            self._client.get_subscription(request={"subscription": self._subscription_path}, timeout=timeout_s)
        except Exception as e:
            raise ChannelError(
                f"subscription {self._subscription_path} unavailable: {e.__class__.__name__}: {e}",
                code=exc_code(e),
            ) from e

    def close(self) -> None:
        self._client.close()
