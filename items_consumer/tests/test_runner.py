from __future__ import annotations

import threading
import time
import unittest

from items_consumer.channel import PubSubChannel
from items_consumer.pipeline import MessageProcessor
from items_consumer.runner import SubscriptionRunner
from items_consumer.stats import StatsTracker
from items_consumer.store import FirestoreItemStore
from items_consumer.tests.fakes import FakeFirestore, FakeSubscriberClient, StatusError, json_message


def _wait_for(predicate, *, timeout_s: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class _SlowStore:
    """Tracks the peak number of concurrent writes."""

    def __init__(self, *, delay_s: float) -> None:
        self.delay_s = delay_s
        self.active = 0
        self.peak = 0
        self.writes = 0
        self._lock = threading.Lock()

    def upsert(self, item_id: str, document: dict) -> None:  # noqa: ARG002
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        time.sleep(self.delay_s)
        with self._lock:
            self.active -= 1
            self.writes += 1


class TestPubSubChannel(unittest.TestCase):
    def test_subscribe_applies_explicit_bound(self) -> None:
        client = FakeSubscriberClient()
        channel = PubSubChannel(project_id="p", subscription_id="items-sub", subscriber_client=client)
        self.assertEqual(channel.subscription_path, "projects/p/subscriptions/items-sub")

        future = channel.subscribe(lambda d: None, max_in_flight=7, max_lease_duration_s=300)
        call = client.subscribe_calls[0]
        self.assertEqual(call["flow_control"].max_messages, 7)
        self.assertEqual(call["flow_control"].max_lease_duration, 300)
        self.assertTrue(call["await_callbacks_on_shutdown"])
        future.cancel()

    def test_check_subscription_wraps_errors(self) -> None:
        from items_consumer.errors import ChannelError

        client = FakeSubscriberClient()
        channel = PubSubChannel(project_id="p", subscription_id="s", subscriber_client=client)
        channel.check_subscription(timeout_s=1.0)
        client.missing_subscription = StatusError("not found", grpc_name="NOT_FOUND", http_code=404)
        with self.assertRaises(ChannelError) as ctx:
            channel.check_subscription(timeout_s=1.0)
        self.assertEqual(ctx.exception.code, "NOT_FOUND")


class TestSubscriptionRunner(unittest.TestCase):
    def _runner(self, client: FakeSubscriberClient, store, stats: StatsTracker, *, max_in_flight: int = 4) -> SubscriptionRunner:
        channel = PubSubChannel(project_id="p", subscription_id="s", subscriber_client=client)
        processor = MessageProcessor(store=store, stats=stats, processed_by="items-consumer")
        return SubscriptionRunner(
            channel=channel,
            handler=processor.process,
            stats=stats,
            max_in_flight=max_in_flight,
            reconnect_delay_s=0.0,
        )

    def test_n_distinct_deliveries_all_processed(self) -> None:
        n = 25
        messages = [json_message(f"m{i}", {"id": f"i{i}", "name": "n", "category": "toys"}) for i in range(n)]
        client = FakeSubscriberClient(messages=messages)
        db = FakeFirestore()
        stats = StatsTracker()
        runner = self._runner(client, FirestoreItemStore(collection="items", client=db), stats)

        runner.start()
        self.assertTrue(_wait_for(lambda: all(m.resolved.is_set() for m in messages)))
        self.assertTrue(runner.stop(timeout_s=5.0))

        snap = stats.snapshot()
        self.assertEqual(snap.messages_processed, n)
        self.assertEqual(snap.errors, 0)
        self.assertEqual(len(db.docs("items")), n)
        self.assertTrue(all(m.acks == 1 and m.nacks == 0 for m in messages))
        self.assertTrue(client.futures[0].cancelled)

    def test_concurrency_never_exceeds_bound(self) -> None:
        messages = [json_message(f"m{i}", {"id": f"i{i}", "name": "n", "category": "food"}) for i in range(12)]
        client = FakeSubscriberClient(messages=messages)
        store = _SlowStore(delay_s=0.05)
        runner = self._runner(client, store, StatsTracker(), max_in_flight=3)

        runner.start()
        self.assertTrue(_wait_for(lambda: all(m.resolved.is_set() for m in messages)))
        runner.stop(timeout_s=5.0)
        self.assertEqual(store.writes, 12)
        self.assertLessEqual(store.peak, 3)
        self.assertGreaterEqual(store.peak, 2)

    def test_channel_error_is_counted_and_resubscribed(self) -> None:
        client = FakeSubscriberClient()
        client.fail_next_subscribe.append(StatusError("stream reset", grpc_name="UNAVAILABLE"))
        stats = StatsTracker()
        runner = self._runner(client, FirestoreItemStore(collection="items", client=FakeFirestore()), stats)

        runner.start()
        self.assertTrue(_wait_for(lambda: runner.subscribe_count >= 2))
        self.assertTrue(runner.running)
        self.assertTrue(runner.stop(timeout_s=5.0))
        self.assertFalse(runner.running)

        snap = stats.snapshot()
        self.assertEqual(snap.errors_by_kind["channel"], 1)
        self.assertEqual(snap.errors, 1)

    def test_stop_drains_in_flight_handlers(self) -> None:
        messages = [json_message(f"m{i}", {"id": f"i{i}", "name": "n", "category": "treats"}) for i in range(2)]
        client = FakeSubscriberClient(messages=messages)
        store = _SlowStore(delay_s=0.3)
        runner = self._runner(client, store, StatsTracker(), max_in_flight=2)

        runner.start()
        self.assertTrue(_wait_for(lambda: store.active == 2))
        self.assertTrue(runner.stop(timeout_s=5.0))
        # Both writes finished and were acked before stop() returned.
        self.assertEqual(store.writes, 2)
        self.assertTrue(all(m.acks == 1 for m in messages))

    def test_stop_before_start_is_noop(self) -> None:
        runner = self._runner(FakeSubscriberClient(), _SlowStore(delay_s=0.0), StatsTracker())
        self.assertTrue(runner.stop(timeout_s=0.1))


if __name__ == "__main__":
    unittest.main()
