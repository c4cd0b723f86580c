"""Tests for EventBroadcaster: per-apparatus fan-out on a worker thread."""

import threading
from uuid import uuid4

import pytest

from firestock_kernel.domain.events import CheckCompletedEvent
from firestock_kernel.services.event_broadcaster import EventBroadcaster
from tests.conftest import EventCollector


def _completed(apparatus_id):
    return CheckCompletedEvent(apparatus_id=apparatus_id, check_id=uuid4())


class TestSubscribe:

    def test_event_delivered_to_subscribers_of_apparatus(self, broadcaster):
        apparatus_id = uuid4()
        first, second, other = EventCollector(), EventCollector(), EventCollector()
        broadcaster.subscribe(apparatus_id, first)
        broadcaster.subscribe(apparatus_id, second)
        broadcaster.subscribe(uuid4(), other)

        event = _completed(apparatus_id)
        assert broadcaster.publish(event) == 2
        assert broadcaster.drain()

        assert first.events == [event]
        assert second.events == [event]
        assert other.events == []

    def test_publish_without_subscribers(self, broadcaster):
        assert broadcaster.publish(_completed(uuid4())) == 0

    def test_delivery_in_publish_order(self, broadcaster):
        apparatus_id = uuid4()
        collector = EventCollector()
        broadcaster.subscribe(apparatus_id, collector)
        events = [_completed(apparatus_id) for _ in range(20)]
        for event in events:
            broadcaster.publish(event)
        broadcaster.drain()
        assert collector.events == events

    def test_unsubscribe_removes_empty_entry(self, broadcaster):
        apparatus_id = uuid4()
        subscription = broadcaster.subscribe(apparatus_id, EventCollector())
        assert broadcaster.has_subscribers(apparatus_id)

        assert subscription.unsubscribe()
        assert not subscription.active
        assert broadcaster.subscriber_count(apparatus_id) == 0
        assert not subscription.unsubscribe()

    def test_unsubscribed_handler_receives_nothing_new(self, broadcaster):
        apparatus_id = uuid4()
        collector = EventCollector()
        subscription = broadcaster.subscribe(apparatus_id, collector)
        subscription.unsubscribe()
        broadcaster.publish(_completed(apparatus_id))
        broadcaster.drain()
        assert collector.events == []


class TestFailureIsolation:

    def test_failing_handler_does_not_block_others(self, broadcaster, captured_logs):
        apparatus_id = uuid4()

        def _broken(event):
            raise RuntimeError("socket closed")

        healthy = EventCollector()
        broadcaster.subscribe(apparatus_id, _broken)
        broadcaster.subscribe(apparatus_id, healthy)

        broadcaster.publish(_completed(apparatus_id))
        broadcaster.drain()

        assert len(healthy.events) == 1
        failures = [r for r in captured_logs() if r["message"] == "event_handler_failed"]
        assert failures and failures[0]["exc_message"] == "socket closed"
        assert failures[0]["event_type"] == "CheckCompletedEvent"

    def test_slow_handler_does_not_block_publisher(self, broadcaster):
        apparatus_id = uuid4()
        release = threading.Event()
        broadcaster.subscribe(apparatus_id, lambda event: release.wait(5))

        broadcaster.publish(_completed(apparatus_id))
        assert not broadcaster.drain(timeout=0.05)

        release.set()
        assert broadcaster.drain()


class TestLifecycle:

    def test_publish_starts_worker(self):
        broadcaster = EventBroadcaster(name="lazy-broadcaster")
        apparatus_id = uuid4()
        collector = EventCollector()
        broadcaster.subscribe(apparatus_id, collector)
        try:
            assert not broadcaster.is_running
            broadcaster.publish(_completed(apparatus_id))
            assert broadcaster.drain()
            assert broadcaster.is_running
            assert len(collector.events) == 1
        finally:
            broadcaster.stop()

    def test_stop_delivers_queued_events(self):
        broadcaster = EventBroadcaster()
        broadcaster.start()
        apparatus_id = uuid4()
        collector = EventCollector()
        broadcaster.subscribe(apparatus_id, collector)
        for _ in range(5):
            broadcaster.publish(_completed(apparatus_id))
        broadcaster.stop()
        assert not broadcaster.is_running
        assert len(collector.events) == 5

    @pytest.mark.parametrize("publishers", [4])
    def test_concurrent_publishers(self, broadcaster, publishers):
        apparatus_id = uuid4()
        collector = EventCollector()
        broadcaster.subscribe(apparatus_id, collector)
        barrier = threading.Barrier(publishers)

        def _publish():
            barrier.wait()
            for _ in range(25):
                broadcaster.publish(_completed(apparatus_id))

        threads = [threading.Thread(target=_publish) for _ in range(publishers)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        broadcaster.drain()
        assert len(collector.events) == publishers * 25

    def test_stop_timeout_keeps_single_worker(self, captured_logs):
        broadcaster = EventBroadcaster(name="stuck-broadcaster")
        apparatus_id = uuid4()
        release = threading.Event()
        collector = EventCollector()
        broadcaster.subscribe(apparatus_id, lambda event: release.wait(5))
        broadcaster.subscribe(apparatus_id, collector)
        broadcaster.publish(_completed(apparatus_id))
        worker = broadcaster._thread

        try:
            assert broadcaster.stop(timeout=0.05) is False
            assert broadcaster.is_running
            assert broadcaster._thread is worker

            # A publish while the stuck worker is alive must not start another.
            broadcaster.publish(_completed(apparatus_id))
            assert broadcaster._thread is worker
            assert [r for r in captured_logs() if r["message"] == "event_broadcaster_stop_timeout"]
        finally:
            release.set()

        assert broadcaster.stop() is True
        assert not worker.is_alive()
        assert not broadcaster.is_running
        assert len(collector.events) == 1

        # Deliveries queued behind the stop go out once a new worker starts.
        broadcaster.start()
        try:
            assert broadcaster.drain()
            assert len(collector.events) == 2
        finally:
            broadcaster.stop()
