"""
EventBroadcaster -- per-apparatus fan-out of session events.

Responsibility:
    Keeps a registry of subscribers keyed by apparatus and delivers events
    to them on a dedicated worker thread, so publishers (request threads,
    the sweeper, after-commit hooks) never block on a slow handler.

Architecture position:
    Kernel > Services -- in-memory coordinator, no persistence.

Invariants enforced:
    - publish() snapshots the subscribers registered at call time.
    - Deliveries are processed in publish order by a single worker thread.
    - A failing handler is logged and does not affect other deliveries.
    - Unsubscribing the last handler of an apparatus removes its entry.

Non-goals:
    - No persistence or replay; late subscribers read current state
      through the read accessors instead.
"""

from __future__ import annotations

import queue
import threading
from collections.abc import Callable
from uuid import UUID

from firestock_kernel.domain.events import CheckEvent
from firestock_kernel.logging_config import get_logger

logger = get_logger("services.event_broadcaster")

EventHandler = Callable[[CheckEvent], None]

_STOP = object()


class Subscription:
    """Handle returned by subscribe(); call unsubscribe() to stop receiving."""

    def __init__(self, broadcaster: EventBroadcaster, apparatus_id: UUID, handler: EventHandler):
        self._broadcaster = broadcaster
        self.apparatus_id = apparatus_id
        self.handler = handler
        self.active = True

    def unsubscribe(self) -> bool:
        return self._broadcaster.unsubscribe(self)

    def __repr__(self) -> str:
        return f"<Subscription apparatus={self.apparatus_id} active={self.active}>"


class EventBroadcaster:
    """
    Asynchronous publish/subscribe hub.

    Usage:
        broadcaster = EventBroadcaster()
        broadcaster.start()
        sub = broadcaster.subscribe(apparatus_id, on_event)
        ...
        sub.unsubscribe()
        broadcaster.stop()
    """

    def __init__(self, name: str = "event-broadcaster"):
        self._name = name
        self._lock = threading.Lock()
        self._subscribers: dict[UUID, list[Subscription]] = {}
        self._queue: queue.Queue = queue.Queue()
        self._pending = 0
        self._idle = threading.Condition()
        self._thread: threading.Thread | None = None
        self._stop_sent_to: threading.Thread | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the delivery worker (no-op if already running)."""
        with self._lock:
            if self.is_running:
                return
            self._thread = threading.Thread(
                target=self._run, name=self._name, daemon=True
            )
            self._thread.start()
        logger.info("event_broadcaster_started")

    def stop(self, timeout: float = 5.0) -> bool:
        """
        Deliver what is already queued, then stop the worker.

        Returns False when the worker is still busy after ``timeout``.  It
        then stays registered, so publish() never starts a second worker
        beside it; calling stop() again keeps waiting for the same one.
        """
        with self._lock:
            thread = self._thread
            if thread is None:
                return True
            if self._stop_sent_to is not thread:
                self._stop_sent_to = thread
                self._queue.put(_STOP)
        thread.join(timeout=timeout)
        if thread.is_alive():
            logger.warning("event_broadcaster_stop_timeout", extra={"timeout": timeout})
            return False
        with self._lock:
            if self._thread is thread:
                self._thread = None
        logger.info("event_broadcaster_stopped")
        return True

    def drain(self, timeout: float = 5.0) -> bool:
        """Wait until every queued delivery has been handled."""
        with self._idle:
            return self._idle.wait_for(lambda: self._pending == 0, timeout=timeout)

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def subscribe(self, apparatus_id: UUID, handler: EventHandler) -> Subscription:
        subscription = Subscription(self, apparatus_id, handler)
        with self._lock:
            self._subscribers.setdefault(apparatus_id, []).append(subscription)
        logger.debug("subscriber_added", extra={"apparatus_id": str(apparatus_id)})
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """Remove a subscription; returns False if it was already removed."""
        with self._lock:
            subscription.active = False
            subs = self._subscribers.get(subscription.apparatus_id)
            if not subs or subscription not in subs:
                return False
            subs.remove(subscription)
            if not subs:
                del self._subscribers[subscription.apparatus_id]
        logger.debug(
            "subscriber_removed",
            extra={"apparatus_id": str(subscription.apparatus_id)},
        )
        return True

    def subscriber_count(self, apparatus_id: UUID) -> int:
        with self._lock:
            return len(self._subscribers.get(apparatus_id, ()))

    def has_subscribers(self, apparatus_id: UUID) -> bool:
        return self.subscriber_count(apparatus_id) > 0

    # ------------------------------------------------------------------
    # Publishing
    # ------------------------------------------------------------------

    def publish(self, event: CheckEvent) -> int:
        """
        Queue ``event`` for every current subscriber of its apparatus.

        Returns the number of deliveries queued.  Starts the worker if it
        is not running.
        """
        with self._lock:
            targets = list(self._subscribers.get(event.apparatus_id, ()))
        if not targets:
            return 0

        if not self.is_running:
            self.start()

        with self._idle:
            self._pending += len(targets)
        for subscription in targets:
            self._queue.put((subscription, event))

        logger.debug(
            "event_published",
            extra={"event_type": event.event_type, "deliveries": len(targets)},
        )
        return len(targets)

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            subscription, event = item
            try:
                if subscription.active:
                    subscription.handler(event)
            except Exception:
                logger.exception(
                    "event_handler_failed",
                    extra={
                        "event_type": event.event_type,
                        "apparatus_id": str(event.apparatus_id),
                    },
                )
            finally:
                with self._idle:
                    self._pending -= 1
                    if self._pending == 0:
                        self._idle.notify_all()
