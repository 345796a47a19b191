"""Per-activity message feeds and scoped subscription handles."""

from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List

from .models import Message

LOGGER = logging.getLogger(__name__)

MessageCallback = Callable[[str, Message], None]


class Subscription:
    """Handle for a single subscription; usable as a context manager.

    Closing is idempotent. Once closed, deliveries through ``deliver`` are
    dropped so late callbacks never reach a torn-down consumer.
    """

    def __init__(
        self,
        activity_id: str,
        callback: MessageCallback,
        on_close: Callable[["Subscription"], None] | None = None,
    ) -> None:
        self.activity_id = activity_id
        self._callback = callback
        self._on_close = on_close
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def deliver(self, message: Message) -> None:
        if self._closed.is_set():
            LOGGER.debug(
                "Dropping message %s for closed subscription activity=%s",
                message.id,
                self.activity_id,
            )
            return
        self._callback(self.activity_id, message)

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        if self._on_close is not None:
            self._on_close(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()


class MessageFeed:
    """In-process change feed keyed by activity id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: Dict[str, List[Subscription]] = {}

    def subscribe(self, activity_id: str, callback: MessageCallback) -> Subscription:
        subscription = Subscription(activity_id, callback, on_close=self._remove)
        with self._lock:
            self._subscribers.setdefault(activity_id, []).append(subscription)
        return subscription

    def publish(self, activity_id: str, message: Message) -> None:
        with self._lock:
            targets = list(self._subscribers.get(activity_id, ()))
        for subscription in targets:
            try:
                subscription.deliver(message)
            except Exception:
                LOGGER.warning(
                    "Subscriber callback failed for activity=%s message=%s",
                    activity_id,
                    message.id,
                    exc_info=True,
                )

    def subscriber_count(self, activity_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(activity_id, ()))

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            current = self._subscribers.get(subscription.activity_id)
            if not current:
                return
            remaining = [s for s in current if s is not subscription]
            if remaining:
                self._subscribers[subscription.activity_id] = remaining
            else:
                del self._subscribers[subscription.activity_id]


class SubscriptionRegistry:
    """Reference-counts consumer handles over one upstream subscription per activity.

    ``open_upstream(activity_id, deliver)`` is called on first acquire and the
    returned subscription is closed when the last consumer handle closes.
    """

    def __init__(
        self,
        open_upstream: Callable[[str, MessageCallback], Subscription],
        on_message: MessageCallback,
    ) -> None:
        self._open_upstream = open_upstream
        self._on_message = on_message
        self._lock = threading.RLock()
        self._upstream: Dict[str, Subscription] = {}
        self._handles: Dict[str, List[Subscription]] = {}

    def acquire(self, activity_id: str) -> Subscription:
        with self._lock:
            if activity_id not in self._upstream:
                LOGGER.debug("Opening upstream subscription activity=%s", activity_id)
                self._upstream[activity_id] = self._open_upstream(
                    activity_id, self._dispatch
                )
            handle = Subscription(activity_id, self._on_message, on_close=self._release)
            self._handles.setdefault(activity_id, []).append(handle)
            return handle

    def active(self) -> List[str]:
        with self._lock:
            return sorted(self._upstream)

    def close_all(self) -> None:
        with self._lock:
            handles = [h for group in self._handles.values() for h in group]
        for handle in handles:
            handle.close()

    def _dispatch(self, activity_id: str, message: Message) -> None:
        with self._lock:
            live = bool(self._handles.get(activity_id))
        if live:
            self._on_message(activity_id, message)

    def _release(self, handle: Subscription) -> None:
        upstream: Subscription | None = None
        with self._lock:
            group = [h for h in self._handles.get(handle.activity_id, ()) if h is not handle]
            if group:
                self._handles[handle.activity_id] = group
            else:
                self._handles.pop(handle.activity_id, None)
                upstream = self._upstream.pop(handle.activity_id, None)
        if upstream is not None:
            LOGGER.debug("Closing upstream subscription activity=%s", handle.activity_id)
            upstream.close()


__all__ = ["MessageCallback", "MessageFeed", "Subscription", "SubscriptionRegistry"]
