"""Chat synchronisation: optimistic sends, refetch polling and push merges."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, List

from ..backend.base import Backend, new_client_id
from ..config import CHAT_POLL_INTERVAL_SECONDS
from ..errors import (
    AuthorizationError,
    ConflictError,
    FitMatchError,
    NotFoundError,
    TransportError,
    ValidationError,
)
from ..models import Chat, Message
from ..notifications import Notifier
from ..realtime import Subscription, SubscriptionRegistry
from ..store import EntityStore

GENERIC_SEND_FAILURE = "Message could not be sent. Tap to retry."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _last_activity(chat: Chat) -> datetime:
    confirmed = [m.timestamp for m in chat.messages if m.is_confirmed]
    return max(confirmed) if confirmed else datetime.min.replace(tzinfo=timezone.utc)


class ChatService:
    """Owns every chat read and write for the signed-in client."""

    def __init__(
        self,
        store: EntityStore,
        backend: Backend,
        notifier: Notifier,
        *,
        clock: Callable[[], datetime] = _utcnow,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._backend = backend
        self._notifier = notifier
        self._clock = clock
        self._log = logger or logging.getLogger(self.__class__.__name__)
        self._registry = SubscriptionRegistry(backend.subscribe_messages, self.apply_incoming)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def get_chat(self, activity_id: str) -> Chat | None:
        return self._store.get_chat(activity_id)

    def can_send(self, activity_id: str, user_id: str) -> bool:
        activity = self._store.get_activity(activity_id)
        return (
            activity is not None
            and activity.has_participant(user_id)
            and self._store.has_chat(activity_id)
        )

    def visible_chats(self, user_id: str) -> List[Chat]:
        """Chats the user takes or took part in, most recently active first.

        Former participants keep read access to the history.
        """

        visible: List[Chat] = []
        for chat in self._store.list_chats():
            activity = self._store.get_activity(chat.activity_id)
            current = activity is not None and activity.has_participant(user_id)
            if current or user_id in chat.members:
                visible.append(chat)
        visible.sort(key=_last_activity, reverse=True)
        return visible

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------
    def send_message(self, activity_id: str, sender_id: str, text: str) -> Message:
        """Append a pending message and confirm it with the backend.

        Returns the confirmed record, or the local record marked ``failed``
        when the backend could not be reached. Rejections raise.
        """

        try:
            if not text or not text.strip():
                raise ValidationError("Message is empty", {"text": "Message is empty."})
            activity = self._store.get_activity(activity_id)
            if activity is None:
                raise NotFoundError(f"Activity {activity_id} not found")
            if not self._store.has_chat(activity_id):
                raise NotFoundError("This activity has no chat yet")
            if not activity.has_participant(sender_id):
                raise AuthorizationError("Only current participants can send messages")
        except FitMatchError as exc:
            self._notifier.notify(str(exc), "error")
            raise

        client_id = new_client_id()
        pending = Message(
            id=client_id,
            sender_id=sender_id,
            text=text,
            timestamp=self._clock(),
            status="pending",
            client_id=client_id,
        )
        self._store.merge_message(activity_id, pending)
        return self._deliver(activity_id, pending)

    def retry_message(self, activity_id: str, client_id: str) -> Message:
        chat = self._store.get_chat(activity_id)
        message = chat.find_message(client_id=client_id) if chat is not None else None
        if message is None:
            raise NotFoundError(f"Message {client_id} not found")
        if message.status != "failed":
            raise ConflictError("Only failed messages can be retried")
        updated = self._store.set_message_status(activity_id, client_id, "pending")
        return self._deliver(activity_id, updated or message)

    def _deliver(self, activity_id: str, pending: Message) -> Message:
        client_id = pending.client_id or pending.id
        try:
            confirmed = self._backend.post_message(
                activity_id, pending.sender_id or "", pending.text, client_id
            )
        except TransportError as exc:
            self._log.warning(
                "Message %s to chat %s failed in transport: %s", client_id, activity_id, exc
            )
            failed = self._store.set_message_status(activity_id, client_id, "failed")
            self._notifier.notify(GENERIC_SEND_FAILURE, "error")
            if failed is not None:
                return failed
            # A push delivery may already have confirmed the message.
            chat = self._store.get_chat(activity_id)
            existing = chat.find_message(client_id=client_id) if chat else None
            return existing or pending
        except FitMatchError as exc:
            self._store.discard_message(activity_id, client_id)
            self._log.info("Message %s to chat %s rejected: %s", client_id, activity_id, exc)
            self._notifier.notify(str(exc), "error")
            raise
        self._store.merge_message(activity_id, confirmed)
        return confirmed

    # ------------------------------------------------------------------
    # Synchronisation
    # ------------------------------------------------------------------
    def refresh_chats(self) -> List[Chat]:
        """Refetch every chat; unconfirmed local messages survive the swap."""

        try:
            self.sync_chats()
        except FitMatchError as exc:
            self._notifier.notify("Could not load chats.", "error")
            self._log.warning("Chat refresh failed: %s", exc)
            raise
        return self._store.list_chats()

    def sync_chats(self) -> None:
        chats = self._backend.fetch_chats()
        self._store.replace_chats(chats)
        self._log.debug("Refetched %d chats", len(chats))

    def apply_incoming(self, activity_id: str, message: Message) -> None:
        """Merge a pushed record; duplicates of known messages are ignored."""

        if self._store.merge_message(activity_id, message):
            self._log.debug("Merged message %s into chat %s", message.id, activity_id)

    @contextmanager
    def open_chat(self, activity_id: str) -> Iterator[Subscription]:
        """Keep a push subscription for ``activity_id`` open inside the block."""

        handle = self._registry.acquire(activity_id)
        try:
            yield handle
        finally:
            handle.close()

    def subscribe(self, activity_id: str) -> Subscription:
        """Acquire a handle the caller must close."""

        return self._registry.acquire(activity_id)

    def active_subscriptions(self) -> List[str]:
        return self._registry.active()

    def close_all(self) -> None:
        self._registry.close_all()

    def poller(self, interval: float = CHAT_POLL_INTERVAL_SECONDS) -> "ChatPoller":
        return ChatPoller(self, interval=interval)


class ChatPoller:
    """Background refetch loop; stop it (or leave the ``with`` block) to end."""

    def __init__(self, service: ChatService, *, interval: float = CHAT_POLL_INTERVAL_SECONDS):
        self._service = service
        self._interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._log = logging.getLogger(self.__class__.__name__)
        self.runs = 0

    def start(self) -> "ChatPoller":
        if self._thread is not None:
            return self
        self._thread = threading.Thread(target=self._run, name="chat-poller", daemon=True)
        self._thread.start()
        return self

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def poll_once(self) -> None:
        try:
            self._service.sync_chats()
        except FitMatchError as exc:
            self._log.warning("Chat poll failed: %s", exc)
        finally:
            self.runs += 1

    def _run(self) -> None:
        while not self._stop.is_set():
            self.poll_once()
            if self._stop.wait(self._interval):
                break

    def __enter__(self) -> "ChatPoller":
        return self.start()

    def __exit__(self, *_exc: object) -> None:
        self.stop()


__all__ = ["ChatPoller", "ChatService", "GENERIC_SEND_FAILURE"]
