"""In-memory entity store shared by every service.

The store is the single mutable cache of users, sports, activities, events
and chats. Records are replaced rather than mutated in place so callers can
hold on to a previous instance for rollback. Every committed mutation bumps
``version``, which derived views use to invalidate memoised results.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import replace
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from .models import Activity, Chat, Event, Message, MessageStatus, Sport, User

LOGGER = logging.getLogger(__name__)


def _message_sort_key(message: Message) -> Tuple[int, object]:
    # Confirmed records follow server order; local ones stay in insertion order after them.
    if message.is_confirmed:
        return (0, message.timestamp)
    return (1, 0)


class EntityStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._version = 0
        self._depth = 0
        self._dirty = False
        self._users: Dict[str, User] = {}
        self._sports: Dict[str, Sport] = {}
        self._activities: Dict[str, Activity] = {}
        self._events: Dict[str, Event] = {}
        self._chats: Dict[str, Chat] = {}

    # ------------------------------------------------------------------
    # Versioning / transactions
    # ------------------------------------------------------------------
    @property
    def version(self) -> int:
        with self._lock:
            return self._version

    @contextmanager
    def transaction(self) -> Iterator["EntityStore"]:
        """Group several mutations so readers observe them as one change."""

        with self._lock:
            self._depth += 1
            try:
                yield self
            finally:
                self._depth -= 1
                if self._depth == 0 and self._dirty:
                    self._dirty = False
                    self._version += 1

    def _touch(self) -> None:
        if self._depth:
            self._dirty = True
        else:
            self._version += 1

    # ------------------------------------------------------------------
    # Hydration
    # ------------------------------------------------------------------
    def hydrate(
        self,
        *,
        users: Iterable[User] | None = None,
        sports: Iterable[Sport] | None = None,
        activities: Iterable[Activity] | None = None,
        events: Iterable[Event] | None = None,
        chats: Iterable[Chat] | None = None,
    ) -> None:
        """Replace whole collections with snapshots fetched from the backend."""

        with self._lock:
            if users is not None:
                self._users = {u.id: u for u in users}
            if sports is not None:
                self._sports = {s.id: s for s in sports}
            if activities is not None:
                self._activities = {a.id: a for a in activities}
            if events is not None:
                self._events = {e.id: e for e in events}
            if chats is not None:
                self._chats = {}
                for chat in chats:
                    messages = sorted(chat.messages, key=_message_sort_key)
                    self._chats[chat.activity_id] = Chat(
                        chat.activity_id, messages, chat.members
                    )
            self._touch()
        LOGGER.debug(
            "Store hydrated: users=%d sports=%d activities=%d events=%d chats=%d",
            len(self._users),
            len(self._sports),
            len(self._activities),
            len(self._events),
            len(self._chats),
        )

    def clear_user_scoped(self) -> None:
        """Drop caches that belong to the signed-in user (activities, chats)."""

        with self._lock:
            self._activities.clear()
            self._chats.clear()
            self._touch()

    # ------------------------------------------------------------------
    # Users / sports / events
    # ------------------------------------------------------------------
    def get_user(self, user_id: str) -> Optional[User]:
        with self._lock:
            return self._users.get(user_id)

    def list_users(self) -> List[User]:
        with self._lock:
            return list(self._users.values())

    def put_user(self, user: User) -> None:
        with self._lock:
            self._users[user.id] = user
            self._touch()

    def remove_user(self, user_id: str) -> Optional[User]:
        with self._lock:
            removed = self._users.pop(user_id, None)
            if removed is not None:
                self._touch()
            return removed

    def get_sport(self, sport_id: str) -> Optional[Sport]:
        with self._lock:
            return self._sports.get(sport_id)

    def list_sports(self) -> List[Sport]:
        with self._lock:
            return sorted(self._sports.values(), key=lambda s: s.name.lower())

    def put_sport(self, sport: Sport) -> None:
        with self._lock:
            self._sports[sport.id] = sport
            self._touch()

    def remove_sport(self, sport_id: str) -> Optional[Sport]:
        with self._lock:
            removed = self._sports.pop(sport_id, None)
            if removed is not None:
                self._touch()
            return removed

    def get_event(self, event_id: str) -> Optional[Event]:
        with self._lock:
            return self._events.get(event_id)

    def list_events(self) -> List[Event]:
        with self._lock:
            return sorted(self._events.values(), key=lambda e: e.date)

    def put_event(self, event: Event) -> None:
        with self._lock:
            self._events[event.id] = event
            self._touch()

    def remove_event(self, event_id: str) -> Optional[Event]:
        with self._lock:
            removed = self._events.pop(event_id, None)
            if removed is not None:
                self._touch()
            return removed

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------
    def get_activity(self, activity_id: str) -> Optional[Activity]:
        with self._lock:
            return self._activities.get(activity_id)

    def list_activities(self) -> List[Activity]:
        with self._lock:
            return list(self._activities.values())

    def put_activity(self, activity: Activity) -> Optional[Activity]:
        """Insert or replace an activity; return the previous record."""

        with self._lock:
            previous = self._activities.get(activity.id)
            self._activities[activity.id] = activity
            self._touch()
            return previous

    def remove_activity(self, activity_id: str) -> Tuple[Optional[Activity], Optional[Chat]]:
        """Remove an activity together with its chat."""

        with self._lock:
            activity = self._activities.pop(activity_id, None)
            chat = self._chats.pop(activity_id, None)
            if activity is not None or chat is not None:
                self._touch()
            return activity, chat

    def add_participant(self, activity_id: str, user_id: str) -> Optional[Activity]:
        """Add ``user_id`` locally; return the previous record for rollback."""

        with self._lock:
            previous = self._activities.get(activity_id)
            if previous is None or previous.has_participant(user_id):
                return previous
            self._activities[activity_id] = replace(
                previous, participants=previous.participants + (user_id,)
            )
            self._touch()
            return previous

    def remove_participant(self, activity_id: str, user_id: str) -> Optional[Activity]:
        with self._lock:
            previous = self._activities.get(activity_id)
            if previous is None or not previous.has_participant(user_id):
                return previous
            self._activities[activity_id] = replace(
                previous,
                participants=tuple(p for p in previous.participants if p != user_id),
            )
            self._touch()
            return previous

    def restore_activity(self, activity_id: str, previous: Optional[Activity]) -> None:
        """Undo an optimistic change by reinstating ``previous`` (or removing)."""

        with self._lock:
            if previous is None:
                self._activities.pop(activity_id, None)
            else:
                self._activities[activity_id] = previous
            self._touch()

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------
    def get_chat(self, activity_id: str) -> Optional[Chat]:
        with self._lock:
            chat = self._chats.get(activity_id)
            if chat is None:
                return None
            return chat.copy()

    def has_chat(self, activity_id: str) -> bool:
        with self._lock:
            return activity_id in self._chats

    def list_chats(self) -> List[Chat]:
        with self._lock:
            return [chat.copy() for chat in self._chats.values()]

    def put_chat(self, chat: Chat) -> None:
        with self._lock:
            merged = self._chats.get(chat.activity_id)
            if merged is None:
                merged = Chat(chat.activity_id, [])
                self._chats[chat.activity_id] = merged
            merged.members = merged.members + tuple(
                m for m in chat.members if m not in merged.members
            )
            for message in chat.messages:
                self._merge_locked(merged, message)
            merged.messages.sort(key=_message_sort_key)
            self._touch()

    def replace_chats(self, chats: Iterable[Chat]) -> None:
        """Swap in a full refetch while keeping unconfirmed local messages."""

        with self._lock:
            pending: Dict[str, List[Message]] = {}
            for activity_id, chat in self._chats.items():
                local = [m for m in chat.messages if not m.is_confirmed]
                if local:
                    pending[activity_id] = local
            fresh: Dict[str, Chat] = {}
            for chat in chats:
                fresh[chat.activity_id] = chat.copy()
            for activity_id, local in pending.items():
                target = fresh.get(activity_id)
                if target is None:
                    continue
                for message in local:
                    self._merge_locked(target, message)
            for chat in fresh.values():
                chat.messages.sort(key=_message_sort_key)
            self._chats = fresh
            self._touch()

    def merge_message(self, activity_id: str, message: Message) -> bool:
        """Merge a message into its chat, de-duplicating by id and client id.

        Messages for a chat the store does not hold (never opened, or removed
        with its activity) are dropped. Returns ``True`` when the chat changed.
        """

        with self._lock:
            chat = self._chats.get(activity_id)
            if chat is None:
                LOGGER.debug(
                    "Dropping message %s for unknown chat %s", message.id, activity_id
                )
                return False
            changed = self._merge_locked(chat, message)
            if changed:
                chat.messages.sort(key=_message_sort_key)
                self._touch()
            return changed

    def set_message_status(
        self, activity_id: str, client_id: str, status: MessageStatus
    ) -> Optional[Message]:
        with self._lock:
            chat = self._chats.get(activity_id)
            if chat is None:
                return None
            for index, message in enumerate(chat.messages):
                if message.client_id == client_id and not message.is_confirmed:
                    updated = replace(message, status=status)
                    chat.messages[index] = updated
                    self._touch()
                    return updated
            return None

    def discard_message(self, activity_id: str, client_id: str) -> bool:
        with self._lock:
            chat = self._chats.get(activity_id)
            if chat is None:
                return False
            before = len(chat.messages)
            chat.messages = [
                m for m in chat.messages if m.is_confirmed or m.client_id != client_id
            ]
            changed = len(chat.messages) != before
            if changed:
                self._touch()
            return changed

    @staticmethod
    def _merge_locked(chat: Chat, message: Message) -> bool:
        for index, existing in enumerate(chat.messages):
            same_id = existing.id == message.id
            same_client = (
                message.client_id is not None and existing.client_id == message.client_id
            )
            if not (same_id or same_client):
                continue
            if existing.is_confirmed and not message.is_confirmed:
                # Never downgrade a confirmed record to a local one.
                return False
            if existing == message:
                return False
            chat.messages[index] = message
            return True
        chat.messages.append(message)
        return True


__all__ = ["EntityStore"]
