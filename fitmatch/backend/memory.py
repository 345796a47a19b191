"""Authoritative in-process backend.

Used in offline mode, by the CLI and by tests. All state lives behind one
re-entrant lock, which is what serializes capacity checks between concurrent
joins. System messages are produced here, once per participation change, so
retried requests cannot duplicate them. Feed notifications are published
after the lock is released.
"""

from __future__ import annotations

import itertools
import logging
import threading
import uuid
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Hashable, Iterable, List, Mapping, Set, Tuple

from cachetools import TTLCache

from ..config import IDEMPOTENCY_CACHE_SIZE, IDEMPOTENCY_TTL_SECONDS
from ..errors import AuthorizationError, ConflictError, NotFoundError, ValidationError
from ..models import (
    Activity,
    Chat,
    Coordinates,
    Event,
    HomeLocation,
    JoinResult,
    Message,
    Sport,
    User,
    UserRemovalResult,
)
from ..realtime import MessageCallback, MessageFeed, Subscription
from ..validation import validate_activity_fields, validate_event_fields
from .base import JOIN_NOTICE, LEAVE_NOTICE

LOGGER = logging.getLogger(__name__)

_USER_FIELDS = {"name", "avatar_url", "home_location", "view_radius_km"}
_Published = List[Tuple[str, Message]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryBackend:
    def __init__(
        self,
        *,
        clock: Callable[[], datetime] | None = None,
        ledger_size: int = IDEMPOTENCY_CACHE_SIZE,
        ledger_ttl: float = IDEMPOTENCY_TTL_SECONDS,
    ) -> None:
        self._lock = threading.RLock()
        self._clock = clock or _utcnow
        self._users: Dict[str, User] = {}
        self._sports: Dict[str, Sport] = {}
        self._activities: Dict[str, Activity] = {}
        self._events: Dict[str, Event] = {}
        self._chats: Dict[str, Chat] = {}
        self._deleted_activities: Set[str] = set()
        # Completed writes keyed by (operation, subject..., idempotency key)
        self._ledger: TTLCache[Hashable, Any] = TTLCache(
            maxsize=max(1, ledger_size), ttl=ledger_ttl
        )
        self._client_messages: TTLCache[str, Message] = TTLCache(
            maxsize=max(1, ledger_size), ttl=ledger_ttl
        )
        self._message_ids = itertools.count(1)
        self._last_timestamp: datetime | None = None
        self._feed = MessageFeed()

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------
    def seed(
        self,
        *,
        users: Iterable[User] = (),
        sports: Iterable[Sport] = (),
        activities: Iterable[Activity] = (),
        events: Iterable[Event] = (),
        chats: Iterable[Chat] = (),
    ) -> "InMemoryBackend":
        """Load reference data without running validation or side effects."""

        with self._lock:
            self._users.update({u.id: u for u in users})
            self._sports.update({s.id: s for s in sports})
            self._activities.update({a.id: a for a in activities})
            self._events.update({e.id: e for e in events})
            for chat in chats:
                self._chats[chat.activity_id] = chat.copy()
                for message in chat.messages:
                    last = self._last_timestamp
                    if last is None or message.timestamp > last:
                        self._last_timestamp = message.timestamp
        return self

    @property
    def feed(self) -> MessageFeed:
        return self._feed

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------
    def fetch_users(self) -> List[User]:
        with self._lock:
            return list(self._users.values())

    def fetch_sports(self) -> List[Sport]:
        with self._lock:
            return list(self._sports.values())

    def fetch_activities(self) -> List[Activity]:
        with self._lock:
            return list(self._activities.values())

    def fetch_activity(self, activity_id: str) -> Activity:
        with self._lock:
            return self._require_activity(activity_id)

    def fetch_events(self) -> List[Event]:
        with self._lock:
            return sorted(self._events.values(), key=lambda e: e.date)

    def fetch_chats(self) -> List[Chat]:
        with self._lock:
            return [c.copy() for c in self._chats.values()]

    def fetch_messages(
        self, activity_id: str, after: datetime | None = None
    ) -> List[Message]:
        with self._lock:
            chat = self._chats.get(activity_id)
            if chat is None:
                self._require_activity(activity_id)
                return []
            return [m for m in chat.messages if after is None or m.timestamp > after]

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------
    def create_activity(
        self, fields: Mapping[str, Any], creator_id: str, idempotency_key: str
    ) -> Activity:
        key = ("create", creator_id, idempotency_key)
        with self._lock:
            if key in self._ledger:
                return self._ledger[key]
            creator = self._require_user(creator_id)
            if creator.is_deactivated:
                raise AuthorizationError(f"User {creator.name} is deactivated")
            cleaned = validate_activity_fields(fields, self._sports.get, self._clock())
            activity = Activity(
                id=f"activity-{uuid.uuid4().hex[:12]}",
                creator_id=creator_id,
                participants=(creator_id,),
                **cleaned,
            )
            self._activities[activity.id] = activity
            self._ledger[key] = activity
        LOGGER.info("Activity %s created by user=%s", activity.id, creator_id)
        return activity

    def update_activity(
        self,
        activity_id: str,
        fields: Mapping[str, Any],
        actor_id: str,
        idempotency_key: str,
    ) -> Activity:
        key = ("update", activity_id, actor_id, idempotency_key)
        with self._lock:
            if key in self._ledger:
                return self._ledger[key]
            activity = self._require_activity(activity_id)
            if activity.creator_id != actor_id:
                raise AuthorizationError("Only the creator can edit this activity")
            merged = {
                "sport_id": activity.sport_id,
                "other_sport_name": activity.other_sport_name,
                "title": activity.title,
                "date_time": activity.date_time,
                "location_name": activity.location_name,
                "location_coords": activity.location_coords,
                "activity_type": activity.activity_type,
                "level": activity.level,
                "partners_needed": activity.partners_needed,
            }
            merged.update(fields)
            cleaned = validate_activity_fields(
                merged,
                self._sports.get,
                self._clock(),
                check_date="date_time" in fields,
            )
            cap = cleaned["partners_needed"]
            if cap and cap < len(activity.participants):
                raise ConflictError(
                    f"Activity already has {len(activity.participants)} participants"
                )
            updated = replace(activity, **cleaned)
            self._activities[activity_id] = updated
            self._ledger[key] = updated
        return updated

    def delete_activity(
        self, activity_id: str, actor_id: str, idempotency_key: str
    ) -> None:
        key = ("delete", activity_id, idempotency_key)
        with self._lock:
            if key in self._ledger:
                return
            if activity_id in self._deleted_activities:
                raise ConflictError(f"Activity {activity_id} was already deleted")
            activity = self._require_activity(activity_id)
            actor = self._require_user(actor_id)
            if activity.creator_id != actor_id and not actor.is_admin:
                raise AuthorizationError(
                    "Only the creator or an admin can delete this activity"
                )
            self._drop_activity_locked(activity_id)
            self._ledger[key] = True
        LOGGER.info("Activity %s deleted by user=%s", activity_id, actor_id)

    def join_activity(
        self, activity_id: str, user_id: str, idempotency_key: str
    ) -> JoinResult:
        key = ("join", activity_id, user_id, idempotency_key)
        published: _Published = []
        with self._lock:
            if self._replayable(
                key, lambda: self._participates(activity_id, user_id) is True
            ):
                return self._ledger[key]
            activity = self._require_activity(activity_id)
            user = self._require_user(user_id)
            if user.is_deactivated:
                raise AuthorizationError(f"User {user.name} is deactivated")
            if activity.creator_id == user_id:
                raise ConflictError("The creator is already part of this activity")
            if activity.has_participant(user_id):
                raise ConflictError("You have already joined this activity")
            if activity.is_full:
                raise ConflictError("This activity is full")
            updated = replace(activity, participants=activity.participants + (user_id,))
            self._activities[activity_id] = updated
            notice = self._new_message(None, JOIN_NOTICE.format(name=user.name), system=True)
            chat = self._chats.get(activity_id)
            created = False
            if chat is None:
                if len(updated.participants) >= 2:
                    chat = Chat(activity_id, [notice], updated.participants)
                    self._chats[activity_id] = chat
                    created = True
                    published.append((activity_id, notice))
                else:
                    notice = None
            else:
                chat.messages.append(notice)
                if user_id not in chat.members:
                    chat.members = chat.members + (user_id,)
                published.append((activity_id, notice))
            result = JoinResult(
                activity=updated,
                chat_created=created,
                system_message=notice,
                chat=chat.copy() if chat is not None else None,
            )
            self._ledger[key] = result
        self._publish(published)
        return result

    def leave_activity(
        self, activity_id: str, user_id: str, idempotency_key: str
    ) -> JoinResult:
        key = ("leave", activity_id, user_id, idempotency_key)
        published: _Published = []
        with self._lock:
            if self._replayable(
                key, lambda: self._participates(activity_id, user_id) is False
            ):
                return self._ledger[key]
            activity = self._require_activity(activity_id)
            user = self._require_user(user_id)
            if activity.creator_id == user_id:
                raise ConflictError("The creator cannot leave; delete the activity instead")
            if not activity.has_participant(user_id):
                raise ConflictError("You are not part of this activity")
            updated = replace(
                activity,
                participants=tuple(p for p in activity.participants if p != user_id),
            )
            self._activities[activity_id] = updated
            notice = None
            chat = self._chats.get(activity_id)
            if chat is not None:
                notice = self._new_message(
                    None, LEAVE_NOTICE.format(name=user.name), system=True
                )
                chat.messages.append(notice)
                published.append((activity_id, notice))
            result = JoinResult(
                activity=updated,
                system_message=notice,
                chat=chat.copy() if chat is not None else None,
            )
            self._ledger[key] = result
        self._publish(published)
        return result

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------
    def post_message(
        self, activity_id: str, sender_id: str, text: str, client_id: str
    ) -> Message:
        with self._lock:
            existing = self._client_messages.get(client_id)
            if existing is not None:
                return existing
            activity = self._require_activity(activity_id)
            chat = self._chats.get(activity_id)
            if chat is None:
                raise NotFoundError(f"No chat exists for activity {activity_id} yet")
            if not activity.has_participant(sender_id):
                raise AuthorizationError("Only current participants can send messages")
            if not text.strip():
                raise ValidationError("Message is empty", {"text": "Message is empty."})
            message = self._new_message(sender_id, text, client_id=client_id)
            chat.messages.append(message)
            self._client_messages[client_id] = message
        self._publish([(activity_id, message)])
        return message

    def subscribe_messages(
        self, activity_id: str, callback: MessageCallback
    ) -> Subscription:
        return self._feed.subscribe(activity_id, callback)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def update_user(self, user_id: str, fields: Mapping[str, Any]) -> User:
        unknown = set(fields) - _USER_FIELDS
        if unknown:
            raise ValidationError(
                "Unsupported profile fields",
                {name: "This field cannot be set." for name in sorted(unknown)},
            )
        with self._lock:
            user = self._require_user(user_id)
            updated = replace(user, **fields)
            if updated.home_location is not None and not isinstance(
                updated.home_location, HomeLocation
            ):
                raise ValidationError(
                    "Invalid home location", {"home_location": "Invalid location."}
                )
            self._users[user_id] = updated
            return updated

    def update_user_location(self, user_id: str, coords: Coordinates) -> User:
        with self._lock:
            user = self._require_user(user_id)
            updated = replace(user, current_location=coords)
            self._users[user_id] = updated
            return updated

    def remove_user(
        self, user_id: str, actor_id: str, idempotency_key: str
    ) -> UserRemovalResult:
        key = ("remove_user", user_id, idempotency_key)
        with self._lock:
            if self._replayable(key, lambda: user_id not in self._users):
                return self._ledger[key]
            self._require_admin(actor_id)
            if user_id == actor_id:
                raise AuthorizationError("You cannot delete your own account")
            self._require_user(user_id)
            result = UserRemovalResult(user_id=user_id)
            for activity in list(self._activities.values()):
                if activity.creator_id == user_id:
                    self._drop_activity_locked(activity.id)
                    result.deleted_activity_ids.append(activity.id)
            for activity in list(self._activities.values()):
                if activity.has_participant(user_id):
                    self._activities[activity.id] = replace(
                        activity,
                        participants=tuple(p for p in activity.participants if p != user_id),
                    )
                    result.cleaned_activity_ids.append(activity.id)
            del self._users[user_id]
            self._ledger[key] = result
        LOGGER.info(
            "User %s removed by admin=%s (deleted=%d cleaned=%d)",
            user_id,
            actor_id,
            len(result.deleted_activity_ids),
            len(result.cleaned_activity_ids),
        )
        return result

    def set_user_deactivated(
        self, user_id: str, deactivated: bool, actor_id: str
    ) -> User:
        with self._lock:
            self._require_admin(actor_id)
            if user_id == actor_id:
                raise AuthorizationError("You cannot deactivate your own account")
            user = self._require_user(user_id)
            updated = replace(user, is_deactivated=deactivated)
            self._users[user_id] = updated
            return updated

    # ------------------------------------------------------------------
    # Events & sports
    # ------------------------------------------------------------------
    def create_event(self, fields: Mapping[str, Any], actor_id: str) -> Event:
        with self._lock:
            self._require_admin(actor_id)
            cleaned = validate_event_fields(fields)
            event = Event(id=f"event-{uuid.uuid4().hex[:12]}", **cleaned)
            self._events[event.id] = event
            return event

    def update_event(
        self, event_id: str, fields: Mapping[str, Any], actor_id: str
    ) -> Event:
        with self._lock:
            self._require_admin(actor_id)
            event = self._events.get(event_id)
            if event is None:
                raise NotFoundError(f"Event {event_id} not found")
            merged = {
                "title": event.title,
                "sport": event.sport,
                "city": event.city,
                "date": event.date,
                "description": event.description,
                "image_url": event.image_url,
                "registration_url": event.registration_url,
            }
            merged.update(fields)
            updated = replace(event, **validate_event_fields(merged))
            self._events[event_id] = updated
            return updated

    def delete_event(self, event_id: str, actor_id: str) -> None:
        with self._lock:
            self._require_admin(actor_id)
            if self._events.pop(event_id, None) is None:
                raise NotFoundError(f"Event {event_id} not found")

    def create_sport(self, sport: Sport, actor_id: str) -> Sport:
        with self._lock:
            self._require_admin(actor_id)
            if sport.id in self._sports:
                raise ConflictError(f"Sport {sport.id} already exists")
            self._sports[sport.id] = sport
            return sport

    def delete_sport(self, sport_id: str, actor_id: str) -> None:
        with self._lock:
            self._require_admin(actor_id)
            if sport_id not in self._sports:
                raise NotFoundError(f"Sport {sport_id} not found")
            if any(a.sport_id == sport_id for a in self._activities.values()):
                raise ConflictError("Sport is still used by activities")
            del self._sports[sport_id]

    # ------------------------------------------------------------------
    # Helpers (call with the lock held)
    # ------------------------------------------------------------------
    def _participates(self, activity_id: str, user_id: str) -> bool | None:
        """Membership of ``user_id``, or ``None`` when the activity is gone."""

        activity = self._activities.get(activity_id)
        return activity.has_participant(user_id) if activity is not None else None

    def _replayable(self, key: Hashable, still_applied: Callable[[], bool]) -> bool:
        """True when ``key`` has a recorded outcome the current state still shows.

        A recorded outcome that later operations have undone is forgotten, so
        the request is processed as a new transition.
        """

        if key not in self._ledger:
            return False
        if still_applied():
            return True
        LOGGER.info("Idempotency key %s no longer matches state; reprocessing", key[-1])
        del self._ledger[key]
        return False

    def _require_activity(self, activity_id: str) -> Activity:
        activity = self._activities.get(activity_id)
        if activity is None:
            raise NotFoundError(f"Activity {activity_id} not found")
        return activity

    def _require_user(self, user_id: str) -> User:
        user = self._users.get(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    def _require_admin(self, actor_id: str) -> User:
        actor = self._users.get(actor_id)
        if actor is None or not actor.is_admin:
            raise AuthorizationError("Admin rights required")
        return actor

    def _drop_activity_locked(self, activity_id: str) -> None:
        self._activities.pop(activity_id, None)
        self._chats.pop(activity_id, None)
        self._deleted_activities.add(activity_id)

    def _next_timestamp(self) -> datetime:
        now = self._clock()
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now

    def _new_message(
        self,
        sender_id: str | None,
        text: str,
        *,
        system: bool = False,
        client_id: str | None = None,
    ) -> Message:
        return Message(
            id=f"msg-{next(self._message_ids)}",
            sender_id=sender_id,
            text=text,
            timestamp=self._next_timestamp(),
            is_system=system,
            status="sent",
            client_id=client_id,
        )

    def _publish(self, published: _Published) -> None:
        for activity_id, message in published:
            self._feed.publish(activity_id, message)


__all__ = ["InMemoryBackend"]
