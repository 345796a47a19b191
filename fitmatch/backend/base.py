"""Contract between the client core and the authoritative persistence service."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, List, Mapping, Protocol

from ..models import (
    Activity,
    Chat,
    Coordinates,
    Event,
    JoinResult,
    Message,
    Sport,
    User,
    UserRemovalResult,
)
from ..realtime import MessageCallback, Subscription

JOIN_NOTICE = "{name} has joined the activity!"
LEAVE_NOTICE = "{name} has left the activity."


def new_idempotency_key() -> str:
    return uuid.uuid4().hex


def new_client_id() -> str:
    return f"client-{uuid.uuid4().hex}"


class Backend(Protocol):
    """Operations the core needs from the backing store.

    Write operations that change participation or create records accept an
    ``idempotency_key``; a repeated key returns the recorded outcome without
    applying the change (or its system message) a second time. Capacity and
    membership checks made here are authoritative.
    """

    # Snapshots -----------------------------------------------------------
    def fetch_users(self) -> List[User]: ...

    def fetch_sports(self) -> List[Sport]: ...

    def fetch_activities(self) -> List[Activity]: ...

    def fetch_activity(self, activity_id: str) -> Activity: ...

    def fetch_events(self) -> List[Event]: ...

    def fetch_chats(self) -> List[Chat]: ...

    def fetch_messages(
        self, activity_id: str, after: datetime | None = None
    ) -> List[Message]: ...

    # Activities ----------------------------------------------------------
    def create_activity(
        self, fields: Mapping[str, Any], creator_id: str, idempotency_key: str
    ) -> Activity: ...

    def update_activity(
        self,
        activity_id: str,
        fields: Mapping[str, Any],
        actor_id: str,
        idempotency_key: str,
    ) -> Activity: ...

    def delete_activity(
        self, activity_id: str, actor_id: str, idempotency_key: str
    ) -> None: ...

    def join_activity(
        self, activity_id: str, user_id: str, idempotency_key: str
    ) -> JoinResult: ...

    def leave_activity(
        self, activity_id: str, user_id: str, idempotency_key: str
    ) -> JoinResult: ...

    # Chats ---------------------------------------------------------------
    def post_message(
        self, activity_id: str, sender_id: str, text: str, client_id: str
    ) -> Message: ...

    def subscribe_messages(
        self, activity_id: str, callback: MessageCallback
    ) -> Subscription: ...

    # Users ---------------------------------------------------------------
    def update_user(self, user_id: str, fields: Mapping[str, Any]) -> User: ...

    def update_user_location(self, user_id: str, coords: Coordinates) -> User: ...

    def remove_user(
        self, user_id: str, actor_id: str, idempotency_key: str
    ) -> UserRemovalResult: ...

    def set_user_deactivated(
        self, user_id: str, deactivated: bool, actor_id: str
    ) -> User: ...

    # Events & sports -----------------------------------------------------
    def create_event(self, fields: Mapping[str, Any], actor_id: str) -> Event: ...

    def update_event(
        self, event_id: str, fields: Mapping[str, Any], actor_id: str
    ) -> Event: ...

    def delete_event(self, event_id: str, actor_id: str) -> None: ...

    def create_sport(self, sport: Sport, actor_id: str) -> Sport: ...

    def delete_sport(self, sport_id: str, actor_id: str) -> None: ...


__all__ = [
    "Backend",
    "JOIN_NOTICE",
    "LEAVE_NOTICE",
    "new_client_id",
    "new_idempotency_key",
]
