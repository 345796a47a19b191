"""REST client for the authoritative backend service."""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

import requests

from ..config import (
    BACKEND_BACKOFF_MAX_SECONDS,
    BACKEND_BASE_URL,
    BACKEND_MAX_RETRIES,
    CHAT_POLL_INTERVAL_SECONDS,
    REQUEST_TIMEOUT,
)
from ..errors import FitMatchError, NotFoundError, TransportError
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
from . import codec
from .response_handling import classify_response_status
from .session import get_default_session

LOGGER = logging.getLogger(__name__)


class RestBackend:
    """Backend implementation speaking JSON over HTTP.

    Network failures, 429 and 5xx answers are retried with capped
    exponential backoff. Writes carry an ``Idempotency-Key`` header so a
    retried request is applied at most once by the server.
    """

    def __init__(
        self,
        base_url: str = BACKEND_BASE_URL,
        *,
        session: requests.Session | None = None,
        timeout: int = REQUEST_TIMEOUT,
        max_retries: int = BACKEND_MAX_RETRIES,
        poll_interval: float = CHAT_POLL_INTERVAL_SECONDS,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._session = session or get_default_session()
        self._timeout = timeout
        self._max_retries = max(1, max_retries)
        self._poll_interval = poll_interval

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------
    def _request(
        self,
        method: str,
        path: str,
        context: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        idempotency_key: str | None = None,
    ) -> Any:
        url = f"{self._base_url}{path}"
        headers = {"Idempotency-Key": idempotency_key} if idempotency_key else {}
        backoff = 1.0
        attempt = 0
        while True:
            attempt += 1
            can_retry = attempt < self._max_retries
            try:
                response = self._session.request(
                    method,
                    url,
                    headers=headers,
                    params=params,
                    json=json,
                    timeout=self._timeout,
                )
            except requests.RequestException as exc:
                if can_retry:
                    LOGGER.warning(
                        "%s network error attempt=%s err=%s; retrying in %.1fs",
                        context,
                        attempt,
                        exc.__class__.__name__,
                        backoff,
                    )
                    time.sleep(backoff)
                    backoff = min(backoff * 2, BACKEND_BACKOFF_MAX_SECONDS)
                    continue
                message = f"{context} network error: {exc.__class__.__name__}"
                LOGGER.error(message)
                raise TransportError(message) from exc

            action, error = classify_response_status(
                response,
                context,
                attempt=attempt,
                backoff=backoff,
                can_retry=can_retry,
            )
            if action == "retry":
                time.sleep(backoff)
                backoff = min(backoff * 2, BACKEND_BACKOFF_MAX_SECONDS)
                continue
            if action == "raise" and error is not None:
                raise error

            if response.status_code == 204 or not response.content:
                return None
            try:
                return response.json()
            except ValueError as exc:
                message = f"{context} returned non-JSON payload"
                LOGGER.error(message)
                raise TransportError(message) from exc

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------
    def fetch_users(self) -> List[User]:
        data = self._request("GET", "/users", "Fetch users")
        return [codec.user_from_record(r) for r in data or ()]

    def fetch_sports(self) -> List[Sport]:
        data = self._request("GET", "/sports", "Fetch sports")
        return [codec.sport_from_record(r) for r in data or ()]

    def fetch_activities(self) -> List[Activity]:
        data = self._request("GET", "/activities", "Fetch activities")
        return [codec.activity_from_record(r) for r in data or ()]

    def fetch_activity(self, activity_id: str) -> Activity:
        data = self._request(
            "GET", f"/activities/{activity_id}", f"Fetch activity {activity_id}"
        )
        return codec.activity_from_record(data)

    def fetch_events(self) -> List[Event]:
        data = self._request("GET", "/events", "Fetch events")
        return [codec.event_from_record(r) for r in data or ()]

    def fetch_chats(self) -> List[Chat]:
        data = self._request("GET", "/chats", "Fetch chats")
        return [codec.chat_from_record(r) for r in data or ()]

    def fetch_messages(
        self, activity_id: str, after: datetime | None = None
    ) -> List[Message]:
        params = {"after": codec.format_datetime(after)} if after is not None else None
        data = self._request(
            "GET",
            f"/activities/{activity_id}/messages",
            f"Fetch messages {activity_id}",
            params=params,
        )
        return [codec.message_from_record(r) for r in data or ()]

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------
    def create_activity(
        self, fields: Mapping[str, Any], creator_id: str, idempotency_key: str
    ) -> Activity:
        payload = codec.activity_fields_to_record(fields)
        payload["creator_id"] = creator_id
        data = self._request(
            "POST",
            "/activities",
            "Create activity",
            json=payload,
            idempotency_key=idempotency_key,
        )
        return codec.activity_from_record(data)

    def update_activity(
        self,
        activity_id: str,
        fields: Mapping[str, Any],
        actor_id: str,
        idempotency_key: str,
    ) -> Activity:
        payload = codec.activity_fields_to_record(fields)
        payload["actor_id"] = actor_id
        data = self._request(
            "PATCH",
            f"/activities/{activity_id}",
            f"Update activity {activity_id}",
            json=payload,
            idempotency_key=idempotency_key,
        )
        return codec.activity_from_record(data)

    def delete_activity(
        self, activity_id: str, actor_id: str, idempotency_key: str
    ) -> None:
        self._request(
            "DELETE",
            f"/activities/{activity_id}",
            f"Delete activity {activity_id}",
            params={"actor_id": actor_id},
            idempotency_key=idempotency_key,
        )

    def join_activity(
        self, activity_id: str, user_id: str, idempotency_key: str
    ) -> JoinResult:
        data = self._request(
            "POST",
            f"/activities/{activity_id}/participants",
            f"Join activity {activity_id}",
            json={"user_id": user_id},
            idempotency_key=idempotency_key,
        )
        return codec.join_result_from_record(data)

    def leave_activity(
        self, activity_id: str, user_id: str, idempotency_key: str
    ) -> JoinResult:
        data = self._request(
            "DELETE",
            f"/activities/{activity_id}/participants/{user_id}",
            f"Leave activity {activity_id}",
            idempotency_key=idempotency_key,
        )
        return codec.join_result_from_record(data)

    # ------------------------------------------------------------------
    # Chats
    # ------------------------------------------------------------------
    def post_message(
        self, activity_id: str, sender_id: str, text: str, client_id: str
    ) -> Message:
        data = self._request(
            "POST",
            f"/activities/{activity_id}/messages",
            f"Send message {activity_id}",
            json={"sender_id": sender_id, "text": text, "client_id": client_id},
            idempotency_key=client_id,
        )
        return codec.message_from_record(data)

    def subscribe_messages(
        self, activity_id: str, callback: MessageCallback
    ) -> Subscription:
        """Deliver new messages by polling in a background thread."""

        stop = threading.Event()
        subscription = Subscription(
            activity_id, callback, on_close=lambda _sub: stop.set()
        )
        worker = threading.Thread(
            target=self._poll_messages,
            args=(subscription, stop),
            name=f"chat-poll-{activity_id}",
            daemon=True,
        )
        worker.start()
        return subscription

    def _poll_messages(self, subscription: Subscription, stop: threading.Event) -> None:
        activity_id = subscription.activity_id
        last_seen: datetime | None = None
        while not stop.wait(self._poll_interval):
            try:
                messages = self.fetch_messages(activity_id, after=last_seen)
            except NotFoundError:
                LOGGER.info("Chat %s disappeared; stopping poll", activity_id)
                return
            except FitMatchError as exc:
                LOGGER.warning("Polling chat %s failed: %s", activity_id, exc)
                continue
            for message in messages:
                if last_seen is None or message.timestamp > last_seen:
                    last_seen = message.timestamp
                subscription.deliver(message)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def update_user(self, user_id: str, fields: Mapping[str, Any]) -> User:
        data = self._request(
            "PATCH",
            f"/users/{user_id}",
            f"Update user {user_id}",
            json=codec.profile_fields_to_record(fields),
        )
        return codec.user_from_record(data)

    def update_user_location(self, user_id: str, coords: Coordinates) -> User:
        data = self._request(
            "PUT",
            f"/users/{user_id}/location",
            f"Update location {user_id}",
            json={"lat": coords.lat, "lon": coords.lon},
        )
        return codec.user_from_record(data)

    def remove_user(
        self, user_id: str, actor_id: str, idempotency_key: str
    ) -> UserRemovalResult:
        data = self._request(
            "DELETE",
            f"/users/{user_id}",
            f"Remove user {user_id}",
            params={"actor_id": actor_id},
            idempotency_key=idempotency_key,
        )
        return codec.removal_from_record(data)

    def set_user_deactivated(
        self, user_id: str, deactivated: bool, actor_id: str
    ) -> User:
        data = self._request(
            "PUT",
            f"/users/{user_id}/deactivated",
            f"Set deactivated {user_id}",
            json={"deactivated": deactivated, "actor_id": actor_id},
        )
        return codec.user_from_record(data)

    # ------------------------------------------------------------------
    # Events & sports
    # ------------------------------------------------------------------
    def create_event(self, fields: Mapping[str, Any], actor_id: str) -> Event:
        payload = codec.event_fields_to_record(fields)
        payload["actor_id"] = actor_id
        data = self._request("POST", "/events", "Create event", json=payload)
        return codec.event_from_record(data)

    def update_event(
        self, event_id: str, fields: Mapping[str, Any], actor_id: str
    ) -> Event:
        payload = codec.event_fields_to_record(fields)
        payload["actor_id"] = actor_id
        data = self._request(
            "PATCH", f"/events/{event_id}", f"Update event {event_id}", json=payload
        )
        return codec.event_from_record(data)

    def delete_event(self, event_id: str, actor_id: str) -> None:
        self._request(
            "DELETE",
            f"/events/{event_id}",
            f"Delete event {event_id}",
            params={"actor_id": actor_id},
        )

    def create_sport(self, sport: Sport, actor_id: str) -> Sport:
        payload = codec.sport_to_record(sport)
        payload["actor_id"] = actor_id
        data = self._request("POST", "/sports", "Create sport", json=payload)
        return codec.sport_from_record(data)

    def delete_sport(self, sport_id: str, actor_id: str) -> None:
        self._request(
            "DELETE",
            f"/sports/{sport_id}",
            f"Delete sport {sport_id}",
            params={"actor_id": actor_id},
        )


__all__ = ["RestBackend"]
