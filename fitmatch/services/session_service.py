"""Reacts to sign-in and sign-out transitions of the auth provider."""

from __future__ import annotations

import logging
import threading
from typing import Optional

from ..backend.base import Backend
from ..errors import FitMatchError
from ..models import User
from ..notifications import Notifier
from ..store import EntityStore
from .activity_service import ActivityService
from .chat_service import ChatService
from .location_service import LocationService
from .user_service import UserService

LOAD_FAILURE = "Could not load your data. Please try again."


class SessionService:
    def __init__(
        self,
        store: EntityStore,
        backend: Backend,
        notifier: Notifier,
        *,
        chats: ChatService,
        users: UserService,
        activities: ActivityService | None = None,
        location: LocationService | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._backend = backend
        self._notifier = notifier
        self._chats = chats
        self._users = users
        self._activities = activities
        self._location = location
        self._log = logger or logging.getLogger(self.__class__.__name__)
        self._lock = threading.Lock()
        self._user_id: Optional[str] = None
        self._ready = False

    @property
    def is_authenticated(self) -> bool:
        with self._lock:
            return self._user_id is not None

    @property
    def ready(self) -> bool:
        """False after a failed hydration; call ``retry`` to try again."""

        with self._lock:
            return self._ready

    @property
    def current_user(self) -> User | None:
        with self._lock:
            user_id = self._user_id
        return self._store.get_user(user_id) if user_id is not None else None

    def login(self, user: User) -> bool:
        with self._lock:
            self._user_id = user.id
            self._ready = False
        self._log.info("Session started for user=%s", user.id)
        if not self._hydrate(user):
            return False
        if self._location is not None and self._location.available:
            self._location.refresh_current_location(user.id)
        return True

    def retry(self) -> bool:
        with self._lock:
            user_id = self._user_id
        if user_id is None:
            return False
        user = self._store.get_user(user_id) or User(id=user_id, name="")
        return self._hydrate(user)

    def _hydrate(self, user: User) -> bool:
        try:
            users = self._backend.fetch_users()
            sports = self._backend.fetch_sports()
            activities = self._backend.fetch_activities()
            events = self._backend.fetch_events()
            chats = self._backend.fetch_chats()
        except FitMatchError as exc:
            self._log.error("Initial load failed for user=%s: %s", user.id, exc)
            self._store.hydrate(users=[user], sports=[], activities=[], events=[], chats=[])
            self._notifier.notify(LOAD_FAILURE, "error")
            return False
        with self._store.transaction():
            self._store.hydrate(
                users=users, sports=sports, activities=activities, events=events
            )
            self._store.replace_chats(chats)
            if self._store.get_user(user.id) is None:
                self._store.put_user(user)
        if self._activities is not None:
            self._activities.settle_pending(activities)
        with self._lock:
            self._ready = True
        return True

    def logout(self) -> None:
        with self._lock:
            user_id = self._user_id
            self._user_id = None
            self._ready = False
        self._chats.close_all()
        if self._location is not None:
            self._location.invalidate()
        self._store.clear_user_scoped()
        self._users.reset_preference()
        self._log.info("Session ended for user=%s", user_id)


__all__ = ["LOAD_FAILURE", "SessionService"]
