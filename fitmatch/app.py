"""Application wiring: one store, one backend, and the services sharing them."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional

from .backend import Backend, InMemoryBackend, RestBackend, create_default_session
from .config import BACKEND_API_TOKEN, BACKEND_BASE_URL, OFFLINE_MODE
from .errors import NotFoundError
from .matching import MatchingEngine, NearbyMatch
from .models import Activity, User
from .notifications import Notifier, ToastCenter
from .services import (
    ActivityService,
    AdminService,
    ChatService,
    EventService,
    LocationService,
    NominatimGeocoder,
    SessionService,
    UserService,
)
from .services.geocoding import Geocoder
from .services.location_service import LocationProvider
from .store import EntityStore

LOGGER = logging.getLogger(__name__)


def build_backend(offline: bool = OFFLINE_MODE) -> Backend:
    if offline:
        LOGGER.info("Offline mode: using the in-process backend")
        return InMemoryBackend()
    return RestBackend(
        BACKEND_BASE_URL, session=create_default_session(BACKEND_API_TOKEN)
    )


class FitMatchApp:
    """Container handing every service its collaborators explicitly."""

    def __init__(
        self,
        backend: Backend | None = None,
        *,
        notifier: Notifier | None = None,
        location_provider: Optional[LocationProvider] = None,
        geocoder: Geocoder | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.backend = backend if backend is not None else build_backend()
        self.store = EntityStore()
        self.notifier: Notifier = notifier if notifier is not None else ToastCenter()
        self.matching = MatchingEngine(self.store)
        extra = {"clock": clock} if clock is not None else {}
        self.users = UserService(self.store, self.backend, self.notifier)
        self.activities = ActivityService(self.store, self.backend, self.notifier, **extra)
        self.chats = ChatService(self.store, self.backend, self.notifier, **extra)
        self.events = EventService(self.store, self.backend, self.notifier)
        self.admin = AdminService(self.store, self.backend, self.notifier, self.activities)
        self.location = LocationService(
            self.store, self.users, self.notifier, location_provider
        )
        self.geocoder: Geocoder = geocoder if geocoder is not None else NominatimGeocoder()
        self.session = SessionService(
            self.store,
            self.backend,
            self.notifier,
            chats=self.chats,
            users=self.users,
            activities=self.activities,
            location=self.location,
        )

    # ------------------------------------------------------------------
    # Views for the signed-in user
    # ------------------------------------------------------------------
    def _current_user(self) -> User:
        user = self.session.current_user
        if user is None:
            raise NotFoundError("Nobody is signed in")
        return user

    def nearby(self) -> List[NearbyMatch]:
        user = self._current_user()
        return self.matching.nearby_matches(user.id, self.users.location_preference)

    def nearby_activities(self) -> List[Activity]:
        return [match.activity for match in self.nearby()]

    def my_activities(self) -> List[Activity]:
        return self.matching.my_activities(self._current_user().id)

    def close(self) -> None:
        if self.session.is_authenticated:
            self.session.logout()
        self.location.shutdown()


__all__ = ["FitMatchApp", "build_backend"]
