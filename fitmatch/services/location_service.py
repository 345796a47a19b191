"""Bounded-wait device location refresh with stale-result suppression."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from typing import Callable, Optional

from ..config import LOCATION_TIMEOUT_SECONDS
from ..models import Coordinates
from ..notifications import Notifier
from ..store import EntityStore
from .user_service import UserService

LocationProvider = Callable[[], Coordinates]

STALE_LOCATION_WARNING = "Could not get fresh location. Using last known."
NO_LOCATION_WARNING = "Could not get location. Using last known."
UNSUPPORTED_WARNING = "Geolocation is not available on this device."


class LocationService:
    """Asks the device for a position without ever blocking past the timeout.

    Each call captures the session generation; ``invalidate`` bumps it on
    logout, and any position that arrives for an older generation is
    discarded instead of being written to the store.
    """

    def __init__(
        self,
        store: EntityStore,
        users: UserService,
        notifier: Notifier,
        provider: Optional[LocationProvider] = None,
        *,
        timeout: float = LOCATION_TIMEOUT_SECONDS,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._users = users
        self._notifier = notifier
        self._provider = provider
        self._timeout = timeout
        self._log = logger or logging.getLogger(self.__class__.__name__)
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="location")
        self._generation = 0
        self._lock = threading.Lock()

    @property
    def available(self) -> bool:
        return self._provider is not None

    @property
    def generation(self) -> int:
        with self._lock:
            return self._generation

    def invalidate(self) -> None:
        """Forget every in-flight request (session ended or changed)."""

        with self._lock:
            self._generation += 1

    def _last_known(self, user_id: str) -> Coordinates | None:
        user = self._store.get_user(user_id)
        return user.current_location if user is not None else None

    def refresh_current_location(self, user_id: str) -> Coordinates | None:
        """Return the user's location after trying to refresh it.

        On timeout or provider failure the last known coordinates are kept and
        a warning is shown. Returns ``None`` when the result belongs to an
        ended session.
        """

        if self._provider is None:
            self._notifier.notify(UNSUPPORTED_WARNING, "error")
            return self._last_known(user_id)

        generation = self.generation
        future: Future[Coordinates] = self._executor.submit(self._provider)
        try:
            coords = future.result(timeout=self._timeout)
        except FutureTimeout:
            future.cancel()
            self._log.warning(
                "Location request for user=%s timed out after %.1fs", user_id, self._timeout
            )
            self._notifier.notify(STALE_LOCATION_WARNING, "warning")
            return self._last_known(user_id)
        except Exception as exc:
            self._log.warning("Location provider failed for user=%s: %s", user_id, exc)
            self._notifier.notify(NO_LOCATION_WARNING, "warning")
            return self._last_known(user_id)

        if generation != self.generation:
            self._log.debug("Dropping stale location for user=%s", user_id)
            return None
        self._users.update_current_location(user_id, coords)
        return coords

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)


__all__ = ["LocationProvider", "LocationService"]
