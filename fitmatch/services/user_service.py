"""Profile edits, device location updates and the search-origin preference."""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass, replace
from typing import Any, Dict

from ..backend.base import Backend
from ..errors import FitMatchError, NotFoundError, TransportError, ValidationError
from ..models import Coordinates, HomeLocation, LocationPreference, User
from ..notifications import Notifier
from ..store import EntityStore

_UNSET: Any = object()


@dataclass(frozen=True, slots=True)
class ProfileStats:
    created: int
    joined: int


class UserService:
    def __init__(
        self,
        store: EntityStore,
        backend: Backend,
        notifier: Notifier,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._backend = backend
        self._notifier = notifier
        self._log = logger or logging.getLogger(self.__class__.__name__)
        self._preference: LocationPreference = "current"
        self._lock = threading.Lock()

    def _require_user(self, user_id: str) -> User:
        user = self._store.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    # ------------------------------------------------------------------
    # Location preference
    # ------------------------------------------------------------------
    @property
    def location_preference(self) -> LocationPreference:
        with self._lock:
            return self._preference

    def set_location_preference(
        self, user_id: str, preference: LocationPreference
    ) -> LocationPreference:
        if preference not in ("current", "home"):
            raise ValidationError(
                "Unknown location preference",
                {"location_preference": "Choose current or home."},
            )
        user = self._require_user(user_id)
        if preference == "home" and user.home_location is None:
            raise ValidationError(
                "No home location set",
                {"location_preference": "Set a home location in your profile first."},
            )
        with self._lock:
            self._preference = preference
        self._log.debug("Location preference for user=%s set to %s", user_id, preference)
        return preference

    def reset_preference(self) -> None:
        with self._lock:
            self._preference = "current"

    # ------------------------------------------------------------------
    # Profile
    # ------------------------------------------------------------------
    def update_profile(
        self,
        user_id: str,
        *,
        name: Any = _UNSET,
        home_location: Any = _UNSET,
        view_radius_km: Any = _UNSET,
    ) -> User:
        """Persist profile changes; only the keyword arguments given are sent."""

        self._require_user(user_id)
        fields: Dict[str, Any] = {}
        errors: Dict[str, str] = {}
        if name is not _UNSET:
            cleaned = str(name or "").strip()
            if not cleaned:
                errors["name"] = "Name is required."
            fields["name"] = cleaned
        if home_location is not _UNSET:
            if home_location is not None and not isinstance(home_location, HomeLocation):
                errors["home_location"] = "Please select a location from the map."
            fields["home_location"] = home_location
        if view_radius_km is not _UNSET:
            if view_radius_km is not None:
                try:
                    view_radius_km = float(view_radius_km)
                except (TypeError, ValueError):
                    view_radius_km = math.nan
                if not view_radius_km > 0 or math.isinf(view_radius_km):
                    errors["view_radius_km"] = "Radius must be a positive number."
            fields["view_radius_km"] = view_radius_km
        if errors:
            exc = ValidationError("Profile is invalid: " + ", ".join(sorted(errors)), errors)
            self._notifier.notify(str(exc), "error")
            raise exc
        if not fields:
            return self._require_user(user_id)

        try:
            updated = self._backend.update_user(user_id, fields)
        except FitMatchError as exc:
            self._log.warning("Profile update failed for user=%s: %s", user_id, exc)
            self._notifier.notify("Failed to update profile.", "error")
            raise
        self._store.put_user(updated)
        if updated.home_location is None:
            self.reset_preference()
        self._notifier.notify("Profile updated successfully!", "success")
        return updated

    def update_current_location(self, user_id: str, coords: Coordinates) -> User:
        """Record a fresh device position locally and persist it."""

        user = self._require_user(user_id)
        local = replace(user, current_location=coords)
        self._store.put_user(local)
        try:
            persisted = self._backend.update_user_location(user_id, coords)
        except TransportError as exc:
            self._log.warning("Could not persist location for user=%s: %s", user_id, exc)
            return local
        self._store.put_user(persisted)
        return persisted

    def profile_stats(self, user_id: str) -> ProfileStats:
        created = joined = 0
        for activity in self._store.list_activities():
            if activity.creator_id == user_id:
                created += 1
            elif activity.has_participant(user_id):
                joined += 1
        return ProfileStats(created=created, joined=joined)


__all__ = ["ProfileStats", "UserService"]
