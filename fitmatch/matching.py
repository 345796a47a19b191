"""Nearby / my-activities derivation for the signed-in user.

Views are recomputed on read and memoised against the store version plus the
inputs that are not part of the store (location preference). A mutation of
activities or of the user's coordinates bumps the store version, so a stale
view never survives the mutation that invalidated it.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from typing import Hashable, List, Tuple

from cachetools import LRUCache

from .config import DEFAULT_VIEW_RADIUS_KM, MATCHING_CACHE_SIZE
from .geo import distance_km
from .models import Activity, Coordinates, LocationPreference, User
from .store import EntityStore

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class NearbyMatch:
    activity: Activity
    distance_km: float


def search_origin(user: User, preference: LocationPreference) -> Coordinates | None:
    """Return the coordinates the radius filter is centred on."""

    if preference == "home" and user.home_location is not None:
        return user.home_location.coordinates
    return user.current_location


def effective_radius(user: User, default_km: float = DEFAULT_VIEW_RADIUS_KM) -> float:
    if user.view_radius_km is not None:
        return float(user.view_radius_km)
    return float(default_km)


class MatchingEngine:
    def __init__(
        self,
        store: EntityStore,
        *,
        default_radius_km: float = DEFAULT_VIEW_RADIUS_KM,
        cache_size: int = MATCHING_CACHE_SIZE,
    ) -> None:
        self._store = store
        self._default_radius_km = default_radius_km
        self._cache: LRUCache[Hashable, Tuple[object, ...]] = LRUCache(
            maxsize=max(1, cache_size)
        )
        self._cache_lock = threading.Lock()

    @property
    def default_radius_km(self) -> float:
        return self._default_radius_km

    def effective_radius(self, user: User) -> float:
        return effective_radius(user, self._default_radius_km)

    def nearby_matches(
        self, user_id: str, preference: LocationPreference = "current"
    ) -> List[NearbyMatch]:
        """Activities within range the user has not joined, nearest first."""

        version = self._store.version
        user = self._store.get_user(user_id)
        if user is None:
            return []
        origin = search_origin(user, preference)
        if origin is None:
            return []
        radius = self.effective_radius(user)
        key = ("nearby", version, user_id, origin, radius)
        with self._cache_lock:
            cached = self._cache.get(key)
        if cached is not None:
            return list(cached)  # type: ignore[arg-type]

        matches: List[NearbyMatch] = []
        for activity in self._store.list_activities():
            if activity.has_participant(user_id):
                continue
            distance = distance_km(origin, activity.location_coords)
            if math.isnan(distance) or distance > radius:
                continue
            matches.append(NearbyMatch(activity, distance))
        matches.sort(key=lambda m: (m.distance_km, m.activity.date_time))
        LOGGER.debug(
            "Nearby view for user=%s origin=%s radius=%.1fkm -> %d activities",
            user_id,
            origin,
            radius,
            len(matches),
        )
        with self._cache_lock:
            self._cache[key] = tuple(matches)
        return matches

    def nearby_activities(
        self, user_id: str, preference: LocationPreference = "current"
    ) -> List[Activity]:
        return [m.activity for m in self.nearby_matches(user_id, preference)]

    def my_activities(self, user_id: str) -> List[Activity]:
        """Activities the user created or joined, latest first."""

        version = self._store.version
        key = ("mine", version, user_id)
        with self._cache_lock:
            cached = self._cache.get(key)
        if cached is not None:
            return list(cached)  # type: ignore[arg-type]
        mine = [
            a
            for a in self._store.list_activities()
            if a.creator_id == user_id or a.has_participant(user_id)
        ]
        mine.sort(key=lambda a: a.date_time, reverse=True)
        with self._cache_lock:
            self._cache[key] = tuple(mine)
        return mine

    def invalidate(self) -> None:
        with self._cache_lock:
            self._cache.clear()


__all__ = ["MatchingEngine", "NearbyMatch", "search_origin", "effective_radius"]
