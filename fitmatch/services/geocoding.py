"""Place search and reverse geocoding against a Nominatim-compatible service."""

from __future__ import annotations

import logging
import math
import threading
from typing import Any, List, Protocol

import requests
from cachetools import TTLCache

from ..backend.session import create_default_session
from ..config import (
    GEOCODE_CACHE_SIZE,
    GEOCODE_CACHE_TTL_SECONDS,
    GEOCODER_RESULT_LIMIT,
    GEOCODER_URL,
    GEOCODER_USER_AGENT,
    REQUEST_TIMEOUT,
)
from ..errors import TransportError
from ..models import Coordinates, PlaceResult

LOGGER = logging.getLogger(__name__)


def coordinate_label(coords: Coordinates) -> str:
    return f"Lat: {coords.lat:.4f}, Lon: {coords.lon:.4f}"


class Geocoder(Protocol):
    def search(self, query: str) -> List[PlaceResult]: ...

    def reverse(self, coords: Coordinates) -> str: ...


class NominatimGeocoder:
    """Thin client over ``/search`` and ``/reverse`` with a shared TTL cache."""

    def __init__(
        self,
        base_url: str = GEOCODER_URL,
        *,
        session: requests.Session | None = None,
        user_agent: str = GEOCODER_USER_AGENT,
        limit: int = GEOCODER_RESULT_LIMIT,
        timeout: int = REQUEST_TIMEOUT,
        cache_size: int = GEOCODE_CACHE_SIZE,
        cache_ttl: float = GEOCODE_CACHE_TTL_SECONDS,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._session = session or create_default_session()
        self._headers = {"User-Agent": user_agent, "Accept": "application/json"}
        self._limit = limit
        self._timeout = timeout
        self._cache: TTLCache[Any, Any] = TTLCache(maxsize=max(1, cache_size), ttl=cache_ttl)
        self._lock = threading.Lock()

    def _get(self, path: str, params: dict[str, Any]) -> Any:
        url = f"{self._base_url}{path}"
        LOGGER.debug("GET %s params=%s", url, params)
        try:
            response = self._session.get(
                url, headers=self._headers, params=params, timeout=self._timeout
            )
            response.raise_for_status()
            return response.json()
        except (requests.RequestException, ValueError) as exc:
            raise TransportError(f"Geocoder request failed: {exc.__class__.__name__}") from exc

    def search(self, query: str) -> List[PlaceResult]:
        """Return candidate places for a free-text query (empty for blank)."""

        text = (query or "").strip()
        if not text:
            return []
        cache_key = ("search", text.lower())
        with self._lock:
            cached = self._cache.get(cache_key)
        if cached is not None:
            return list(cached)
        data = self._get(
            "/search", {"q": text, "format": "json", "limit": self._limit}
        )
        results: List[PlaceResult] = []
        for item in data or ():
            try:
                lat, lon = float(item["lat"]), float(item["lon"])
            except (KeyError, TypeError, ValueError):
                LOGGER.debug("Skipping malformed geocoder result: %r", item)
                continue
            if math.isnan(lat) or math.isnan(lon):
                continue
            results.append(PlaceResult(lat, lon, str(item.get("display_name") or text)))
        with self._lock:
            self._cache[cache_key] = tuple(results)
        return results

    def reverse(self, coords: Coordinates) -> str:
        """Human-readable name for ``coords``; falls back to the coordinates."""

        cache_key = ("reverse", round(coords.lat, 5), round(coords.lon, 5))
        with self._lock:
            cached = self._cache.get(cache_key)
        if cached is not None:
            return cached
        try:
            data = self._get(
                "/reverse", {"lat": coords.lat, "lon": coords.lon, "format": "json"}
            )
        except TransportError as exc:
            LOGGER.warning("Reverse geocoding failed for %s: %s", coords, exc)
            return coordinate_label(coords)
        name = data.get("display_name") if isinstance(data, dict) else None
        if not name:
            return coordinate_label(coords)
        with self._lock:
            self._cache[cache_key] = str(name)
        return str(name)


__all__ = ["Geocoder", "NominatimGeocoder", "coordinate_label"]
