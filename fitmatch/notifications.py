"""Fire-and-forget user notifications (toasts)."""

from __future__ import annotations

import itertools
import logging
import threading
import time
from typing import Callable, List, Protocol

from cachetools import TTLCache

from .config import TOAST_MAX_ACTIVE, TOAST_TTL_SECONDS
from .models import Toast, ToastLevel

LOGGER = logging.getLogger(__name__)

_LOG_LEVELS = {
    "success": logging.INFO,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.WARNING,
}


class Notifier(Protocol):
    def notify(self, message: str, level: ToastLevel = "success") -> None: ...


class ToastCenter:
    """Keeps active toasts in a TTL cache so they expire without a timer thread."""

    def __init__(
        self,
        *,
        ttl: float = TOAST_TTL_SECONDS,
        max_active: int = TOAST_MAX_ACTIVE,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self._timer = timer
        self._toasts: TTLCache[int, Toast] = TTLCache(
            maxsize=max(1, max_active), ttl=ttl, timer=timer
        )
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def notify(self, message: str, level: ToastLevel = "success") -> None:
        LOGGER.log(_LOG_LEVELS.get(level, logging.INFO), "[%s] %s", level, message)
        with self._lock:
            toast_id = next(self._ids)
            self._toasts[toast_id] = Toast(
                id=toast_id, message=message, level=level, created_at=self._timer()
            )

    def dismiss(self, toast_id: int) -> None:
        with self._lock:
            self._toasts.pop(toast_id, None)

    def active(self) -> List[Toast]:
        with self._lock:
            self._toasts.expire()
            return sorted(self._toasts.values(), key=lambda t: t.id)

    def clear(self) -> None:
        with self._lock:
            self._toasts.clear()


__all__ = ["Notifier", "ToastCenter"]
