"""Idempotency keys for write operations that have not been resolved yet."""

from __future__ import annotations

import threading
from typing import Dict, List, Tuple

from ..backend.base import new_idempotency_key

Slot = Tuple[str, str, str]


class PendingKeys:
    """One key per (operation, user, subject) until the outcome is known.

    A retry after a transport failure reuses the stored key, so the backend
    can recognise the repeat and replay its recorded result. A key only
    covers the transition it was minted for: once any later operation on the
    same (user, subject) pair resolves, every key for that pair is dropped.
    """

    def __init__(self) -> None:
        self._keys: Dict[Slot, str] = {}
        self._lock = threading.Lock()

    def key_for(self, operation: str, user_id: str, subject: str) -> str:
        with self._lock:
            slot = (operation, user_id, subject)
            key = self._keys.get(slot)
            if key is None:
                key = new_idempotency_key()
                self._keys[slot] = key
            return key

    def resolve(self, operation: str, user_id: str, subject: str) -> None:
        with self._lock:
            self._keys.pop((operation, user_id, subject), None)

    def discard(self, user_id: str, subject: str) -> int:
        """Drop every key held for ``(user_id, subject)``; return how many."""

        with self._lock:
            stale = [slot for slot in self._keys if slot[1:] == (user_id, subject)]
            for slot in stale:
                del self._keys[slot]
            return len(stale)

    def slots(self) -> List[Slot]:
        with self._lock:
            return list(self._keys)

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)
