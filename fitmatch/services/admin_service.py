"""Administrative operations: user removal, deactivation, catalog upkeep."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List

from ..backend.base import Backend
from ..errors import (
    AuthorizationError,
    FitMatchError,
    NotFoundError,
    TransportError,
    ValidationError,
)
from ..models import Sport, User, UserRemovalResult
from ..notifications import Notifier
from ..store import EntityStore
from .activity_service import ActivityService
from .pending import PendingKeys


@dataclass(frozen=True, slots=True)
class AdminStats:
    total_users: int
    total_activities: int
    total_events: int


class AdminService:
    def __init__(
        self,
        store: EntityStore,
        backend: Backend,
        notifier: Notifier,
        activities: ActivityService,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._backend = backend
        self._notifier = notifier
        self._activities = activities
        self._log = logger or logging.getLogger(self.__class__.__name__)
        self._pending = PendingKeys()

    def _require_admin(self, actor_id: str) -> User:
        actor = self._store.get_user(actor_id)
        if actor is None or not actor.is_admin:
            exc = AuthorizationError("Admin rights required")
            self._notifier.notify(str(exc), "error")
            raise exc
        return actor

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------
    def remove_user(self, user_id: str, actor_id: str) -> UserRemovalResult:
        """Delete a user, their activities and their memberships everywhere.

        The backend applies the cascade atomically; the local store mirrors it
        inside one transaction so readers never see a half-applied removal.
        """

        self._require_admin(actor_id)
        if user_id == actor_id:
            exc = AuthorizationError("You cannot delete your own account.")
            self._notifier.notify(str(exc), "error")
            raise exc
        target = self._store.get_user(user_id)
        key = self._pending.key_for("remove_user", actor_id, user_id)
        try:
            result = self._backend.remove_user(user_id, actor_id, key)
        except TransportError as exc:
            self._log.warning("Removing user %s failed in transport: %s", user_id, exc)
            self._notifier.notify("Failed to delete user.", "error")
            raise
        except FitMatchError as exc:
            self._pending.discard(actor_id, user_id)
            self._log.info("Removing user %s rejected: %s", user_id, exc)
            self._notifier.notify("Failed to delete user.", "error")
            raise
        self._pending.discard(actor_id, user_id)

        with self._store.transaction():
            doomed = set(result.deleted_activity_ids)
            doomed.update(
                a.id for a in self._store.list_activities() if a.creator_id == user_id
            )
            for activity_id in doomed:
                self._store.remove_activity(activity_id)
            for activity in self._store.list_activities():
                if activity.has_participant(user_id):
                    self._store.remove_participant(activity.id, user_id)
            self._store.remove_user(user_id)

        name = target.name if target is not None else user_id
        self._log.info(
            "User %s removed (deleted=%d cleaned=%d)",
            user_id,
            len(result.deleted_activity_ids),
            len(result.cleaned_activity_ids),
        )
        self._notifier.notify(f'User "{name}" has been deleted.', "info")
        return result

    def set_user_deactivated(self, user_id: str, deactivated: bool, actor_id: str) -> User:
        self._require_admin(actor_id)
        if user_id == actor_id:
            exc = AuthorizationError("You cannot deactivate your own account.")
            self._notifier.notify(str(exc), "error")
            raise exc
        try:
            updated = self._backend.set_user_deactivated(user_id, deactivated, actor_id)
        except FitMatchError as exc:
            self._log.warning("Deactivation toggle for %s failed: %s", user_id, exc)
            self._notifier.notify("Failed to update user.", "error")
            raise
        self._store.put_user(updated)
        state = "deactivated" if deactivated else "reactivated"
        self._notifier.notify(f'User "{updated.name}" has been {state}.', "info")
        return updated

    # ------------------------------------------------------------------
    # Activities
    # ------------------------------------------------------------------
    def delete_activity(self, activity_id: str, actor_id: str) -> None:
        self._require_admin(actor_id)
        self._activities.delete(activity_id, actor_id)

    # ------------------------------------------------------------------
    # Sports catalog
    # ------------------------------------------------------------------
    def add_sport(self, sport: Sport, actor_id: str) -> Sport:
        self._require_admin(actor_id)
        if not sport.id.strip() or not sport.name.strip():
            raise ValidationError(
                "Sport is invalid", {"name": "Sport id and name are required."}
            )
        created = self._backend.create_sport(sport, actor_id)
        self._store.put_sport(created)
        self._notifier.notify(f'Sport "{created.name}" added.', "success")
        return created

    def remove_sport(self, sport_id: str, actor_id: str) -> None:
        self._require_admin(actor_id)
        if self._store.get_sport(sport_id) is None:
            raise NotFoundError(f"Sport {sport_id} not found")
        try:
            self._backend.delete_sport(sport_id, actor_id)
        except FitMatchError as exc:
            self._notifier.notify(str(exc), "error")
            raise
        removed = self._store.remove_sport(sport_id)
        if removed is not None:
            self._notifier.notify(f'Sport "{removed.name}" removed.', "info")

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------
    def stats(self) -> AdminStats:
        return AdminStats(
            total_users=len(self._store.list_users()),
            total_activities=len(self._store.list_activities()),
            total_events=len(self._store.list_events()),
        )

    def users(self) -> List[User]:
        return sorted(self._store.list_users(), key=lambda u: u.name.lower())


__all__ = ["AdminService", "AdminStats"]
