"""Participation protocol: create, edit, join, leave and delete activities.

Every write follows the same shape: check advisory preconditions against the
local store, apply the change optimistically, ask the backend, then either
apply the authoritative answer or roll the local change back. Conflict and
not-found answers additionally refetch the activity so the store matches the
backend again.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, Literal, Mapping, Optional, Tuple

from ..backend.base import Backend
from ..errors import (
    AuthorizationError,
    ConflictError,
    FitMatchError,
    NotFoundError,
    TransportError,
)
from ..models import Activity, Chat, JoinResult, User
from ..notifications import Notifier
from ..store import EntityStore
from ..validation import validate_activity_fields
from .pending import PendingKeys

JoinState = Literal["creator", "joined", "full", "open"]

GENERIC_FAILURE = "Something went wrong. Please try again."


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def join_state(activity: Activity, user_id: str) -> JoinState:
    """Classify how ``user_id`` relates to ``activity`` for button state."""

    if activity.creator_id == user_id:
        return "creator"
    if activity.has_participant(user_id):
        return "joined"
    if activity.is_full:
        return "full"
    return "open"


class ActivityService:
    def __init__(
        self,
        store: EntityStore,
        backend: Backend,
        notifier: Notifier,
        *,
        clock: Callable[[], datetime] = _utcnow,
        logger: logging.Logger | None = None,
    ) -> None:
        self._store = store
        self._backend = backend
        self._notifier = notifier
        self._clock = clock
        self._log = logger or logging.getLogger(self.__class__.__name__)
        self._pending = PendingKeys()

    def pending_operations(self) -> int:
        return len(self._pending)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _require_user(self, user_id: str) -> User:
        user = self._store.get_user(user_id)
        if user is None:
            raise NotFoundError(f"User {user_id} not found")
        return user

    def _fail(self, exc: FitMatchError) -> None:
        if isinstance(exc, TransportError):
            self._notifier.notify(GENERIC_FAILURE, "error")
        else:
            self._notifier.notify(str(exc), "error")

    def _reconcile(self, activity_id: str) -> None:
        """Refetch one activity after the backend disagreed with the store."""

        try:
            fresh = self._backend.fetch_activity(activity_id)
        except NotFoundError:
            self._log.info("Activity %s no longer exists; dropping it", activity_id)
            self._store.remove_activity(activity_id)
            return
        except FitMatchError as exc:
            self._log.warning("Could not reconcile activity %s: %s", activity_id, exc)
            return
        self._store.put_activity(fresh)

    def _apply_result(self, result: JoinResult) -> None:
        activity_id = result.activity.id
        with self._store.transaction():
            self._store.put_activity(result.activity)
            if result.chat is not None:
                self._store.put_chat(result.chat)
            elif result.system_message is not None:
                self._store.merge_message(activity_id, result.system_message)

    def _guard(
        self,
        operation: str,
        user_id: str,
        subject: str,
        rollback: Callable[[], None],
        call: Callable[[str], Any],
        *,
        reconcile: bool = True,
    ) -> Any:
        """Run ``call(key)``; undo the optimistic change when it fails.

        The idempotency key survives a transport failure so a retry of the
        same operation is recognised by the backend. Any other outcome ends
        every pending operation on the same (user, subject) pair.
        """

        key = self._pending.key_for(operation, user_id, subject)
        try:
            result = call(key)
        except TransportError as exc:
            rollback()
            self._log.warning(
                "%s failed in transport user=%s subject=%s: %s",
                operation,
                user_id,
                subject,
                exc,
            )
            self._fail(exc)
            raise
        except (ConflictError, NotFoundError) as exc:
            self._pending.discard(user_id, subject)
            rollback()
            self._log.info(
                "%s rejected user=%s subject=%s: %s", operation, user_id, subject, exc
            )
            if reconcile:
                self._reconcile(subject)
            self._fail(exc)
            raise
        except FitMatchError as exc:
            self._pending.discard(user_id, subject)
            rollback()
            self._log.info(
                "%s rejected user=%s subject=%s: %s", operation, user_id, subject, exc
            )
            self._fail(exc)
            raise
        self._pending.discard(user_id, subject)
        return result

    # ------------------------------------------------------------------
    # Join / leave
    # ------------------------------------------------------------------
    def join(self, activity_id: str, user_id: str) -> JoinResult:
        user = self._require_user(user_id)
        local = self._store.get_activity(activity_id)
        try:
            if user.is_deactivated:
                raise AuthorizationError("Your account is deactivated")
            if local is not None:
                state = join_state(local, user_id)
                if state == "creator":
                    raise ConflictError("You created this activity")
                if state == "joined":
                    raise ConflictError("You have already joined this activity")
                if state == "full":
                    raise ConflictError("This activity is full")
        except FitMatchError as exc:
            self._fail(exc)
            raise

        previous = self._store.add_participant(activity_id, user_id)
        result: JoinResult = self._guard(
            "join",
            user_id,
            activity_id,
            lambda: self._store.restore_activity(activity_id, previous),
            lambda key: self._backend.join_activity(activity_id, user_id, key),
        )
        self._apply_result(result)
        self._log.info("User %s joined activity %s", user_id, activity_id)
        self._notifier.notify(f'Successfully joined "{result.activity.title}"!', "success")
        return result

    def leave(self, activity_id: str, user_id: str) -> JoinResult:
        self._require_user(user_id)
        local = self._store.get_activity(activity_id)
        try:
            if local is not None:
                if local.creator_id == user_id:
                    raise ConflictError(
                        "The creator cannot leave; delete the activity instead"
                    )
                if not local.has_participant(user_id):
                    raise ConflictError("You are not part of this activity")
        except FitMatchError as exc:
            self._fail(exc)
            raise

        previous = self._store.remove_participant(activity_id, user_id)
        result: JoinResult = self._guard(
            "leave",
            user_id,
            activity_id,
            lambda: self._store.restore_activity(activity_id, previous),
            lambda key: self._backend.leave_activity(activity_id, user_id, key),
        )
        self._apply_result(result)
        self._log.info("User %s left activity %s", user_id, activity_id)
        self._notifier.notify(f'You have left "{result.activity.title}".', "info")
        return result

    # ------------------------------------------------------------------
    # Create / edit / delete
    # ------------------------------------------------------------------
    def create(self, fields: Mapping[str, Any], user_id: str) -> Activity:
        user = self._require_user(user_id)
        try:
            if user.is_deactivated:
                raise AuthorizationError("Your account is deactivated")
            cleaned = validate_activity_fields(fields, self._store.get_sport, self._clock())
        except FitMatchError as exc:
            self._fail(exc)
            raise

        fingerprint = "|".join(f"{k}={cleaned[k]!r}" for k in sorted(cleaned))
        activity: Activity = self._guard(
            "create",
            user_id,
            fingerprint,
            lambda: None,
            lambda key: self._backend.create_activity(cleaned, user_id, key),
            reconcile=False,
        )
        self._store.put_activity(activity)
        self._log.info("User %s created activity %s", user_id, activity.id)
        self._notifier.notify("Activity created successfully!", "success")
        return activity

    def edit(
        self, activity_id: str, patch: Mapping[str, Any], user_id: str
    ) -> Activity:
        local = self._store.get_activity(activity_id)
        try:
            if local is None:
                raise NotFoundError(f"Activity {activity_id} not found")
            if local.creator_id != user_id:
                raise AuthorizationError("Only the creator can edit this activity")
            merged: Dict[str, Any] = {
                "sport_id": local.sport_id,
                "other_sport_name": local.other_sport_name,
                "title": local.title,
                "date_time": local.date_time,
                "location_name": local.location_name,
                "location_coords": local.location_coords,
                "activity_type": local.activity_type,
                "level": local.level,
                "partners_needed": local.partners_needed,
            }
            merged.update(patch)
            cleaned = validate_activity_fields(
                merged,
                self._store.get_sport,
                self._clock(),
                check_date="date_time" in patch,
            )
        except FitMatchError as exc:
            self._fail(exc)
            raise

        changes = {name: cleaned[name] for name in patch}
        previous = self._store.put_activity(replace(local, **changes))
        updated: Activity = self._guard(
            "edit",
            user_id,
            activity_id,
            lambda: self._store.restore_activity(activity_id, previous),
            lambda key: self._backend.update_activity(activity_id, changes, user_id, key),
        )
        self._store.put_activity(updated)
        self._notifier.notify("Activity updated successfully!", "success")
        return updated

    def delete(self, activity_id: str, user_id: str) -> None:
        actor = self._require_user(user_id)
        local = self._store.get_activity(activity_id)
        try:
            if local is not None and local.creator_id != user_id and not actor.is_admin:
                raise AuthorizationError(
                    "Only the creator or an admin can delete this activity"
                )
        except FitMatchError as exc:
            self._fail(exc)
            raise

        removed: Tuple[Optional[Activity], Optional[Chat]] = self._store.remove_activity(
            activity_id
        )

        def rollback() -> None:
            activity, chat = removed
            with self._store.transaction():
                if activity is not None:
                    self._store.put_activity(activity)
                if chat is not None:
                    self._store.put_chat(chat)

        self._guard(
            "delete",
            user_id,
            activity_id,
            rollback,
            lambda key: self._backend.delete_activity(activity_id, user_id, key),
        )
        title = local.title if local is not None else activity_id
        self._log.info("User %s deleted activity %s", user_id, activity_id)
        self._notifier.notify(f'Activity "{title}" deleted.', "info")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------
    def refresh(self) -> None:
        """Replace the activity collection with a fresh backend snapshot."""

        activities = self._backend.fetch_activities()
        self._store.hydrate(activities=activities)
        self.settle_pending(activities)

    def settle_pending(self, activities: Iterable[Activity]) -> None:
        """Drop keys whose transition a complete snapshot already shows.

        A join is settled once the user participates, a leave once they do
        not, and every operation on an activity missing from the snapshot is
        settled (it can no longer be retried).
        """

        current = {a.id: a for a in activities}
        for operation, user_id, subject in self._pending.slots():
            if operation == "create":
                continue
            activity = current.get(subject)
            if activity is None:
                settled = True
            elif operation == "join":
                settled = activity.has_participant(user_id)
            elif operation == "leave":
                settled = not activity.has_participant(user_id)
            else:
                settled = False
            if settled:
                self._log.debug(
                    "Settled pending %s user=%s subject=%s", operation, user_id, subject
                )
                self._pending.resolve(operation, user_id, subject)

    def join_state(self, activity_id: str, user_id: str) -> JoinState:
        activity = self._store.get_activity(activity_id)
        if activity is None:
            raise NotFoundError(f"Activity {activity_id} not found")
        return join_state(activity, user_id)


__all__ = ["ActivityService", "GENERIC_FAILURE", "JoinState", "join_state"]
