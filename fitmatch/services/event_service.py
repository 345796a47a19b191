"""City-wide event listings with admin-only maintenance."""

from __future__ import annotations

import logging
from typing import Any, List, Mapping

from ..backend.base import Backend
from ..errors import AuthorizationError, FitMatchError, NotFoundError
from ..models import Event
from ..notifications import Notifier
from ..store import EntityStore
from ..validation import validate_event_fields


class EventService:
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

    def list_events(self) -> List[Event]:
        return self._store.list_events()

    def refresh(self) -> List[Event]:
        try:
            events = self._backend.fetch_events()
        except FitMatchError:
            self._notifier.notify("Could not load events.", "error")
            raise
        self._store.hydrate(events=events)
        return self._store.list_events()

    def _check_admin(self, actor_id: str) -> None:
        actor = self._store.get_user(actor_id)
        if actor is None or not actor.is_admin:
            exc = AuthorizationError("Admin rights required")
            self._notifier.notify(str(exc), "error")
            raise exc

    def create_event(self, fields: Mapping[str, Any], actor_id: str) -> Event:
        self._check_admin(actor_id)
        try:
            cleaned = validate_event_fields(fields)
            event = self._backend.create_event(cleaned, actor_id)
        except FitMatchError as exc:
            self._log.info("Event creation failed: %s", exc)
            self._notifier.notify("Failed to create event.", "error")
            raise
        self._store.put_event(event)
        self._notifier.notify("Event created successfully!", "success")
        return event

    def update_event(
        self, event_id: str, fields: Mapping[str, Any], actor_id: str
    ) -> Event:
        self._check_admin(actor_id)
        current = self._store.get_event(event_id)
        try:
            if current is None:
                raise NotFoundError(f"Event {event_id} not found")
            merged = {
                "title": current.title,
                "sport": current.sport,
                "city": current.city,
                "date": current.date,
                "description": current.description,
                "image_url": current.image_url,
                "registration_url": current.registration_url,
            }
            merged.update(fields)
            cleaned = validate_event_fields(merged)
            changes = {name: cleaned[name] for name in fields}
            event = self._backend.update_event(event_id, changes, actor_id)
        except FitMatchError as exc:
            self._log.info("Event %s update failed: %s", event_id, exc)
            self._notifier.notify("Failed to update event.", "error")
            raise
        self._store.put_event(event)
        self._notifier.notify("Event updated successfully!", "success")
        return event

    def delete_event(self, event_id: str, actor_id: str) -> None:
        self._check_admin(actor_id)
        current = self._store.get_event(event_id)
        try:
            self._backend.delete_event(event_id, actor_id)
        except FitMatchError as exc:
            self._log.info("Event %s delete failed: %s", event_id, exc)
            self._notifier.notify("Failed to delete event.", "error")
            raise
        self._store.remove_event(event_id)
        title = current.title if current is not None else event_id
        self._notifier.notify(f'Event "{title}" deleted.', "info")


__all__ = ["EventService"]
