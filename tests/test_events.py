"""Event listings and admin maintenance."""

from datetime import timedelta

import pytest

from fitmatch.errors import AuthorizationError, NotFoundError, TransportError, ValidationError

from conftest import NOW


def _event_fields(**overrides):
    fields = {
        "title": "Canal Swim",
        "sport": "Swimming",
        "city": "Amsterdam",
        "date": NOW + timedelta(days=20),
        "registration_url": "https://example.org/swim",
    }
    fields.update(overrides)
    return fields


def test_events_listed_by_date(app_for):
    events = app_for("a").events.list_events()
    assert [e.title for e in events] == ["Park Run", "City Marathon"]


def test_admin_creates_updates_and_deletes_event(app_for, backend, toasts):
    admin = app_for("admin")
    event = admin.events.create_event(_event_fields(), "admin")
    assert event.id in {e.id for e in backend.fetch_events()}

    updated = admin.events.update_event(event.id, {"city": "Utrecht"}, "admin")
    assert updated.city == "Utrecht"
    assert updated.title == "Canal Swim"
    assert admin.store.get_event(event.id).city == "Utrecht"

    admin.events.delete_event(event.id, "admin")
    assert admin.store.get_event(event.id) is None
    messages = [t.message for t in toasts.active()]
    assert "Event created successfully!" in messages
    assert "Event updated successfully!" in messages
    assert 'Event "Canal Swim" deleted.' in messages


def test_non_admin_cannot_manage_events(app_for, backend):
    with pytest.raises(AuthorizationError):
        app_for("a").events.create_event(_event_fields(), "a")
    assert len(backend.fetch_events()) == 2


def test_event_validation(app_for):
    admin = app_for("admin")
    with pytest.raises(ValidationError) as info:
        admin.events.create_event(
            _event_fields(title=" ", registration_url="ftp://nope"), "admin"
        )
    assert set(info.value.errors) == {"title", "registration_url"}


def test_update_unknown_event(app_for):
    with pytest.raises(NotFoundError):
        app_for("admin").events.update_event("missing", {"city": "X"}, "admin")


def test_refresh_failure_notifies(app_for, monkeypatch, toasts):
    app = app_for("a")

    def boom():
        raise TransportError("down")

    monkeypatch.setattr(app.backend, "fetch_events", boom)
    with pytest.raises(TransportError):
        app.events.refresh()
    assert "Could not load events." in [t.message for t in toasts.active()]
    # The cached listing survives the failed refresh
    assert len(app.events.list_events()) == 2
