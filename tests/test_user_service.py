"""Profile edits, search-origin preference and profile statistics."""

import pytest

from fitmatch.errors import TransportError, ValidationError
from fitmatch.models import HomeLocation

from conftest import CENTRE, activity_fields, north_of


def test_home_preference_requires_home_location(app_for):
    app_a = app_for("a")
    with pytest.raises(ValidationError):
        app_a.users.set_location_preference("a", "home")
    assert app_a.users.location_preference == "current"

    app_admin = app_for("admin")
    assert app_admin.users.set_location_preference("admin", "home") == "home"
    with pytest.raises(ValidationError):
        app_admin.users.set_location_preference("admin", "office")


def test_update_profile_persists_given_fields(app_for, backend, toasts):
    app_a = app_for("a")
    home = HomeLocation(CENTRE.lat, CENTRE.lon, "Home")

    updated = app_a.users.update_profile("a", name="  Anna ", home_location=home)

    assert updated.name == "Anna"
    assert updated.home_location == home
    assert app_a.store.get_user("a").name == "Anna"
    assert next(u for u in backend.fetch_users() if u.id == "a").name == "Anna"
    assert "Profile updated successfully!" in [t.message for t in toasts.active()]
    assert app_a.users.set_location_preference("a", "home") == "home"


def test_update_profile_rejects_bad_values(app_for, backend):
    app_a = app_for("a")
    with pytest.raises(ValidationError) as info:
        app_a.users.update_profile("a", name=" ", view_radius_km=0)
    assert set(info.value.errors) == {"name", "view_radius_km"}
    with pytest.raises(ValidationError):
        app_a.users.update_profile("a", view_radius_km="far")
    assert next(u for u in backend.fetch_users() if u.id == "a").name == "A"


def test_clearing_home_resets_preference(app_for):
    app_admin = app_for("admin")
    app_admin.users.set_location_preference("admin", "home")
    app_admin.users.update_profile("admin", home_location=None)
    assert app_admin.users.location_preference == "current"


def test_current_location_kept_locally_when_backend_unreachable(app_for, monkeypatch):
    app_a = app_for("a")
    moved = north_of(CENTRE, 2.0)

    def unreachable(user_id, coords):
        raise TransportError("offline")

    monkeypatch.setattr(app_a.backend, "update_user_location", unreachable)
    user = app_a.users.update_current_location("a", moved)
    assert user.current_location == moved
    assert app_a.store.get_user("a").current_location == moved


def test_profile_stats_counts_created_and_joined(app_for):
    app_a = app_for("a")
    app_a.activities.join("act-1", "a")
    app_a.activities.create(activity_fields(), "a")
    stats = app_a.users.profile_stats("a")
    assert (stats.created, stats.joined) == (1, 1)
