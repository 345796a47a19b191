"""Global pytest fixtures & helpers.

Adds project root to path and provides a seeded in-process backend plus
application factories so service tests share one reference world.
"""
from __future__ import annotations

import math
import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from fitmatch.app import FitMatchApp
from fitmatch.backend.memory import InMemoryBackend
from fitmatch.errors import TransportError
from fitmatch.models import Activity, Coordinates, Event, HomeLocation, PlaceResult, Sport, User
from fitmatch.notifications import ToastCenter

NOW = datetime(2030, 6, 1, 12, 0, tzinfo=timezone.utc)
CENTRE = Coordinates(52.3676, 4.9041)
KM_PER_DEGREE_LAT = 6371.0 * math.pi / 180.0


# --- Factory helpers -------------------------------------------------
def fixed_clock() -> datetime:
    return NOW


def north_of(origin: Coordinates, km: float) -> Coordinates:
    """Point ``km`` kilometres due north of ``origin`` (same meridian)."""
    return Coordinates(origin.lat + km / KM_PER_DEGREE_LAT, origin.lon)


def make_users():
    return [
        User(id="c", name="Carla", current_location=CENTRE),
        User(id="a", name="A", current_location=CENTRE),
        User(id="b", name="B", current_location=CENTRE),
        User(
            id="admin",
            name="Ada",
            current_location=CENTRE,
            home_location=HomeLocation(CENTRE.lat, CENTRE.lon, "Dam Square"),
            is_admin=True,
        ),
    ]


def make_sports():
    return [
        Sport(
            id="running",
            name="Running",
            activity_types=("Casual Run", "Interval Training"),
            levels=("Beginner", "Intermediate", "Advanced"),
        ),
        Sport(
            id="football",
            name="Football",
            is_team_sport=True,
            activity_types=("Casual Match",),
            levels=("All levels",),
        ),
    ]


def make_activity(
    activity_id="act-1",
    *,
    creator_id="c",
    coords=None,
    partners_needed=2,
    participants=None,
    days_ahead=3,
    title="Morning run",
):
    return Activity(
        id=activity_id,
        sport_id="running",
        title=title,
        creator_id=creator_id,
        date_time=NOW + timedelta(days=days_ahead),
        location_name="Vondelpark",
        location_coords=coords or north_of(CENTRE, 3.0),
        activity_type="Casual Run",
        level="Beginner",
        partners_needed=partners_needed,
        participants=tuple(participants or (creator_id,)),
    )


def activity_fields(**overrides):
    fields = {
        "sport_id": "running",
        "title": "Evening intervals",
        "date_time": NOW + timedelta(days=2),
        "location_name": "Olympic Stadium",
        "location_coords": north_of(CENTRE, 1.0),
        "activity_type": "Interval Training",
        "level": "Intermediate",
        "partners_needed": 4,
    }
    fields.update(overrides)
    return fields


def make_event(event_id="event-1", days_ahead=10, title="City Marathon"):
    return Event(
        id=event_id,
        title=title,
        sport="Running",
        city="Amsterdam",
        date=NOW + timedelta(days=days_ahead),
        registration_url="https://example.org/register",
    )


class StubGeocoder:
    def search(self, query):
        return [PlaceResult(CENTRE.lat, CENTRE.lon, query)]

    def reverse(self, coords):
        return "Somewhere"


def make_app(backend, *, toasts=None, location_provider=None):
    return FitMatchApp(
        backend,
        notifier=toasts or ToastCenter(timer=lambda: 0.0),
        location_provider=location_provider,
        geocoder=StubGeocoder(),
        clock=fixed_clock,
    )


def signed_in(backend, user_id, **kwargs):
    app = make_app(backend, **kwargs)
    user = next(u for u in backend.fetch_users() if u.id == user_id)
    assert app.session.login(user)
    return app


def messages_text(chat):
    return [m.text for m in chat.messages]


class TimeoutAfterApply:
    """Backend proxy whose first call of one operation times out after applying."""

    def __init__(self, inner, operation="join_activity"):
        self._inner = inner
        self._operation = operation
        self.keys = []
        self.fail_next = True

    def __getattr__(self, name):
        attr = getattr(self._inner, name)
        if name != self._operation:
            return attr

        def wrapper(*args):
            self.keys.append(args[-1])
            result = attr(*args)
            if self.fail_next:
                self.fail_next = False
                raise TransportError("request timed out")
            return result

        return wrapper


# --- Fixtures --------------------------------------------------------
@pytest.fixture
def backend():
    return InMemoryBackend(clock=fixed_clock).seed(
        users=make_users(),
        sports=make_sports(),
        activities=[make_activity()],
        events=[make_event(), make_event("event-0", days_ahead=5, title="Park Run")],
    )


@pytest.fixture
def toasts():
    return ToastCenter(timer=lambda: 0.0)


@pytest.fixture
def app_for(backend, toasts):
    """Factory returning an app signed in as the given user."""

    apps = []

    def _factory(user_id, **kwargs):
        kwargs.setdefault("toasts", toasts)
        app = signed_in(backend, user_id, **kwargs)
        apps.append(app)
        return app

    yield _factory
    for app in apps:
        app.close()
