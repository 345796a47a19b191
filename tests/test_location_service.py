"""Bounded device-location refresh."""

import threading

import pytest

from fitmatch.services.location_service import (
    NO_LOCATION_WARNING,
    STALE_LOCATION_WARNING,
    UNSUPPORTED_WARNING,
    LocationService,
)

from conftest import CENTRE, north_of


@pytest.fixture
def app_a(app_for):
    return app_for("a")


def _service(app, provider, timeout=1.0):
    return LocationService(app.store, app.users, app.notifier, provider, timeout=timeout)


def _toasts(app):
    return [(t.level, t.message) for t in app.notifier.active()]


def test_fresh_location_is_stored_and_persisted(app_a, backend):
    fresh = north_of(CENTRE, 1.5)
    service = _service(app_a, lambda: fresh)
    try:
        assert service.refresh_current_location("a") == fresh
    finally:
        service.shutdown()
    assert app_a.store.get_user("a").current_location == fresh
    assert next(u for u in backend.fetch_users() if u.id == "a").current_location == fresh


def test_timeout_falls_back_to_last_known(app_a):
    release = threading.Event()

    def slow():
        release.wait(5)
        return north_of(CENTRE, 9.0)

    service = _service(app_a, slow, timeout=0.05)
    try:
        assert service.refresh_current_location("a") == CENTRE
    finally:
        release.set()
        service.shutdown()
    assert ("warning", STALE_LOCATION_WARNING) in _toasts(app_a)
    assert app_a.store.get_user("a").current_location == CENTRE


def test_provider_error_keeps_last_known(app_a):
    def denied():
        raise PermissionError("denied")

    service = _service(app_a, denied)
    try:
        assert service.refresh_current_location("a") == CENTRE
    finally:
        service.shutdown()
    assert ("warning", NO_LOCATION_WARNING) in _toasts(app_a)


def test_result_for_ended_session_is_dropped(app_a):
    holder = {}

    def provider():
        holder["service"].invalidate()
        return north_of(CENTRE, 4.0)

    service = _service(app_a, provider)
    holder["service"] = service
    try:
        assert service.refresh_current_location("a") is None
    finally:
        service.shutdown()
    assert app_a.store.get_user("a").current_location == CENTRE


def test_missing_provider_reports_unsupported(app_a):
    service = _service(app_a, None)
    try:
        assert not service.available
        assert service.refresh_current_location("a") == CENTRE
    finally:
        service.shutdown()
    assert ("error", UNSUPPORTED_WARNING) in _toasts(app_a)
