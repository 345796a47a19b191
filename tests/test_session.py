"""Sign-in hydration and sign-out cleanup."""

from fitmatch.errors import TransportError
from fitmatch.services.session_service import LOAD_FAILURE

from conftest import CENTRE, make_app, north_of


class BrokenActivities:
    def __init__(self, inner):
        self._inner = inner
        self.broken = True

    def __getattr__(self, name):
        return getattr(self._inner, name)

    def fetch_activities(self):
        if self.broken:
            raise TransportError("timed out")
        return self._inner.fetch_activities()


def _user(backend, user_id):
    return next(u for u in backend.fetch_users() if u.id == user_id)


def test_failed_hydration_can_be_retried(backend, toasts):
    proxy = BrokenActivities(backend)
    app = make_app(proxy, toasts=toasts)
    try:
        assert not app.session.login(_user(backend, "a"))
        assert app.session.is_authenticated
        assert not app.session.ready
        assert app.store.list_activities() == []
        assert app.session.current_user.id == "a"
        assert ("error", LOAD_FAILURE) in [(t.level, t.message) for t in toasts.active()]

        proxy.broken = False
        assert app.session.retry()
        assert app.session.ready
        assert [a.id for a in app.store.list_activities()] == ["act-1"]
    finally:
        app.close()


def test_login_refreshes_device_location(backend):
    fresh = north_of(CENTRE, 0.5)
    app = make_app(backend, location_provider=lambda: fresh)
    try:
        assert app.session.login(_user(backend, "a"))
        assert app.session.current_user.current_location == fresh
        assert _user(backend, "a").current_location == fresh
    finally:
        app.close()


def test_logout_clears_user_scoped_state(backend, app_for):
    backend.join_activity("act-1", "a", "setup-join")
    app = app_for("admin")
    app.users.set_location_preference("admin", "home")
    app.chats.subscribe("act-1")

    app.session.logout()

    assert not app.session.is_authenticated
    assert app.session.current_user is None
    assert app.store.list_activities() == []
    assert app.store.list_chats() == []
    assert app.chats.active_subscriptions() == []
    assert app.users.location_preference == "current"
    assert app.location.generation == 1
