"""Admin-only maintenance: user removal cascade, deactivation, sports catalog."""

import pytest

from fitmatch.errors import AuthorizationError, ConflictError, TransportError
from fitmatch.models import Sport

from conftest import TimeoutAfterApply, make_activity, signed_in


@pytest.fixture
def admin(app_for):
    return app_for("admin")


def test_removing_creator_deletes_their_activities_and_chats(backend, admin, toasts):
    backend.join_activity("act-1", "a", "setup-join")
    admin.session.retry()

    result = admin.admin.remove_user("c", "admin")

    assert result.deleted_activity_ids == ["act-1"]
    assert admin.store.get_user("c") is None
    assert admin.store.get_activity("act-1") is None
    assert admin.store.get_chat("act-1") is None
    assert backend.fetch_activities() == []
    assert "c" not in {u.id for u in backend.fetch_users()}
    assert ("info", 'User "Carla" has been deleted.') in [
        (t.level, t.message) for t in toasts.active()
    ]


def test_removing_participant_cleans_memberships(backend, admin):
    backend.join_activity("act-1", "a", "setup-join")
    admin.session.retry()

    result = admin.admin.remove_user("a", "admin")

    assert result.cleaned_activity_ids == ["act-1"]
    assert admin.store.get_activity("act-1").participants == ("c",)
    assert backend.fetch_activity("act-1").participants == ("c",)


def test_admin_cannot_remove_self(admin, backend):
    with pytest.raises(AuthorizationError, match="your own account"):
        admin.admin.remove_user("admin", "admin")
    assert "admin" in {u.id for u in backend.fetch_users()}


def test_non_admin_cannot_remove_users(app_for, backend):
    with pytest.raises(AuthorizationError):
        app_for("a").admin.remove_user("b", "a")
    assert len(backend.fetch_users()) == 4


def test_remove_user_retry_after_timeout_is_idempotent(backend):
    flaky = TimeoutAfterApply(backend, operation="remove_user")
    app = signed_in(flaky, "admin")
    with pytest.raises(TransportError):
        app.admin.remove_user("b", "admin")

    result = app.admin.remove_user("b", "admin")
    assert result.user_id == "b"
    assert flaky.keys[0] == flaky.keys[1]
    assert app.store.get_user("b") is None
    app.close()


def test_deactivated_user_is_blocked(admin, app_for):
    updated = admin.admin.set_user_deactivated("b", True, "admin")
    assert updated.is_deactivated

    with pytest.raises(AuthorizationError):
        app_for("b").activities.join("act-1", "b")
    with pytest.raises(AuthorizationError):
        admin.admin.set_user_deactivated("admin", True, "admin")


def test_admin_can_delete_any_activity(admin, backend):
    admin.admin.delete_activity("act-1", "admin")
    assert backend.fetch_activities() == []


def test_sports_catalog_maintenance(admin, backend):
    padel = admin.admin.add_sport(
        Sport(id="padel", name="Padel", activity_types=("Match",), levels=("Any",)),
        "admin",
    )
    assert admin.store.get_sport("padel") == padel

    with pytest.raises(ConflictError):
        admin.admin.remove_sport("running", "admin")
    admin.admin.remove_sport("padel", "admin")
    assert admin.store.get_sport("padel") is None
    assert "padel" not in {s.id for s in backend.fetch_sports()}


def test_dashboard_stats(backend, admin):
    backend.seed(activities=[make_activity("act-2")])
    admin.session.retry()
    stats = admin.admin.stats()
    assert (stats.total_users, stats.total_activities, stats.total_events) == (4, 2, 2)
    assert [u.name for u in admin.admin.users()] == ["A", "Ada", "B", "Carla"]
