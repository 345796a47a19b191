import json

import pytest

from fitmatch import main as cli
from fitmatch.backend.codec import (
    activity_to_record,
    event_to_record,
    sport_to_record,
    user_to_record,
)

from conftest import make_activity, make_event, make_sports, make_users


@pytest.fixture
def snapshot(tmp_path):
    data = {
        "users": [user_to_record(u) for u in make_users()],
        "sports": [sport_to_record(s) for s in make_sports()],
        "activities": [activity_to_record(make_activity(participants=("c", "a")))],
        "events": [event_to_record(make_event())],
        "chats": [],
    }
    path = tmp_path / "seed.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def test_load_snapshot_seeds_backend(snapshot):
    backend = cli.load_snapshot(snapshot)
    assert len(backend.fetch_users()) == 4
    assert backend.fetch_activity("act-1").participants == ("c", "a")


def test_nearby_lists_activities_with_distance(snapshot, capsys):
    assert cli.main(["--data", str(snapshot), "--user", "b", "nearby"]) == 0
    out = capsys.readouterr().out
    assert "Morning run" in out
    assert "3.00 km" in out
    assert "2/2" in out


def test_mine_marks_role(snapshot, capsys):
    assert cli.main(["--data", str(snapshot), "--user", "a", "mine"]) == 0
    assert "[joined] Morning run" in capsys.readouterr().out


def test_stats_for_admin_include_dashboard(snapshot, capsys):
    assert cli.main(["--data", str(snapshot), "--user", "admin", "stats"]) == 0
    out = capsys.readouterr().out
    assert "Activities created: 0" in out
    assert "Total users: 4" in out


def test_home_preference_without_home_fails(snapshot):
    assert cli.main(["--data", str(snapshot), "--user", "b", "nearby", "--preference", "home"]) == 1


def test_unknown_user_exit_code(snapshot):
    assert cli.main(["--data", str(snapshot), "--user", "ghost", "events"]) == 2
