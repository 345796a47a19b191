"""Command line entry point.

Loads a JSON snapshot into the in-process backend, signs in as one user and
prints a derived view. Useful for demos and for checking seed data::

    python -m fitmatch --data seed.json --user u1 nearby --preference home
"""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Sequence

from .app import FitMatchApp
from .backend import InMemoryBackend
from .backend.codec import snapshot_from_record
from .errors import FitMatchError
from .models import Activity

LOGGER = logging.getLogger(__name__)


def _setup_logging(verbose: bool = False) -> None:
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(
            level=logging.DEBUG if verbose else logging.INFO,
            format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        )


def load_snapshot(path: Path) -> InMemoryBackend:
    with path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    snapshot = snapshot_from_record(data)
    LOGGER.info(
        "Loaded snapshot %s: users=%d activities=%d events=%d",
        path,
        len(snapshot["users"]),
        len(snapshot["activities"]),
        len(snapshot["events"]),
    )
    return InMemoryBackend().seed(**snapshot)


def _capacity(activity: Activity) -> str:
    cap = "unlimited" if activity.partners_needed == 0 else str(activity.partners_needed)
    return f"{len(activity.participants)}/{cap}"


def _describe(activity: Activity) -> str:
    return (
        f"{activity.title} | {activity.date_time:%Y-%m-%d %H:%M} | "
        f"{activity.location_name} | {_capacity(activity)}"
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="fitmatch", description="Inspect activities for one user"
    )
    parser.add_argument("--data", required=True, type=Path, help="JSON snapshot file")
    parser.add_argument("--user", required=True, help="Id of the user to sign in as")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)
    nearby = sub.add_parser("nearby", help="Activities within the user's radius")
    nearby.add_argument("--preference", choices=("current", "home"), default="current")
    sub.add_parser("mine", help="Activities the user created or joined")
    sub.add_parser("chats", help="Chats visible to the user")
    sub.add_parser("events", help="Upcoming events")
    sub.add_parser("stats", help="Profile and (for admins) dashboard counts")
    return parser.parse_args(argv)


def run(args: argparse.Namespace, app: FitMatchApp) -> int:
    users = app.backend.fetch_users()
    match = next((u for u in users if u.id == args.user), None)
    if match is None:
        LOGGER.error("Unknown user %s", args.user)
        return 2
    if not app.session.login(match):
        return 1

    if args.command == "nearby":
        app.users.set_location_preference(match.id, args.preference)
        for found in app.nearby():
            print(f"{found.distance_km:6.2f} km | {_describe(found.activity)}")
    elif args.command == "mine":
        for activity in app.my_activities():
            role = "creator" if activity.creator_id == match.id else "joined"
            print(f"[{role}] {_describe(activity)}")
    elif args.command == "chats":
        for chat in app.chats.visible_chats(match.id):
            activity = app.store.get_activity(chat.activity_id)
            title = activity.title if activity is not None else chat.activity_id
            mode = "" if app.chats.can_send(chat.activity_id, match.id) else " (read only)"
            print(f"== {title}{mode}")
            for message in chat.messages:
                sender = "system" if message.is_system else message.sender_id
                print(f"  {message.timestamp:%Y-%m-%d %H:%M} {sender}: {message.text}")
    elif args.command == "events":
        for event in app.events.list_events():
            print(f"{event.date:%Y-%m-%d} | {event.title} | {event.sport} | {event.city}")
    elif args.command == "stats":
        stats = app.users.profile_stats(match.id)
        print(f"Activities created: {stats.created}")
        print(f"Activities joined: {stats.joined}")
        if match.is_admin:
            dashboard = app.admin.stats()
            print(f"Total users: {dashboard.total_users}")
            print(f"Total activities: {dashboard.total_activities}")
            print(f"Total events: {dashboard.total_events}")
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    _setup_logging(args.verbose)
    backend = load_snapshot(args.data)
    app = FitMatchApp(backend)
    try:
        return run(args, app)
    except FitMatchError as exc:
        LOGGER.error("%s failed: %s", args.command, exc)
        return 1
    finally:
        app.close()


__all__ = ["load_snapshot", "main", "parse_args", "run"]
