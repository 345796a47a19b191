"""Conversion between wire records (snake_case JSON) and model dataclasses."""

from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Dict, List, Mapping

from ..models import (
    Activity,
    Chat,
    Coordinates,
    Event,
    HomeLocation,
    JoinResult,
    Message,
    Sport,
    User,
    UserRemovalResult,
)

JSONObj = Dict[str, Any]


def parse_datetime(value: Any) -> datetime:
    """Parse ISO-8601 strings (``Z`` suffix allowed) into aware datetimes."""

    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _coords(value: Any) -> Coordinates | None:
    if not value:
        return None
    return Coordinates(float(value["lat"]), float(value["lon"]))


def _coords_record(value: Coordinates | None) -> JSONObj | None:
    if value is None:
        return None
    return {"lat": value.lat, "lon": value.lon}


def _optional_float(value: Any) -> float | None:
    return None if value is None else float(value)


# ---------------------------------------------------------------------------
# Users / sports / events
# ---------------------------------------------------------------------------
def user_from_record(record: Mapping[str, Any]) -> User:
    home = record.get("home_location")
    return User(
        id=str(record["id"]),
        name=str(record.get("name") or ""),
        email=record.get("email"),
        avatar_url=record.get("avatar_url"),
        current_location=_coords(record.get("current_location")),
        home_location=(
            HomeLocation(float(home["lat"]), float(home["lon"]), str(home.get("name") or ""))
            if home
            else None
        ),
        view_radius_km=_optional_float(record.get("view_radius")),
        is_admin=bool(record.get("is_admin", False)),
        is_deactivated=bool(record.get("is_deactivated", False)),
    )


def user_to_record(user: User) -> JSONObj:
    home = user.home_location
    return {
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "avatar_url": user.avatar_url,
        "current_location": _coords_record(user.current_location),
        "home_location": (
            {"lat": home.lat, "lon": home.lon, "name": home.name} if home else None
        ),
        "view_radius": user.view_radius_km,
        "is_admin": user.is_admin,
        "is_deactivated": user.is_deactivated,
    }


def profile_fields_to_record(fields: Mapping[str, Any]) -> JSONObj:
    """Encode a partial profile update (only the keys present)."""

    record: JSONObj = {}
    for key, value in fields.items():
        if key == "home_location":
            record[key] = (
                {"lat": value.lat, "lon": value.lon, "name": value.name} if value else None
            )
        elif key == "view_radius_km":
            record["view_radius"] = value
        else:
            record[key] = value
    return record


def sport_from_record(record: Mapping[str, Any]) -> Sport:
    return Sport(
        id=str(record["id"]),
        name=str(record.get("name") or ""),
        is_team_sport=bool(record.get("is_team_sport", False)),
        activity_types=tuple(record.get("activity_types") or ()),
        levels=tuple(record.get("levels") or ()),
    )


def sport_to_record(sport: Sport) -> JSONObj:
    return {
        "id": sport.id,
        "name": sport.name,
        "is_team_sport": sport.is_team_sport,
        "activity_types": list(sport.activity_types),
        "levels": list(sport.levels),
    }


def event_from_record(record: Mapping[str, Any]) -> Event:
    return Event(
        id=str(record["id"]),
        title=str(record.get("title") or ""),
        sport=str(record.get("sport") or ""),
        city=str(record.get("city") or ""),
        date=parse_datetime(record["date"]),
        description=str(record.get("description") or ""),
        image_url=str(record.get("image_url") or ""),
        registration_url=str(record.get("registration_url") or ""),
    )


def event_fields_to_record(fields: Mapping[str, Any]) -> JSONObj:
    return {
        key: format_datetime(value) if isinstance(value, datetime) else value
        for key, value in fields.items()
    }


def event_to_record(event: Event) -> JSONObj:
    return {
        "id": event.id,
        "title": event.title,
        "sport": event.sport,
        "city": event.city,
        "date": format_datetime(event.date),
        "description": event.description,
        "image_url": event.image_url,
        "registration_url": event.registration_url,
    }


# ---------------------------------------------------------------------------
# Activities
# ---------------------------------------------------------------------------
def activity_from_record(record: Mapping[str, Any]) -> Activity:
    coords = _coords(record.get("location_coords"))
    if coords is None:
        raise ValueError(f"Activity {record.get('id')} has no coordinates")
    return Activity(
        id=str(record["id"]),
        sport_id=str(record.get("sport_id") or ""),
        title=str(record.get("title") or ""),
        creator_id=str(record["creator_id"]),
        date_time=parse_datetime(record["date_time"]),
        location_name=str(record.get("location_name") or ""),
        location_coords=coords,
        activity_type=str(record.get("activity_type") or ""),
        level=str(record.get("level") or ""),
        partners_needed=int(record.get("partners_needed") or 0),
        participants=tuple(dict.fromkeys(str(p) for p in record.get("participants") or ())),
        other_sport_name=record.get("other_sport_name"),
    )


def activity_fields_to_record(fields: Mapping[str, Any]) -> JSONObj:
    record: JSONObj = {}
    for key, value in fields.items():
        if isinstance(value, datetime):
            record[key] = format_datetime(value)
        elif isinstance(value, Coordinates):
            record[key] = _coords_record(value)
        else:
            record[key] = value
    return record


def activity_to_record(activity: Activity) -> JSONObj:
    return {
        "id": activity.id,
        "sport_id": activity.sport_id,
        "other_sport_name": activity.other_sport_name,
        "title": activity.title,
        "creator_id": activity.creator_id,
        "date_time": format_datetime(activity.date_time),
        "location_name": activity.location_name,
        "location_coords": _coords_record(activity.location_coords),
        "activity_type": activity.activity_type,
        "level": activity.level,
        "partners_needed": activity.partners_needed,
        "participants": list(activity.participants),
    }


# ---------------------------------------------------------------------------
# Chats
# ---------------------------------------------------------------------------
def message_from_record(record: Mapping[str, Any]) -> Message:
    sender = record.get("sender_id")
    is_system = bool(record.get("is_system_message", sender in (None, "system")))
    return Message(
        id=str(record["id"]),
        sender_id=None if is_system else str(sender),
        text=str(record.get("text") or ""),
        timestamp=parse_datetime(record["timestamp"]),
        is_system=is_system,
        status="sent",
        client_id=record.get("client_id"),
    )


def message_to_record(message: Message) -> JSONObj:
    return {
        "id": message.id,
        "sender_id": message.sender_id,
        "text": message.text,
        "timestamp": format_datetime(message.timestamp),
        "is_system_message": message.is_system,
        "client_id": message.client_id,
    }


def chat_from_record(record: Mapping[str, Any]) -> Chat:
    activity_id = str(record.get("activity_id") or record["id"])
    messages = [message_from_record(m) for m in record.get("messages") or ()]
    return Chat(
        activity_id=activity_id,
        messages=messages,
        members=tuple(str(m) for m in record.get("members") or ()),
    )


def chat_to_record(chat: Chat) -> JSONObj:
    return {
        "id": chat.activity_id,
        "activity_id": chat.activity_id,
        "members": list(chat.members),
        "messages": [message_to_record(m) for m in chat.messages],
    }


def join_result_from_record(record: Mapping[str, Any]) -> JoinResult:
    message = record.get("system_message")
    chat = record.get("chat")
    return JoinResult(
        activity=activity_from_record(record["activity"]),
        chat_created=bool(record.get("chat_created", False)),
        system_message=message_from_record(message) if message else None,
        chat=chat_from_record(chat) if chat else None,
    )


def removal_from_record(record: Mapping[str, Any]) -> UserRemovalResult:
    return UserRemovalResult(
        user_id=str(record["user_id"]),
        deleted_activity_ids=[str(i) for i in record.get("deleted_activity_ids") or ()],
        cleaned_activity_ids=[str(i) for i in record.get("cleaned_activity_ids") or ()],
    )


# ---------------------------------------------------------------------------
# Snapshots
# ---------------------------------------------------------------------------
def snapshot_from_record(data: Mapping[str, Any]) -> Dict[str, List[Any]]:
    """Decode a full snapshot ``{"users": [...], "sports": [...], ...}``."""

    return {
        "users": [user_from_record(r) for r in data.get("users") or ()],
        "sports": [sport_from_record(r) for r in data.get("sports") or ()],
        "activities": [activity_from_record(r) for r in data.get("activities") or ()],
        "events": [event_from_record(r) for r in data.get("events") or ()],
        "chats": [chat_from_record(r) for r in data.get("chats") or ()],
    }


__all__ = [
    "activity_fields_to_record",
    "activity_from_record",
    "activity_to_record",
    "chat_from_record",
    "chat_to_record",
    "event_fields_to_record",
    "event_from_record",
    "event_to_record",
    "format_datetime",
    "join_result_from_record",
    "message_from_record",
    "message_to_record",
    "parse_datetime",
    "profile_fields_to_record",
    "removal_from_record",
    "snapshot_from_record",
    "sport_from_record",
    "sport_to_record",
    "user_from_record",
    "user_to_record",
]
