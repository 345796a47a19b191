"""Form validation for activities and events.

Validation runs locally before anything is sent to the backend. Failures are
collected per field and raised together as a single ``ValidationError``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping
from urllib.parse import urlparse

from .errors import ValidationError
from .labels import canonical_label
from .models import OTHER_SPORT_ID, Coordinates, Sport

SportLookup = Callable[[str], Sport | None]

ACTIVITY_FIELDS = (
    "sport_id",
    "other_sport_name",
    "title",
    "date_time",
    "location_name",
    "location_coords",
    "activity_type",
    "level",
    "partners_needed",
)
EVENT_FIELDS = (
    "title",
    "sport",
    "city",
    "date",
    "description",
    "image_url",
    "registration_url",
)


def to_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _text(value: Any) -> str:
    return str(value).strip() if value is not None else ""


def coerce_coordinates(value: Any) -> Coordinates | None:
    if value is None:
        return None
    if isinstance(value, Coordinates):
        return value
    try:
        if isinstance(value, Mapping):
            return Coordinates(float(value["lat"]), float(value["lon"]))
        return Coordinates(float(value.lat), float(value.lon))
    except (KeyError, AttributeError, TypeError, ValueError):
        return None


def _coerce_partners(value: Any) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, float) and not value.is_integer():
        return None
    try:
        return int(str(value).strip()) if isinstance(value, str) else int(value)
    except (TypeError, ValueError):
        return None


def validate_activity_fields(
    values: Mapping[str, Any],
    get_sport: SportLookup,
    now: datetime,
    *,
    check_date: bool = True,
) -> Dict[str, Any]:
    """Return cleaned activity fields or raise ``ValidationError``.

    ``check_date`` is disabled on edits that leave ``date_time`` untouched, so
    past activities can still have their title or description corrected.
    """

    errors: Dict[str, str] = {}
    cleaned: Dict[str, Any] = {}

    unknown = sorted(set(values) - set(ACTIVITY_FIELDS))
    for name in unknown:
        errors[name] = "This field cannot be set."

    title = _text(values.get("title"))
    if not title:
        errors["title"] = "Title is required."
    cleaned["title"] = title

    sport_id = _text(values.get("sport_id"))
    other_name = _text(values.get("other_sport_name"))
    activity_type = _text(values.get("activity_type"))
    level = _text(values.get("level"))
    sport: Sport | None = None
    if not sport_id:
        errors["sport_id"] = "Please select a sport."
    elif sport_id == OTHER_SPORT_ID:
        if not other_name:
            errors["other_sport_name"] = "Please specify the sport name."
    else:
        sport = get_sport(sport_id)
        if sport is None:
            errors["sport_id"] = "Please select a sport."
    cleaned["sport_id"] = sport_id
    cleaned["other_sport_name"] = other_name if sport_id == OTHER_SPORT_ID else None

    if not activity_type:
        errors["activity_type"] = "Activity type is required."
    elif sport is not None:
        canonical = canonical_label(activity_type, sport.activity_types)
        if sport.activity_types and canonical is None:
            choices = ", ".join(sport.activity_types)
            errors["activity_type"] = f"Activity type must be one of: {choices}."
        activity_type = canonical or activity_type
    cleaned["activity_type"] = activity_type

    if not level:
        errors["level"] = "Level is required."
    elif sport is not None:
        canonical = canonical_label(level, sport.levels)
        if sport.levels and canonical is None:
            errors["level"] = f"Level must be one of: {', '.join(sport.levels)}."
        level = canonical or level
    cleaned["level"] = level

    date_time = values.get("date_time")
    if not isinstance(date_time, datetime):
        errors["date_time"] = "Date and time are required."
    else:
        date_time = to_utc(date_time)
        if check_date and date_time <= to_utc(now):
            errors["date_time"] = "Date must be in the future."
        cleaned["date_time"] = date_time

    location_name = _text(values.get("location_name"))
    coords = coerce_coordinates(values.get("location_coords"))
    if not location_name or coords is None:
        errors["location_name"] = "Location is required. Please select one from the map."
    cleaned["location_name"] = location_name
    cleaned["location_coords"] = coords

    partners = _coerce_partners(values.get("partners_needed", 0))
    if partners is None or partners < 0:
        errors["partners_needed"] = "Must be a non-negative number."
    cleaned["partners_needed"] = partners

    if errors:
        raise ValidationError("Activity is invalid: " + ", ".join(sorted(errors)), errors)
    return cleaned


def validate_event_fields(values: Mapping[str, Any]) -> Dict[str, Any]:
    errors: Dict[str, str] = {}
    cleaned: Dict[str, Any] = {}
    for name in sorted(set(values) - set(EVENT_FIELDS)):
        errors[name] = "This field cannot be set."
    for name, label in (("title", "Title"), ("sport", "Sport"), ("city", "City")):
        cleaned[name] = _text(values.get(name))
        if not cleaned[name]:
            errors[name] = f"{label} is required."
    date = values.get("date")
    if not isinstance(date, datetime):
        errors["date"] = "Date is required."
    else:
        cleaned["date"] = to_utc(date)
    cleaned["description"] = _text(values.get("description"))
    cleaned["image_url"] = _text(values.get("image_url"))
    registration_url = _text(values.get("registration_url"))
    if registration_url:
        parsed = urlparse(registration_url)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            errors["registration_url"] = "Registration link must be an http(s) URL."
    cleaned["registration_url"] = registration_url
    if errors:
        raise ValidationError("Event is invalid: " + ", ".join(sorted(errors)), errors)
    return cleaned


__all__ = [
    "ACTIVITY_FIELDS",
    "EVENT_FIELDS",
    "coerce_coordinates",
    "to_utc",
    "validate_activity_fields",
    "validate_event_fields",
]
