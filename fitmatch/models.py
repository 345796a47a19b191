from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Literal, Optional, Tuple

LocationPreference = Literal["current", "home"]
MessageStatus = Literal["pending", "sent", "failed"]
ToastLevel = Literal["success", "info", "warning", "error"]

# Sport id used when the activity names a sport outside the catalog.
OTHER_SPORT_ID = "other"
SYSTEM_SENDER = None


@dataclass(frozen=True, slots=True)
class Coordinates:
    lat: float
    lon: float


@dataclass(frozen=True, slots=True)
class HomeLocation:
    lat: float
    lon: float
    name: str

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(self.lat, self.lon)


@dataclass(slots=True)
class User:
    id: str
    name: str
    email: str | None = None
    avatar_url: str | None = None
    current_location: Coordinates | None = None
    home_location: HomeLocation | None = None
    # Personal search radius; None falls back to the configured default
    view_radius_km: float | None = None
    is_admin: bool = False
    is_deactivated: bool = False


@dataclass(frozen=True, slots=True)
class Sport:
    id: str
    name: str
    is_team_sport: bool = False
    activity_types: Tuple[str, ...] = ()
    levels: Tuple[str, ...] = ()


@dataclass(slots=True)
class Activity:
    id: str
    sport_id: str
    title: str
    creator_id: str
    date_time: datetime
    location_name: str
    location_coords: Coordinates
    activity_type: str
    level: str
    # 0 means unlimited; otherwise the cap includes the creator
    partners_needed: int = 0
    participants: Tuple[str, ...] = ()
    other_sport_name: str | None = None

    def has_participant(self, user_id: str) -> bool:
        return user_id in self.participants

    @property
    def is_full(self) -> bool:
        return (
            self.partners_needed > 0
            and len(self.participants) >= self.partners_needed
        )

    @property
    def spots_left(self) -> int | None:
        if self.partners_needed == 0:
            return None
        return max(0, self.partners_needed - len(self.participants))


@dataclass(slots=True)
class Event:
    id: str
    title: str
    sport: str
    city: str
    date: datetime
    description: str = ""
    image_url: str = ""
    registration_url: str = ""


@dataclass(slots=True)
class Message:
    id: str
    sender_id: str | None
    text: str
    timestamp: datetime
    is_system: bool = False
    status: MessageStatus = "sent"
    # Client generated correlation id used to match optimistic records
    client_id: str | None = None

    @property
    def is_confirmed(self) -> bool:
        return self.status == "sent"


@dataclass(slots=True)
class Chat:
    activity_id: str
    messages: List[Message] = field(default_factory=list)
    # Everyone who participated since the chat opened; leavers keep read access
    members: Tuple[str, ...] = ()

    @property
    def id(self) -> str:
        return self.activity_id

    def copy(self) -> "Chat":
        """Shallow copy with its own message list."""

        return Chat(self.activity_id, list(self.messages), self.members)

    def find_message(
        self, message_id: str | None = None, client_id: str | None = None
    ) -> Optional[Message]:
        for message in self.messages:
            if message_id is not None and message.id == message_id:
                return message
            if client_id is not None and message.client_id == client_id:
                return message
        return None


@dataclass(slots=True)
class Toast:
    id: int
    message: str
    level: ToastLevel
    created_at: float


@dataclass(frozen=True, slots=True)
class PlaceResult:
    lat: float
    lon: float
    display_name: str

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(self.lat, self.lon)


@dataclass(slots=True)
class JoinResult:
    """Authoritative outcome of a join or leave request."""

    activity: Activity
    chat_created: bool = False
    system_message: Message | None = None
    chat: Chat | None = None


@dataclass(slots=True)
class UserRemovalResult:
    user_id: str
    deleted_activity_ids: List[str] = field(default_factory=list)
    cleaned_activity_ids: List[str] = field(default_factory=list)
