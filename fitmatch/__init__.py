"""FitMatch: location-aware matching of people to sporting activities."""

from .app import FitMatchApp
from .errors import (
    AuthorizationError,
    ConflictError,
    FitMatchError,
    NotFoundError,
    TransportError,
    ValidationError,
)
from .geo import distance_km
from .models import Activity, Chat, Coordinates, Event, Message, Sport, User

__all__ = [
    "FitMatchApp",
    "distance_km",
    "Activity",
    "Chat",
    "Coordinates",
    "Event",
    "Message",
    "Sport",
    "User",
    "FitMatchError",
    "ValidationError",
    "ConflictError",
    "NotFoundError",
    "TransportError",
    "AuthorizationError",
]
