"""Service layer package.

Exports the services the application wires together and hands to callers.
"""

from .activity_service import ActivityService, join_state
from .admin_service import AdminService, AdminStats
from .chat_service import ChatPoller, ChatService
from .event_service import EventService
from .geocoding import NominatimGeocoder
from .location_service import LocationService
from .session_service import SessionService
from .user_service import ProfileStats, UserService

__all__ = [
    "ActivityService",
    "AdminService",
    "AdminStats",
    "ChatPoller",
    "ChatService",
    "EventService",
    "LocationService",
    "NominatimGeocoder",
    "ProfileStats",
    "SessionService",
    "UserService",
    "join_state",
]
