from .geolocation import GeolocationError, GeolocationOptions, Geolocator, StaticGeolocator
from .models import Member, RouteRequest, with_self_flag
from .presence import PresenceClient
from .rooms import normalize_room_input, room_id_from_path, room_path, room_url
from .route_coordinator import RouteCoordinator
from .routing import HttpRoutingService, RouteUnavailable, RoutingService
from .session import RoomSession
from .transport import TransportChannel, TransportClosed, WebSocketTransport

__all__ = [
    "GeolocationError",
    "GeolocationOptions",
    "Geolocator",
    "HttpRoutingService",
    "Member",
    "PresenceClient",
    "RoomSession",
    "RouteCoordinator",
    "RouteRequest",
    "RouteUnavailable",
    "RoutingService",
    "StaticGeolocator",
    "TransportChannel",
    "TransportClosed",
    "WebSocketTransport",
    "normalize_room_input",
    "room_id_from_path",
    "room_path",
    "room_url",
    "with_self_flag",
]
