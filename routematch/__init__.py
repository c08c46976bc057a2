"""GPS map-matching engine for a single active route."""

from .errors import RouteMatchError, RoutePayloadError, TraceFormatError
from .matching import MatchingCoordinator, MatchingConfig, RouteGeometryIndex
from .models import (
    Candidate,
    EnhancedLocation,
    OffRouteEvent,
    RawFix,
    Route,
    RouteProgress,
    RouteStep,
)
from .routes import load_route_json, route_from_payload
from .services import NavigationPipeline

__all__ = [
    "Candidate",
    "EnhancedLocation",
    "MatchingConfig",
    "MatchingCoordinator",
    "NavigationPipeline",
    "OffRouteEvent",
    "RawFix",
    "Route",
    "RouteGeometryIndex",
    "RouteMatchError",
    "RoutePayloadError",
    "RouteProgress",
    "RouteStep",
    "TraceFormatError",
    "load_route_json",
    "route_from_payload",
]
