"""Public entry points for the route map-matching engine."""

from __future__ import annotations

from .candidates import CandidateGenerator, CandidateGeneratorInterface
from .coordinator import (
    DeadReckoningState,
    MatcherDiagnostics,
    MatchingCoordinator,
    RunningStatistics,
)
from .corridor import (
    CorridorProviderInterface,
    NearestSegment,
    RouteGeometryIndex,
    RouteSegment,
    build_segments,
)
from .profiles import CITY, HIGHWAY, MatchingConfig, select_config
from .scoring import ScoringEngine, ScoringEngineInterface

__all__ = [
    "CITY",
    "HIGHWAY",
    "CandidateGenerator",
    "CandidateGeneratorInterface",
    "CorridorProviderInterface",
    "DeadReckoningState",
    "MatcherDiagnostics",
    "MatchingConfig",
    "MatchingCoordinator",
    "NearestSegment",
    "RouteGeometryIndex",
    "RouteSegment",
    "RunningStatistics",
    "ScoringEngine",
    "ScoringEngineInterface",
    "build_segments",
    "select_config",
]
