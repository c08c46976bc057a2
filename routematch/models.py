"""Dataclasses describing matcher inputs, intermediate hypotheses and outputs."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
import math
from typing import Any, Dict, List, Optional, Tuple

LatLon = Tuple[float, float]


@dataclass(frozen=True, slots=True)
class RawFix:
    """A raw position fix as delivered by the location-sensing service.

    ``course`` below zero (or non-finite) means the heading is unknown; a
    negative or non-finite ``speed`` means the speed is unknown.
    """

    coordinate: LatLon
    course: float = -1.0
    speed: float = -1.0
    horizontal_accuracy: float = 5.0
    timestamp: float = 0.0

    @property
    def has_valid_course(self) -> bool:
        return math.isfinite(self.course) and self.course >= 0

    @property
    def has_valid_speed(self) -> bool:
        return math.isfinite(self.speed) and self.speed >= 0

    @property
    def is_finite(self) -> bool:
        """True when the coordinate and timestamp can be used for matching."""

        lat, lon = self.coordinate
        return (
            math.isfinite(lat) and math.isfinite(lon) and math.isfinite(self.timestamp)
        )

    def with_accuracy(self, horizontal_accuracy: float) -> "RawFix":
        return replace(self, horizontal_accuracy=horizontal_accuracy)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["coordinate"] = list(self.coordinate)
        return data

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "RawFix":
        """Build a fix from either ``coordinate`` or ``lat``/``lon`` keys."""

        if "coordinate" in d:
            lat, lon = d["coordinate"]
        else:
            lat, lon = d["lat"], d["lon"]
        accuracy = d.get("horizontal_accuracy", d.get("accuracy"))
        return cls(
            coordinate=(float(lat), float(lon)),
            course=float(d.get("course", -1.0)),
            speed=float(d.get("speed", -1.0)),
            horizontal_accuracy=float(accuracy) if accuracy is not None else 5.0,
            timestamp=float(d.get("timestamp", 0.0)),
        )


@dataclass(slots=True)
class RouteStep:
    """One instruction-bounded leg of a route with its coordinate polyline."""

    points: List[LatLon]
    distance_m: float
    instruction: Optional[str] = None
    polyline: Optional[str] = None


@dataclass(slots=True)
class Route:
    """Ordered steps returned by the routing service for one navigation session."""

    steps: List[RouteStep]
    distance_m: float = 0.0
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.distance_m <= 0 and self.steps:
            self.distance_m = float(sum(step.distance_m for step in self.steps))


@dataclass(frozen=True, slots=True)
class Candidate:
    """A position hypothesis produced by projecting a fix onto one route segment."""

    coordinate: LatLon
    distance_from_route: float
    progress_along_route: float
    heading: Optional[float]
    segment_index: int
    step_index: int
    curvature: float
    distance_to_next_maneuver: float
    heading_difference: float
    is_near_fork: bool
    score: Optional[float] = None
    emission_score: Optional[float] = None
    transition_score: Optional[float] = None

    def with_progress(self, progress: float) -> "Candidate":
        return replace(self, progress_along_route=progress)

    def with_scores(
        self,
        score: Optional[float],
        emission: Optional[float],
        transition: Optional[float],
    ) -> "Candidate":
        return replace(
            self, score=score, emission_score=emission, transition_score=transition
        )


@dataclass(frozen=True, slots=True)
class EnhancedLocation:
    """A smoothed, route-anchored location estimate published by the matcher."""

    coordinate: LatLon
    heading: Optional[float]
    speed: float
    timestamp: float
    confidence: float
    candidate: Candidate

    @property
    def progress_m(self) -> float:
        return self.candidate.progress_along_route


@dataclass(frozen=True, slots=True)
class RouteProgress:
    """How far the user has advanced along the active route."""

    distance_traveled_m: float
    distance_remaining_m: float
    fraction_traveled: float
    step_index: int


@dataclass(frozen=True, slots=True)
class OffRouteEvent:
    """A transition in on/off-route classification."""

    is_off_route: bool
    timestamp: float
    lateral_deviation_m: Optional[float] = None
    heading_deviation_deg: Optional[float] = None
