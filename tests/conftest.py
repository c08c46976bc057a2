"""Global pytest fixtures & helpers.

Adds project root to path and provides reusable route and fix factories so
matcher tests share the same straight-north geometry.
"""
from __future__ import annotations

import math
import os
import sys
from typing import List, Sequence

import pytest

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from routematch.matching.geometry import EARTH_RADIUS_M
from routematch.models import EnhancedLocation, LatLon, RawFix, Route, RouteStep

BASE: LatLon = (37.0, -122.0)
METERS_PER_DEGREE_LAT = EARTH_RADIUS_M * math.pi / 180.0


# --- Factory helpers -------------------------------------------------
def north_of(origin: LatLon, meters: float) -> LatLon:
    return (origin[0] + meters / METERS_PER_DEGREE_LAT, origin[1])


def east_of(origin: LatLon, meters: float) -> LatLon:
    scale = METERS_PER_DEGREE_LAT * math.cos(math.radians(origin[0]))
    return (origin[0], origin[1] + meters / scale)


def straight_points(count: int, spacing_m: float = 100.0, origin: LatLon = BASE) -> List[LatLon]:
    return [north_of(origin, i * spacing_m) for i in range(count + 1)]


def make_route(step_points: Sequence[Sequence[LatLon]], distances: Sequence[float] | None = None) -> Route:
    steps = []
    for i, points in enumerate(step_points):
        distance = distances[i] if distances else 0.0
        steps.append(RouteStep(points=list(points), distance_m=distance))
    return Route(steps=steps)


def straight_route(segment_count: int = 3, spacing_m: float = 100.0) -> Route:
    """One step heading due north made of ``segment_count`` equal segments."""

    points = straight_points(segment_count, spacing_m)
    return make_route([points], [segment_count * spacing_m])


def make_fix(
    coordinate: LatLon,
    timestamp: float,
    *,
    speed: float = 5.0,
    course: float = 0.0,
    accuracy: float = 5.0,
) -> RawFix:
    return RawFix(
        coordinate=coordinate,
        course=course,
        speed=speed,
        horizontal_accuracy=accuracy,
        timestamp=timestamp,
    )


def assert_finite_location(location: EnhancedLocation) -> None:
    lat, lon = location.coordinate
    assert math.isfinite(lat) and math.isfinite(lon)
    assert location.heading is None or math.isfinite(location.heading)
    assert math.isfinite(location.speed)
    assert math.isfinite(location.confidence)
    assert 0.0 <= location.confidence <= 1.0
    assert math.isfinite(location.candidate.progress_along_route)


# --- Fixtures --------------------------------------------------------
@pytest.fixture
def route() -> Route:
    return straight_route()


@pytest.fixture
def long_route() -> Route:
    return straight_route(segment_count=20)
