from __future__ import annotations

import math

from conftest import BASE, make_route, straight_points
from routematch.models import RawFix, Route, RouteStep


def test_raw_fix_validity_flags() -> None:
    fix = RawFix(coordinate=BASE, course=-1.0, speed=float("nan"))
    assert not fix.has_valid_course
    assert not fix.has_valid_speed
    assert fix.is_finite

    assert RawFix(coordinate=BASE, course=0.0, speed=0.0).has_valid_course
    assert not RawFix(coordinate=(math.inf, 0.0)).is_finite


def test_raw_fix_dict_round_trip() -> None:
    fix = RawFix(coordinate=BASE, course=45.0, speed=3.0, horizontal_accuracy=8.0, timestamp=12.5)
    data = fix.to_dict()

    assert data["coordinate"] == list(BASE)
    assert RawFix.from_dict(data) == fix


def test_raw_fix_from_recorder_keys() -> None:
    fix = RawFix.from_dict({"lat": 37.0, "lon": -122.0, "accuracy": 12})
    assert fix.coordinate == BASE
    assert fix.horizontal_accuracy == 12.0
    assert fix.timestamp == 0.0


def test_route_distance_defaults_to_step_sum() -> None:
    route = make_route([straight_points(1), straight_points(2)], [100.0, 200.0])
    assert route.distance_m == 300.0

    explicit = Route(steps=[RouteStep(points=straight_points(1), distance_m=100.0)], distance_m=120.0)
    assert explicit.distance_m == 120.0
