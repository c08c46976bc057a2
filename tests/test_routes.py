"""Route payload normalisation and polyline decoding."""

from __future__ import annotations

import json

import polyline
import pytest

from conftest import BASE, north_of, straight_points
from routematch.errors import RoutePayloadError
from routematch.routes import (
    decode_polyline,
    load_route_json,
    route_from_payload,
    step_from_payload,
)


def _flat(points):
    return [value for point in points for value in point]


def test_route_from_points_payload() -> None:
    payload = {
        "steps": [
            {"points": [list(p) for p in straight_points(2)], "distance": 200, "instruction": "Head north"},
            {"points": [list(north_of(BASE, 200)), list(north_of(BASE, 300))], "distance": 100},
        ],
        "name": "Commute",
    }

    route = route_from_payload(payload)

    assert len(route.steps) == 2
    assert route.distance_m == 300.0
    assert route.steps[0].instruction == "Head north"
    assert route.steps[0].points[0] == BASE
    assert route.metadata == {"name": "Commute"}


def test_encoded_polyline_steps() -> None:
    points = [(37.0, -122.0), (37.001, -122.0), (37.002, -122.001)]
    payload = {"steps": [{"polyline": polyline.encode(points, 5)}]}

    route = route_from_payload(payload)

    step = route.steps[0]
    assert _flat(step.points) == pytest.approx(_flat(points), abs=1e-5)
    assert step.polyline == payload["steps"][0]["polyline"]
    # Distance falls back to the decoded polyline length.
    assert step.distance_m > 200.0
    assert route.distance_m == pytest.approx(step.distance_m)


def test_polyline_precision_six() -> None:
    points = [(37.123456, -122.654321), (37.124456, -122.654321)]
    payload = {
        "polyline_precision": 6,
        "steps": [{"polyline": polyline.encode(points, 6), "distance": 111}],
    }

    route = route_from_payload(payload)

    assert _flat(route.steps[0].points) == pytest.approx(_flat(points), abs=1e-6)
    assert "polyline_precision" not in route.metadata


def test_decode_empty_polyline() -> None:
    assert decode_polyline("") == []


def test_step_without_geometry_is_empty() -> None:
    step = step_from_payload({"instruction": "Arrive"})
    assert step.points == []
    assert step.distance_m == 0.0


@pytest.mark.parametrize(
    "payload",
    [
        {},
        {"steps": "abc"},
        {"steps": []},
        {"steps": [{"points": [[37.0, -122.0]]}]},
        {"steps": [{"points": [[37.0, -122.0, 5.0], [37.1, -122.0, 5.0]]}]},
        {"steps": [{"points": [[37.0, -122.0], [37.1, -122.0]], "distance": "far"}]},
    ],
)
def test_invalid_payloads(payload) -> None:
    with pytest.raises(RoutePayloadError):
        route_from_payload(payload)


def test_load_route_json(tmp_path) -> None:
    path = tmp_path / "route.json"
    path.write_text(
        json.dumps({"steps": [{"points": [list(p) for p in straight_points(3)], "distance": 300}]}),
        encoding="utf-8",
    )

    route = load_route_json(path)

    assert route.distance_m == 300.0
    assert len(route.steps[0].points) == 4


@pytest.mark.parametrize("content", ["{not json", "[1, 2, 3]"])
def test_load_route_json_rejects_bad_files(tmp_path, content) -> None:
    path = tmp_path / "route.json"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(RoutePayloadError):
        load_route_json(path)
