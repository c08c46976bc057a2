"""Normalisation of directions-service payloads into :class:`Route` objects."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, List, Mapping, Sequence, Union

from polyline import decode as polyline_decode

from .errors import RoutePayloadError
from .matching.geometry import polyline_length
from .models import LatLon, Route, RouteStep

LOGGER = logging.getLogger(__name__)

PathLike = Union[str, Path]


def decode_polyline(encoded: str, precision: int = 5) -> List[LatLon]:
    """Decode an encoded polyline string into a list of (lat, lon) tuples."""

    if not encoded:
        return []
    try:
        decoded = polyline_decode(encoded, precision)
    except (ValueError, TypeError, IndexError) as exc:
        raise RoutePayloadError("Unable to decode polyline") from exc
    return [(float(lat), float(lon)) for lat, lon in decoded]


def step_from_payload(payload: Mapping[str, Any], precision: int = 5) -> RouteStep:
    """Build a step from ``points`` or an encoded ``polyline``."""

    raw_points = payload.get("points")
    encoded = payload.get("polyline")
    if raw_points:
        points = [_normalize_point(pair) for pair in raw_points]
    elif encoded:
        points = decode_polyline(str(encoded), precision)
    else:
        points = []

    distance = payload.get("distance", payload.get("distance_m"))
    try:
        distance_m = float(distance) if distance is not None else 0.0
    except (TypeError, ValueError) as exc:
        raise RoutePayloadError(f"Invalid step distance {distance!r}") from exc
    if distance_m <= 0:
        distance_m = polyline_length(points)

    return RouteStep(
        points=points,
        distance_m=distance_m,
        instruction=payload.get("instruction"),
        polyline=str(encoded) if encoded else None,
    )


def route_from_payload(payload: Mapping[str, Any]) -> Route:
    """Normalise a directions-style mapping into a :class:`Route`.

    Args:
        payload: Mapping with a ``steps`` list. Each step carries either
            ``points`` (``[[lat, lon], ...]``) or an encoded ``polyline`` plus
            an optional ``distance`` in metres and ``instruction`` text. An
            optional top-level ``polyline_precision`` (5 or 6) applies to all
            encoded steps.

    Returns:
        The route with every step's distance resolved.

    Raises:
        RoutePayloadError: If ``steps`` is missing, empty, or a step cannot be
            decoded.
    """

    steps_payload = payload.get("steps")
    if not isinstance(steps_payload, Sequence) or isinstance(steps_payload, str):
        raise RoutePayloadError("Route payload must contain a list of steps")
    if not steps_payload:
        raise RoutePayloadError("Route payload contains no steps")

    precision = int(payload.get("polyline_precision", 5))
    steps = [step_from_payload(step, precision) for step in steps_payload]
    if not any(len(step.points) > 1 for step in steps):
        raise RoutePayloadError("Route payload has no step with at least two points")

    total = payload.get("distance", payload.get("distance_m"))
    route = Route(
        steps=steps,
        distance_m=float(total) if total is not None else 0.0,
        metadata={
            key: value
            for key, value in payload.items()
            if key not in {"steps", "distance", "distance_m", "polyline_precision"}
        },
    )
    LOGGER.info(
        "Loaded route with %d steps (%.0f m)", len(route.steps), route.distance_m
    )
    return route


def load_route_json(path: PathLike) -> Route:
    """Read a route payload from a JSON file."""

    with Path(path).open("r", encoding="utf-8") as handle:
        try:
            payload = json.load(handle)
        except json.JSONDecodeError as exc:
            raise RoutePayloadError(f"Route file {path} is not valid JSON") from exc
    if not isinstance(payload, Mapping):
        raise RoutePayloadError(f"Route file {path} must contain a JSON object")
    return route_from_payload(payload)


def _normalize_point(point: Sequence[float]) -> LatLon:
    """Convert a raw lat/lon pair to a typed tuple."""

    if len(point) != 2:
        raise RoutePayloadError("Expected lat/lon pair in route step")
    lat, lon = point
    return float(lat), float(lon)


__all__ = [
    "decode_polyline",
    "load_route_json",
    "route_from_payload",
    "step_from_payload",
]
