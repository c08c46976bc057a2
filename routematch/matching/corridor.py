"""Route segment index with a sliding corridor window around the user."""

from __future__ import annotations

from abc import ABCMeta, abstractmethod
from dataclasses import dataclass
import logging
from typing import List, NamedTuple, Optional, Sequence, Tuple

import numpy as np

from ..config import CORRIDOR_MIN_WINDOW_LENGTH_M
from ..models import LatLon, Route
from .geometry import (
    LocalProjection,
    MetricArray,
    angular_difference,
    haversine_distance,
    initial_bearing,
    polyline_length,
    project_onto_segments,
)
from .profiles import CITY

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RouteSegment:
    """Immutable metadata for one straight piece of the route polyline."""

    index: int
    start_coordinate: LatLon
    end_coordinate: LatLon
    start_point: Tuple[float, float]
    end_point: Tuple[float, float]
    length: float
    cumulative_distance: float
    tangent: float
    curvature: float
    step_index: int
    distance_to_next_maneuver: float
    epsg: int


class NearestSegment(NamedTuple):
    segment: RouteSegment
    distance_m: float


class CorridorProviderInterface(metaclass=ABCMeta):
    """Maintains the window of route geometry considered for matching."""

    @abstractmethod
    def update_route(self, route: Optional[Route]) -> None:
        """Load or clear the active route geometry."""

    @abstractmethod
    def has_geometry(self) -> bool:
        """True when the loaded route produced at least one segment."""

    @abstractmethod
    def update_window_length(self, window_length: float) -> None:
        """Change the corridor length when the matcher switches presets."""

    @abstractmethod
    def refresh_corridor(self, coordinate: LatLon) -> None:
        """Re-centre the window around the segment nearest ``coordinate``."""

    @abstractmethod
    def nearest_segment(self, coordinate: LatLon) -> Optional[NearestSegment]:
        """Return the closest segment to ``coordinate`` within the window."""

    @abstractmethod
    def current_corridor(self) -> List[LatLon]:
        """Return the window as a polyline of coordinates."""

    @abstractmethod
    def window_segments(self) -> List[RouteSegment]:
        """Return the segments inside the active window."""


class RouteGeometryIndex(CorridorProviderInterface):
    """Decomposes a route into annotated segments and windows them by distance."""

    def __init__(self, window_length: float = CITY.corridor_window_length) -> None:
        self._segments: List[RouteSegment] = []
        self._starts: MetricArray = np.empty((0, 2), dtype=float)
        self._ends: MetricArray = np.empty((0, 2), dtype=float)
        self._projection: Optional[LocalProjection] = None
        self._window_length = max(CORRIDOR_MIN_WINDOW_LENGTH_M, window_length)
        self._window: Optional[Tuple[int, int]] = None
        self._route: Optional[Route] = None

    @property
    def segments(self) -> Sequence[RouteSegment]:
        return tuple(self._segments)

    @property
    def window_length(self) -> float:
        return self._window_length

    @property
    def window_range(self) -> Optional[range]:
        """Half-open index range of the active window, or ``None``."""

        bounds = self._effective_window()
        return range(*bounds) if bounds else None

    def update_route(self, route: Optional[Route]) -> None:
        self._route = route
        self._segments, self._projection = build_segments(route)
        if self._segments:
            self._starts = np.asarray([s.start_point for s in self._segments])
            self._ends = np.asarray([s.end_point for s in self._segments])
            LOGGER.info(
                "Indexed %d route segments across %d steps (%.0f m)",
                len(self._segments),
                len(route.steps) if route else 0,
                self._segments[-1].cumulative_distance + self._segments[-1].length,
            )
        else:
            self._starts = np.empty((0, 2), dtype=float)
            self._ends = np.empty((0, 2), dtype=float)
        self._window = None

    def has_geometry(self) -> bool:
        return bool(self._segments)

    def update_window_length(self, window_length: float) -> None:
        # Applied on the next refresh.
        self._window_length = max(CORRIDOR_MIN_WINDOW_LENGTH_M, window_length)

    def refresh_corridor(self, coordinate: LatLon) -> None:
        if not self._segments or self._projection is None:
            self._window = None
            return

        point = self._projection.to_metric(coordinate)
        bounds = self._effective_window()
        best_index: Optional[int] = None
        best_distance = float("inf")
        if bounds is not None:
            best_index, best_distance = self._closest_in(point, *bounds)

        # Full scan when there is no window yet or the nearest windowed
        # segment sits on an inner edge, meaning the user may have left it.
        if best_index is None or self._on_inner_edge(best_index, bounds):
            index, distance = self._closest_in(point, 0, len(self._segments))
            if index is not None and distance < best_distance:
                if bounds is not None:
                    LOGGER.debug(
                        "Corridor fallback scan moved centre %s -> %s",
                        best_index,
                        index,
                    )
                best_index, best_distance = index, distance

        if best_index is None:
            self._window = None
            return
        self._window = self._window_centered_at(best_index)

    def nearest_segment(self, coordinate: LatLon) -> Optional[NearestSegment]:
        if not self._segments or self._projection is None:
            return None
        point = self._projection.to_metric(coordinate)
        bounds = self._effective_window() or (0, len(self._segments))
        index, distance = self._closest_in(point, *bounds)
        if index is None:
            return None
        return NearestSegment(self._segments[index], distance)

    def current_corridor(self) -> List[LatLon]:
        bounds = self._effective_window()
        if bounds is None:
            return []
        lower, upper = bounds
        coordinates = [self._segments[lower].start_coordinate]
        coordinates.extend(s.end_coordinate for s in self._segments[lower:upper])
        return coordinates

    def window_segments(self) -> List[RouteSegment]:
        bounds = self._effective_window()
        if bounds is None:
            return []
        return self._segments[bounds[0] : bounds[1]]

    def _closest_in(
        self, point: Tuple[float, float], lower: int, upper: int
    ) -> Tuple[Optional[int], float]:
        if upper <= lower:
            return None, float("inf")
        _, _, distances = project_onto_segments(
            point, self._starts[lower:upper], self._ends[lower:upper]
        )
        if not np.isfinite(distances).any():
            return None, float("inf")
        offset = int(np.nanargmin(distances))
        return lower + offset, float(distances[offset])

    def _on_inner_edge(self, index: int, bounds: Optional[Tuple[int, int]]) -> bool:
        if bounds is None:
            return False
        lower, upper = bounds
        return (index == lower and lower > 0) or (
            index == upper - 1 and upper < len(self._segments)
        )

    def _window_centered_at(self, index: int) -> Tuple[int, int]:
        half_length = self._window_length / 2
        lower = index
        accumulated_lower = self._segments[index].length / 2
        while lower > 0 and accumulated_lower < half_length:
            lower -= 1
            accumulated_lower += self._segments[lower].length

        upper = index
        accumulated_upper = self._segments[index].length / 2
        last = len(self._segments) - 1
        while upper < last and accumulated_upper < half_length:
            upper += 1
            accumulated_upper += self._segments[upper].length

        return lower, upper + 1

    def _effective_window(self) -> Optional[Tuple[int, int]]:
        if self._window is None:
            return None
        lower = max(self._window[0], 0)
        upper = min(self._window[1], len(self._segments))
        if lower >= upper:
            return None
        return lower, upper


def build_segments(
    route: Optional[Route],
) -> Tuple[List[RouteSegment], Optional[LocalProjection]]:
    """Decompose ``route`` into annotated segments, skipping zero-length pieces."""

    if route is None or not route.steps:
        return [], None
    step_points = [list(step.points) for step in route.steps]
    all_points = [pt for points in step_points for pt in points]
    if not all_points:
        return [], None
    projection = LocalProjection.around(all_points)

    results: List[RouteSegment] = []
    cumulative = 0.0
    for step_index, step in enumerate(route.steps):
        coordinates = step_points[step_index]
        if len(coordinates) < 2:
            continue
        step_distance = step.distance_m
        if step_distance <= 0:
            step_distance = polyline_length(coordinates)
        metric = projection.to_metric_array(coordinates)

        distance_within_step = 0.0
        for i in range(len(coordinates) - 1):
            start, end = coordinates[i], coordinates[i + 1]
            length = haversine_distance(start[0], start[1], end[0], end[1])
            if not length > 0:
                continue

            tangent = initial_bearing(start, end)
            following = _next_distinct_point(step_points, step_index, i + 2, end)
            if following is not None:
                next_heading = initial_bearing(end, following)
                curvature = angular_difference(tangent, next_heading) / max(length, 1.0)
            else:
                curvature = 0.0

            results.append(
                RouteSegment(
                    index=len(results),
                    start_coordinate=start,
                    end_coordinate=end,
                    start_point=(float(metric[i, 0]), float(metric[i, 1])),
                    end_point=(float(metric[i + 1, 0]), float(metric[i + 1, 1])),
                    length=length,
                    cumulative_distance=cumulative,
                    tangent=tangent,
                    curvature=curvature,
                    step_index=step_index,
                    distance_to_next_maneuver=max(
                        0.0, step_distance - distance_within_step
                    ),
                    epsg=projection.epsg,
                )
            )
            cumulative += length
            distance_within_step += length

    return results, projection


def _next_distinct_point(
    step_points: Sequence[Sequence[LatLon]],
    step_index: int,
    position: int,
    reference: LatLon,
) -> Optional[LatLon]:
    """First point after ``position`` (crossing into the next step) unlike ``reference``."""

    for candidate in step_points[step_index][position:]:
        if candidate != reference:
            return candidate
    if step_index + 1 < len(step_points):
        for candidate in step_points[step_index + 1]:
            if candidate != reference:
                return candidate
    return None


__all__ = [
    "CorridorProviderInterface",
    "NearestSegment",
    "RouteGeometryIndex",
    "RouteSegment",
    "build_segments",
]
