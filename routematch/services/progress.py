"""Monotone route progress derived from matched locations."""

from __future__ import annotations

import threading
from typing import Optional

from ..matching.geometry import polyline_length
from ..models import EnhancedLocation, Route, RouteProgress
from ..stream import Stream


def route_length(route: Route) -> float:
    """Total route length, measuring steps that carry no distance from their points."""

    if route.distance_m > 0:
        return route.distance_m
    return float(
        sum(
            step.distance_m if step.distance_m > 0 else polyline_length(step.points)
            for step in route.steps
        )
    )


class ProgressIntegrator:
    """Accumulates distance travelled along the route, never moving backwards."""

    def __init__(self) -> None:
        self._route: Optional[Route] = None
        self._route_distance = 0.0
        self._last_progress: Optional[float] = None
        self._lock = threading.Lock()
        self._updates: Stream[RouteProgress] = Stream("progress_updates")

    @property
    def progress_updates(self) -> Stream[RouteProgress]:
        return self._updates

    def update(self, route: Optional[Route]) -> None:
        with self._lock:
            self._route = route
            self._route_distance = route_length(route) if route else 0.0
            self._last_progress = None

    def ingest(self, location: EnhancedLocation) -> Optional[RouteProgress]:
        with self._lock:
            if not self._route_distance > 0:
                return None
            raw = location.candidate.progress_along_route
            if self._last_progress is not None:
                travelled = max(raw, self._last_progress)
            else:
                travelled = max(0.0, raw)
            progress = RouteProgress(
                distance_traveled_m=travelled,
                distance_remaining_m=max(0.0, self._route_distance - travelled),
                fraction_traveled=min(1.0, travelled / self._route_distance),
                step_index=location.candidate.step_index,
            )
            self._last_progress = travelled
            self._updates.publish(progress)
            return progress

    def reset(self) -> None:
        self.update(None)


__all__ = ["ProgressIntegrator", "route_length"]
