"""On/off-route classification with frame-count hysteresis."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import threading
from typing import Optional

from ..config import (
    OFF_ROUTE_CITY_DISTANCE_M,
    OFF_ROUTE_CITY_HEADING_DEG,
    OFF_ROUTE_ENTER_FRAMES,
    OFF_ROUTE_EXIT_FRAMES,
    OFF_ROUTE_HIGHWAY_DISTANCE_M,
    OFF_ROUTE_HIGHWAY_HEADING_DEG,
    OFF_ROUTE_LOW_CONFIDENCE,
)
from ..models import EnhancedLocation, OffRouteEvent, Route
from ..stream import Stream

MODE_CITY = "city"
MODE_HIGHWAY = "highway"


@dataclass(frozen=True, slots=True)
class OffRouteThresholds:
    distance_m: float
    heading_deg: float
    enter_frames: int
    exit_frames: int


def thresholds_for(mode: str, near_fork: bool) -> OffRouteThresholds:
    """Thresholds for ``mode``, relaxed near forks where lanes diverge."""

    if mode == MODE_HIGHWAY:
        base = OffRouteThresholds(
            OFF_ROUTE_HIGHWAY_DISTANCE_M,
            OFF_ROUTE_HIGHWAY_HEADING_DEG,
            OFF_ROUTE_ENTER_FRAMES,
            OFF_ROUTE_EXIT_FRAMES,
        )
    else:
        base = OffRouteThresholds(
            OFF_ROUTE_CITY_DISTANCE_M,
            OFF_ROUTE_CITY_HEADING_DEG,
            OFF_ROUTE_ENTER_FRAMES,
            OFF_ROUTE_EXIT_FRAMES,
        )
    if not near_fork:
        return base
    return OffRouteThresholds(
        distance_m=base.distance_m * 1.3,
        heading_deg=base.heading_deg * 1.2,
        enter_frames=base.enter_frames + 1,
        exit_frames=base.exit_frames,
    )


class OffRouteDetector:
    """Publishes an :class:`OffRouteEvent` whenever the classification flips."""

    def __init__(self, mode: str = MODE_CITY) -> None:
        self._mode = mode
        self._route: Optional[Route] = None
        self._consecutive_off = 0
        self._consecutive_on = 0
        self._is_off_route = False
        self._lock = threading.Lock()
        self._events: Stream[OffRouteEvent] = Stream("off_route_events")
        self._log = logging.getLogger(self.__class__.__name__)

    @property
    def events(self) -> Stream[OffRouteEvent]:
        return self._events

    @property
    def is_off_route(self) -> bool:
        return self._is_off_route

    @property
    def mode(self) -> str:
        return self._mode

    def update(self, route: Optional[Route]) -> None:
        self._route = route
        self.reset()

    def update_mode(self, mode: str) -> None:
        if mode not in (MODE_CITY, MODE_HIGHWAY):
            raise ValueError(f"Unknown off-route mode {mode!r}")
        self._mode = mode

    def ingest(self, location: EnhancedLocation) -> Optional[OffRouteEvent]:
        """Classify ``location``; returns the event published on a transition."""

        candidate = location.candidate
        thresholds = thresholds_for(self._mode, candidate.is_near_fork)
        lateral = candidate.distance_from_route
        heading = candidate.heading_difference

        distance_exceeded = lateral > thresholds.distance_m
        heading_exceeded = heading > thresholds.heading_deg
        if location.confidence < OFF_ROUTE_LOW_CONFIDENCE:
            flagged = distance_exceeded and heading_exceeded
        else:
            flagged = distance_exceeded or (
                heading_exceeded and lateral > thresholds.distance_m * 0.6
            )

        with self._lock:
            if flagged:
                self._consecutive_off += 1
                self._consecutive_on = 0
            else:
                self._consecutive_on += 1
                self._consecutive_off = 0

            event: Optional[OffRouteEvent] = None
            if not self._is_off_route and self._consecutive_off >= thresholds.enter_frames:
                self._is_off_route = True
                event = OffRouteEvent(True, location.timestamp, lateral, heading)
            elif (
                self._is_off_route
                and self._consecutive_on >= thresholds.exit_frames
                and lateral < thresholds.distance_m * 0.8
            ):
                self._is_off_route = False
                event = OffRouteEvent(False, location.timestamp, lateral, heading)

            if event is not None:
                self._log.info(
                    "%s route at %.3f (lateral %.1f m, heading %.0f deg)",
                    "Left" if event.is_off_route else "Rejoined",
                    event.timestamp,
                    lateral,
                    heading,
                )
                self._events.publish(event)
            return event

    def reset(self) -> None:
        with self._lock:
            self._consecutive_off = 0
            self._consecutive_on = 0
            self._is_off_route = False


__all__ = [
    "MODE_CITY",
    "MODE_HIGHWAY",
    "OffRouteDetector",
    "OffRouteThresholds",
    "thresholds_for",
]
