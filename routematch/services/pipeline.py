"""Wiring of feed, matcher, off-route detector and progress integrator."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Optional

from ..config import FEED_FILTER_ENABLED
from ..matching import MatchingCoordinator
from ..models import EnhancedLocation, RawFix, Route
from .location_feed import LocationFeed
from .off_route import OffRouteDetector
from .progress import ProgressIntegrator


@dataclass(slots=True)
class NavigationPipelineConfig:
    coordinator: Optional[MatchingCoordinator] = None
    feed: Optional[LocationFeed] = None
    detector: Optional[OffRouteDetector] = None
    integrator: Optional[ProgressIntegrator] = None
    use_feed: bool = FEED_FILTER_ENABLED
    logger: logging.Logger | None = None


class NavigationPipeline:
    """Routes raw fixes through normalisation, matching and the downstream consumers.

    Route changes fan out to every stage so no state from a previous route
    survives. The off-route detector follows the matcher's active preset.
    """

    def __init__(self, config: NavigationPipelineConfig | None = None) -> None:
        self.config = config or NavigationPipelineConfig()
        self._log = self.config.logger or logging.getLogger(self.__class__.__name__)
        self.coordinator = self.config.coordinator or MatchingCoordinator()
        self.feed = self.config.feed or LocationFeed()
        self.detector = self.config.detector or OffRouteDetector()
        self.integrator = self.config.integrator or ProgressIntegrator()

        self._unsubscribers = [
            self.feed.output.subscribe(self._on_fix),
            self.coordinator.enhanced_locations.subscribe(self._on_location),
        ]

    def push(self, fix: RawFix) -> None:
        if self.config.use_feed:
            self.feed.push(fix)
        else:
            self.coordinator.ingest(fix)

    def update(self, route: Optional[Route]) -> None:
        self._log.info(
            "Switching route (%s)",
            f"{len(route.steps)} steps" if route is not None else "cleared",
        )
        self.feed.reset()
        self.coordinator.update(route)
        self.detector.update(route)
        self.integrator.update(route)

    def reset(self) -> None:
        self.update(None)

    def close(self) -> None:
        """Detach the internal subscriptions."""

        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def _on_fix(self, fix: RawFix) -> None:
        self.coordinator.ingest(fix)

    def _on_location(self, location: EnhancedLocation) -> None:
        mode = self.coordinator.active_config.name
        if mode != self.detector.mode:
            self.detector.update_mode(mode)
        self.detector.ingest(location)
        self.integrator.ingest(location)


__all__ = ["NavigationPipeline", "NavigationPipelineConfig"]
