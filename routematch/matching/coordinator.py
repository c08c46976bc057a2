"""Stateful orchestration of the map-matching pipeline.

Each call to :meth:`MatchingCoordinator.ingest` runs one tick:

1. pick the city/highway preset from the fix speed,
2. refresh the corridor window and decide whether the fix is trustworthy,
3. dead-reckon from the last output when it is not,
4. otherwise generate, score and regulate candidates, then smooth the winner
   and blend back from any dead-reckoned prediction.

Ticks are serialised by a re-entrant lock so concurrent callers are processed
strictly in arrival order and subscribers observe FIFO output.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
import math
import threading
from typing import List, Optional

from ..config import (
    DEAD_RECKONING_CONFIDENCE_DECAY,
    MATCHING_HIGHWAY_SPEED_THRESHOLD_MPS,
    MATCHING_MIN_CADENCE_S,
    SMOOTHING_MIN_STEP_M,
)
from ..models import Candidate, EnhancedLocation, RawFix, Route
from ..stream import Stream
from .candidates import CandidateGenerator, CandidateGeneratorInterface
from .corridor import CorridorProviderInterface, RouteGeometryIndex, RouteSegment
from .geometry import LocalProjection, destination_point, haversine_distance
from .profiles import CITY, MatchingConfig, select_config
from .scoring import ScoringEngine, ScoringEngineInterface
from .smoothing import (
    blend_factor,
    clamp,
    derive_speed,
    expected_travel_distance,
    interpolate_coordinate,
    smooth_coordinate,
    smooth_heading,
    softmax_margin,
)

LOGGER = logging.getLogger(__name__)


@dataclass(slots=True)
class DeadReckoningState:
    """Bookkeeping while the matcher extrapolates instead of matching."""

    last_prediction: EnhancedLocation
    started_at: float
    blend_anchor: Optional[EnhancedLocation] = None
    blend_started_at: Optional[float] = None


@dataclass(slots=True)
class RunningStatistics:
    """Running root-mean-square of scalar samples."""

    sum_of_squares: float = 0.0
    count: int = 0

    def add_sample(self, value: float) -> None:
        if not math.isfinite(value):
            return
        self.sum_of_squares += value * value
        self.count += 1

    @property
    def rms(self) -> float:
        if self.count == 0:
            return 0.0
        return math.sqrt(self.sum_of_squares / self.count)


@dataclass(frozen=True, slots=True)
class MatcherDiagnostics:
    """Snapshot of coordinator health counters."""

    jitter_rms_m: float
    jitter_samples: int
    dead_reckoned_ticks: int
    backtrack_held_ticks: int
    skipped_ticks: int
    active_profile: str


@dataclass(slots=True)
class _Counters:
    jitter: RunningStatistics
    dead_reckoned: int = 0
    backtrack_held: int = 0
    skipped: int = 0


def _new_counters() -> _Counters:
    return _Counters(jitter=RunningStatistics())


class MatchingCoordinator:
    """Turns raw fixes into smoothed, route-anchored locations for one route."""

    def __init__(
        self,
        corridor_provider: Optional[CorridorProviderInterface] = None,
        candidate_generator: Optional[CandidateGeneratorInterface] = None,
        scoring_engine: Optional[ScoringEngineInterface] = None,
        initial_config: MatchingConfig = CITY,
        highway_speed_threshold: float = MATCHING_HIGHWAY_SPEED_THRESHOLD_MPS,
    ) -> None:
        self._corridor = corridor_provider or RouteGeometryIndex()
        self._generator = candidate_generator or CandidateGenerator()
        self._scoring = scoring_engine or ScoringEngine()
        self._stream: Stream[EnhancedLocation] = Stream("enhanced_locations")
        self._lock = threading.RLock()

        self._config = initial_config
        self._highway_speed_threshold = highway_speed_threshold
        self._previous_candidate: Optional[Candidate] = None
        self._previous_enhanced: Optional[EnhancedLocation] = None
        self._previous_timestamp: Optional[float] = None
        self._backtrack_frames = 0
        self._dead_reckoning: Optional[DeadReckoningState] = None
        self._counters = _new_counters()
        self._corridor.update_window_length(initial_config.corridor_window_length)

    # ------------------------------------------------------------------
    # Public surface
    # ------------------------------------------------------------------
    @property
    def enhanced_locations(self) -> Stream[EnhancedLocation]:
        return self._stream

    @property
    def active_config(self) -> MatchingConfig:
        with self._lock:
            return self._config

    @property
    def previous_location(self) -> Optional[EnhancedLocation]:
        with self._lock:
            return self._previous_enhanced

    @property
    def has_route_geometry(self) -> bool:
        with self._lock:
            return self._corridor.has_geometry()

    @property
    def is_dead_reckoning(self) -> bool:
        with self._lock:
            state = self._dead_reckoning
            return state is not None and state.blend_anchor is None

    @property
    def is_blending(self) -> bool:
        with self._lock:
            state = self._dead_reckoning
            return state is not None and state.blend_anchor is not None

    @property
    def backtrack_frame_count(self) -> int:
        with self._lock:
            return self._backtrack_frames

    @property
    def diagnostics(self) -> MatcherDiagnostics:
        with self._lock:
            return MatcherDiagnostics(
                jitter_rms_m=self._counters.jitter.rms,
                jitter_samples=self._counters.jitter.count,
                dead_reckoned_ticks=self._counters.dead_reckoned,
                backtrack_held_ticks=self._counters.backtrack_held,
                skipped_ticks=self._counters.skipped,
                active_profile=self._config.name,
            )

    def update(self, route: Optional[Route]) -> None:
        """Load a new route (or clear it) and discard all matching history."""

        with self._lock:
            self._corridor.update_route(route)
            self._reset_state()

    def reset(self) -> None:
        self.update(None)

    def ingest(self, fix: RawFix) -> Optional[EnhancedLocation]:
        """Process one fix; returns the published location or ``None`` when skipped."""

        if not fix.is_finite:
            LOGGER.debug("Dropping fix with non-finite coordinate or timestamp")
            return None
        with self._lock:
            enhanced = self._process(fix)
            if enhanced is not None:
                self._stream.publish(enhanced)
            return enhanced

    # ------------------------------------------------------------------
    # Tick pipeline
    # ------------------------------------------------------------------
    def _process(self, fix: RawFix) -> Optional[EnhancedLocation]:
        self._select_config(fix.speed)
        timestamp = fix.timestamp
        elapsed = self._elapsed_since_previous(timestamp)

        self._corridor.refresh_corridor(fix.coordinate)
        segments = self._corridor.window_segments()

        reason = self._dead_reckoning_reason(fix, segments, elapsed)
        if reason is not None:
            predicted = self._dead_reckon(fix, elapsed, reason)
            if predicted is not None:
                self._previous_timestamp = timestamp
                return predicted
        if self._dead_reckoning is not None and self._dead_reckoning.blend_anchor is None:
            # Blend from the last prediction instead of jumping to the match.
            self._dead_reckoning.blend_anchor = self._dead_reckoning.last_prediction
            self._dead_reckoning.blend_started_at = timestamp
            LOGGER.debug("Leaving dead reckoning; blending from last prediction")

        if not segments:
            return self._skip(timestamp, "empty corridor window")

        candidates = self._generator.generate_candidates(fix, segments, self._config)
        if not candidates:
            return self._skip(timestamp, "no candidates")

        scored = self._scoring.score(
            candidates, self._previous_candidate, elapsed, fix.speed, self._config
        )
        if not scored:
            return self._skip(timestamp, "no scored candidates")

        best = scored[0]
        best = best.with_progress(self._regulate_progress(best))
        confidence = softmax_margin([c.score for c in scored])

        enhanced = self._smooth(fix, best, elapsed, confidence)
        self._record(enhanced, best)
        return enhanced

    def _smooth(
        self,
        fix: RawFix,
        best: Candidate,
        elapsed: float,
        confidence: float,
    ) -> EnhancedLocation:
        previous = self._previous_enhanced
        projection = LocalProjection.around(
            [previous.coordinate if previous else best.coordinate]
        )
        expected = expected_travel_distance(fix.speed, elapsed)

        if previous is not None:
            coordinate = smooth_coordinate(
                previous.coordinate,
                best.coordinate,
                max_step=max(expected * 1.5, SMOOTHING_MIN_STEP_M),
                alpha=self._config.position_alpha,
                projection=projection,
            )
        else:
            coordinate = best.coordinate

        target_heading = best.heading
        if target_heading is None and fix.has_valid_course:
            target_heading = fix.course
        previous_heading = previous.heading if previous else None
        if target_heading is not None:
            heading: Optional[float] = smooth_heading(
                previous_heading, target_heading, self._config.heading_alpha
            )
        else:
            heading = previous_heading

        progress_delta = None
        if self._previous_candidate is not None:
            progress_delta = (
                best.progress_along_route
                - self._previous_candidate.progress_along_route
            )
        speed = derive_speed(fix.speed, progress_delta, elapsed)

        state = self._dead_reckoning
        if state is not None and state.blend_anchor is not None:
            anchor = state.blend_anchor
            started = (
                state.blend_started_at
                if state.blend_started_at is not None
                else fix.timestamp
            )
            factor = blend_factor(
                fix.timestamp - started, self._config.dead_reckoning_blend_duration
            )
            coordinate = interpolate_coordinate(
                anchor.coordinate, coordinate, factor, projection=projection
            )
            if anchor.heading is not None and heading is not None:
                heading = smooth_heading(anchor.heading, heading, factor)
            if factor >= 1:
                self._dead_reckoning = None
                LOGGER.debug("Dead-reckoning blend complete")

        return EnhancedLocation(
            coordinate=coordinate,
            heading=heading,
            speed=speed,
            timestamp=fix.timestamp,
            confidence=confidence,
            candidate=best,
        )

    def _record(self, enhanced: EnhancedLocation, candidate: Candidate) -> None:
        previous = self._previous_enhanced
        if previous is not None:
            self._counters.jitter.add_sample(
                haversine_distance(
                    previous.coordinate[0],
                    previous.coordinate[1],
                    enhanced.coordinate[0],
                    enhanced.coordinate[1],
                )
            )
        self._previous_candidate = candidate
        self._previous_enhanced = enhanced
        self._previous_timestamp = enhanced.timestamp

    def _skip(self, timestamp: float, reason: str) -> None:
        LOGGER.debug("Skipping tick at %.3f: %s", timestamp, reason)
        self._counters.skipped += 1
        self._previous_timestamp = timestamp
        return None

    # ------------------------------------------------------------------
    # Progress regulation
    # ------------------------------------------------------------------
    def _regulate_progress(self, candidate: Candidate) -> float:
        previous = self._previous_candidate
        if previous is None:
            self._backtrack_frames = 0
            return candidate.progress_along_route

        delta = candidate.progress_along_route - previous.progress_along_route
        if delta >= 0 or abs(delta) <= self._config.epsilon_backtrack:
            self._backtrack_frames = 0
            return candidate.progress_along_route

        self._backtrack_frames += 1
        if self._backtrack_frames >= self._config.backtrack_acceptance_frames:
            LOGGER.debug(
                "Accepting %.1f m regression after %d frames",
                -delta,
                self._backtrack_frames,
            )
            self._backtrack_frames = 0
            return candidate.progress_along_route

        self._counters.backtrack_held += 1
        return previous.progress_along_route

    # ------------------------------------------------------------------
    # Dead reckoning
    # ------------------------------------------------------------------
    def _dead_reckoning_reason(
        self, fix: RawFix, segments: List[RouteSegment], elapsed: float
    ) -> Optional[str]:
        if self._previous_enhanced is None:
            return None
        if not segments:
            return "empty corridor window"
        if fix.horizontal_accuracy > self._config.dead_reckoning_accuracy_threshold:
            return "accuracy %.0f m" % fix.horizontal_accuracy
        if not fix.has_valid_speed:
            return "invalid speed"
        if elapsed > self._config.dead_reckoning_gap_threshold:
            return "gap %.2f s" % elapsed
        return None

    def _dead_reckon(
        self, fix: RawFix, elapsed: float, reason: str
    ) -> Optional[EnhancedLocation]:
        stored = self._previous_enhanced
        stored_candidate = self._previous_candidate
        if stored is None or stored_candidate is None:
            return None

        heading = stored.heading
        if heading is None:
            heading = stored_candidate.heading
        if heading is None and fix.has_valid_course:
            heading = fix.course
        if heading is None:
            return None

        base_speed = fix.speed if fix.has_valid_speed else stored.speed
        displacement = min(
            self._config.dead_reckoning_max_distance,
            max(0.0, base_speed) * max(elapsed, MATCHING_MIN_CADENCE_S),
        )
        if not displacement > 0:
            return None

        coordinate = destination_point(stored.coordinate, heading, displacement)
        candidate = Candidate(
            coordinate=coordinate,
            distance_from_route=stored_candidate.distance_from_route,
            progress_along_route=stored_candidate.progress_along_route + displacement,
            heading=heading,
            segment_index=stored_candidate.segment_index,
            step_index=stored_candidate.step_index,
            curvature=stored_candidate.curvature,
            distance_to_next_maneuver=max(
                0.0, stored_candidate.distance_to_next_maneuver - displacement
            ),
            heading_difference=0.0,
            is_near_fork=stored_candidate.is_near_fork,
            score=stored_candidate.score,
            emission_score=stored_candidate.emission_score,
            transition_score=stored_candidate.transition_score,
        )
        enhanced = EnhancedLocation(
            coordinate=coordinate,
            heading=heading,
            speed=base_speed,
            timestamp=fix.timestamp,
            confidence=clamp(
                stored.confidence - DEAD_RECKONING_CONFIDENCE_DECAY, 0.0, 1.0
            ),
            candidate=candidate,
        )

        state = self._dead_reckoning
        if state is None or state.blend_anchor is not None:
            LOGGER.debug("Entering dead reckoning (%s)", reason)
            started_at = fix.timestamp
        else:
            started_at = state.started_at
        self._dead_reckoning = DeadReckoningState(
            last_prediction=enhanced, started_at=started_at
        )
        self._counters.dead_reckoned += 1
        self._previous_candidate = candidate
        self._previous_enhanced = enhanced
        return enhanced

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _select_config(self, speed: float) -> None:
        config = select_config(speed, self._highway_speed_threshold)
        if config == self._config:
            return
        LOGGER.debug("Switching matching profile %s -> %s", self._config.name, config.name)
        self._config = config
        self._corridor.update_window_length(config.corridor_window_length)

    def _elapsed_since_previous(self, timestamp: float) -> float:
        if self._previous_timestamp is None:
            return 0.0
        return max(0.0, timestamp - self._previous_timestamp)

    def _reset_state(self) -> None:
        self._previous_candidate = None
        self._previous_enhanced = None
        self._previous_timestamp = None
        self._backtrack_frames = 0
        self._dead_reckoning = None
        self._counters = _new_counters()


__all__ = [
    "DeadReckoningState",
    "MatcherDiagnostics",
    "MatchingCoordinator",
    "RunningStatistics",
]
