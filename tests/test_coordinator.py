"""End-to-end behaviour of the matching coordinator."""

from __future__ import annotations

import threading
from typing import List, Optional, Sequence

import pytest

from conftest import BASE, make_fix, north_of
from routematch.matching import (
    CITY,
    HIGHWAY,
    CandidateGeneratorInterface,
    CorridorProviderInterface,
    MatchingCoordinator,
    RouteGeometryIndex,
    RouteSegment,
    ScoringEngineInterface,
    build_segments,
)
from routematch.matching.geometry import angular_difference, haversine_distance
from routematch.matching.smoothing import smooth_coordinate
from routematch.models import Candidate, RawFix


# --- Stub collaborators ----------------------------------------------
class StaticCorridor(CorridorProviderInterface):
    """Always exposes the same window."""

    def __init__(self, segments: Sequence[RouteSegment]) -> None:
        self.segments = list(segments)
        self.window_lengths: List[float] = []

    def update_route(self, route) -> None:
        pass

    def has_geometry(self) -> bool:
        return bool(self.segments)

    def update_window_length(self, window_length: float) -> None:
        self.window_lengths.append(window_length)

    def refresh_corridor(self, coordinate) -> None:
        pass

    def nearest_segment(self, coordinate):
        return None

    def current_corridor(self):
        return []

    def window_segments(self) -> List[RouteSegment]:
        return list(self.segments)


class ScriptedGenerator(CandidateGeneratorInterface):
    """Returns one candidate per tick at the next scripted progress value."""

    def __init__(self, progress: Sequence[float]) -> None:
        self._progress = list(progress)

    def generate_candidates(self, fix, segments, config) -> List[Candidate]:
        progress = self._progress.pop(0)
        return [
            Candidate(
                coordinate=north_of(BASE, progress),
                distance_from_route=0.0,
                progress_along_route=progress,
                heading=0.0,
                segment_index=0,
                step_index=0,
                curvature=0.0,
                distance_to_next_maneuver=500.0,
                heading_difference=0.0,
                is_near_fork=False,
            )
        ]


class PassThroughScoring(ScoringEngineInterface):
    def score(self, candidates, previous, elapsed, speed, config) -> List[Candidate]:
        return [c.with_scores(1.0, 1.0, 0.0) for c in candidates]


def scripted_coordinator(progress: Sequence[float], route) -> MatchingCoordinator:
    segments, _ = build_segments(route)
    return MatchingCoordinator(
        corridor_provider=StaticCorridor(segments),
        candidate_generator=ScriptedGenerator(progress),
        scoring_engine=PassThroughScoring(),
    )


def feed(coordinator: MatchingCoordinator, fixes: Sequence[RawFix]):
    return [coordinator.ingest(fix) for fix in fixes]


def along_route(start_m: float, count: int, *, step_m: float = 5.0, t0: float = 0.0, **kwargs):
    return [
        make_fix(north_of(BASE, start_m + step_m * i), t0 + i, **kwargs)
        for i in range(count)
    ]


@pytest.fixture
def coordinator(long_route) -> MatchingCoordinator:
    matcher = MatchingCoordinator()
    matcher.update(long_route)
    return matcher


# --- Normal matching -------------------------------------------------
def test_noiseless_drive_tracks_progress(route) -> None:
    matcher = MatchingCoordinator()
    matcher.update(route)

    locations = feed(matcher, along_route(50.0, 21))

    assert all(loc is not None for loc in locations)
    first, last = locations[0], locations[-1]
    assert first.progress_m == pytest.approx(50.0, abs=0.5)
    assert angular_difference(first.heading, 0.0) < 1e-6
    assert first.confidence > 0.5
    assert first.candidate.transition_score == 0.0

    progress = [loc.progress_m for loc in locations]
    assert all(b >= a - 1e-6 for a, b in zip(progress, progress[1:]))
    assert last.progress_m == pytest.approx(150.0, abs=0.5)
    assert last.candidate.transition_score == pytest.approx(1.0, abs=1e-3)
    assert all(loc.speed == 5.0 for loc in locations)

    diagnostics = matcher.diagnostics
    assert diagnostics.dead_reckoned_ticks == 0
    assert diagnostics.skipped_ticks == 0
    assert diagnostics.jitter_samples == 20
    assert diagnostics.active_profile == "city"


def test_smoothed_position_lags_behind_candidate(route) -> None:
    matcher = MatchingCoordinator()
    matcher.update(route)

    first, second = feed(matcher, along_route(50.0, 2, step_m=40.0))

    moved = haversine_distance(*first.coordinate, *second.coordinate)
    # One tick at 5 m/s caps the step at 7.5 m before alpha applies.
    assert moved == pytest.approx(CITY.position_alpha * 7.5, abs=0.05)
    assert second.candidate.progress_along_route == pytest.approx(90.0, abs=0.5)


def test_non_finite_fix_is_dropped(coordinator) -> None:
    received: List = []
    coordinator.enhanced_locations.subscribe(received.append)

    assert coordinator.ingest(make_fix((float("nan"), -122.0), 0.0)) is None
    assert coordinator.ingest(make_fix(BASE, float("inf"))) is None
    assert received == []
    assert coordinator.previous_location is None


# --- Backtrack hysteresis -------------------------------------------
def test_backtrack_held_until_acceptance_frames(route) -> None:
    matcher = scripted_coordinator([100, 110, 100, 100, 100, 100, 100], route)

    locations = feed(matcher, along_route(100.0, 7, step_m=0.0))

    assert [loc.progress_m for loc in locations] == [100, 110, 110, 110, 110, 110, 100]
    assert matcher.backtrack_frame_count == 0
    assert matcher.diagnostics.backtrack_held_ticks == 4


def test_small_regression_accepted_immediately(route) -> None:
    matcher = scripted_coordinator([100, 98], route)

    locations = feed(matcher, along_route(100.0, 2, step_m=0.0))

    assert [loc.progress_m for loc in locations] == [100, 98]
    assert matcher.backtrack_frame_count == 0


def test_forward_tick_resets_backtrack_counter(route) -> None:
    matcher = scripted_coordinator([100, 90, 90, 101, 90], route)

    locations = feed(matcher, along_route(100.0, 5, step_m=0.0))

    assert [loc.progress_m for loc in locations] == [100, 100, 100, 101, 101]
    assert matcher.backtrack_frame_count == 1


# --- Dead reckoning -------------------------------------------------
def test_low_accuracy_dead_reckons_with_decaying_confidence(coordinator) -> None:
    normal = feed(coordinator, along_route(102.5, 3))
    last_confidence = normal[-1].confidence

    predicted = feed(coordinator, along_route(117.5, 12, t0=3.0, accuracy=999.0))

    assert coordinator.is_dead_reckoning
    previous = normal[-1]
    for k, location in enumerate(predicted, start=1):
        assert location.confidence == pytest.approx(
            max(0.0, last_confidence - 0.1 * k), abs=1e-9
        )
        assert location.progress_m - previous.progress_m == pytest.approx(5.0)
        step = haversine_distance(*previous.coordinate, *location.coordinate)
        assert step <= CITY.dead_reckoning_max_distance
        assert step == pytest.approx(5.0, abs=1e-6)
        previous = location
    assert predicted[-1].confidence == 0.0
    assert coordinator.diagnostics.dead_reckoned_ticks == 12


def test_inaccurate_fix_ignores_geometry(coordinator) -> None:
    normal = feed(coordinator, along_route(102.5, 3))

    # Lies exactly on the route, but far ahead of the last match.
    predicted = coordinator.ingest(make_fix(north_of(BASE, 500), 3.0, accuracy=999.0))

    assert coordinator.is_dead_reckoning
    assert predicted.progress_m == pytest.approx(normal[-1].progress_m + 5.0)


def test_long_gap_dead_reckons_capped_distance(coordinator) -> None:
    normal = feed(coordinator, along_route(102.5, 3))

    predicted = coordinator.ingest(make_fix(north_of(BASE, 120), 1000.0))

    assert predicted.progress_m - normal[-1].progress_m == pytest.approx(
        CITY.dead_reckoning_max_distance
    )


def test_invalid_speed_uses_last_known_speed(coordinator) -> None:
    normal = feed(coordinator, along_route(102.5, 3))

    predicted = coordinator.ingest(make_fix(north_of(BASE, 117.5), 3.0, speed=-1.0))

    assert coordinator.is_dead_reckoning
    assert predicted.speed == 5.0
    assert predicted.progress_m - normal[-1].progress_m == pytest.approx(5.0)


def test_empty_window_after_match_dead_reckons(route) -> None:
    segments, _ = build_segments(route)
    corridor = StaticCorridor(segments)
    matcher = MatchingCoordinator(
        corridor_provider=corridor,
        candidate_generator=ScriptedGenerator([100, 105]),
        scoring_engine=PassThroughScoring(),
    )
    feed(matcher, along_route(100.0, 2))
    corridor.segments = []

    predicted = matcher.ingest(make_fix(north_of(BASE, 110), 2.0))

    assert predicted is not None
    assert matcher.is_dead_reckoning


def test_blend_back_from_dead_reckoning(coordinator) -> None:
    feed(coordinator, along_route(102.5, 3))
    (predicted,) = feed(coordinator, along_route(117.5, 1, t0=3.0, accuracy=999.0))

    first_match = coordinator.ingest(make_fix(north_of(BASE, 122.5), 4.0))

    assert first_match.coordinate == predicted.coordinate
    assert coordinator.is_blending
    assert not coordinator.is_dead_reckoning

    second_match = coordinator.ingest(make_fix(north_of(BASE, 127.5), 5.0))

    expected = smooth_coordinate(
        first_match.coordinate,
        second_match.candidate.coordinate,
        max_step=7.5,
        alpha=CITY.position_alpha,
    )
    assert second_match.coordinate == pytest.approx(expected, abs=1e-12)
    assert not coordinator.is_blending
    assert not coordinator.is_dead_reckoning


# --- Route changes and skips ----------------------------------------
def test_update_discards_history(coordinator, long_route) -> None:
    feed(coordinator, along_route(102.5, 3))

    coordinator.update(long_route)

    assert coordinator.previous_location is None
    assert coordinator.diagnostics.jitter_samples == 0
    # No history, so even a poor fix is matched rather than dead-reckoned.
    location = coordinator.ingest(make_fix(north_of(BASE, 502.5), 10.0, accuracy=999.0))
    assert location.candidate.transition_score == 0.0
    assert location.progress_m == pytest.approx(502.5, abs=0.5)
    assert not coordinator.is_dead_reckoning


def test_reset_clears_route_and_skips_ticks(coordinator) -> None:
    feed(coordinator, along_route(102.5, 2))
    received: List = []
    coordinator.enhanced_locations.subscribe(received.append)

    coordinator.reset()

    assert coordinator.ingest(make_fix(north_of(BASE, 112.5), 2.0)) is None
    assert received == []
    assert coordinator.previous_location is None
    assert coordinator.diagnostics.skipped_ticks == 1


def test_no_route_never_emits() -> None:
    matcher = MatchingCoordinator()
    assert feed(matcher, along_route(0.0, 3)) == [None, None, None]


# --- Profiles --------------------------------------------------------
def test_profile_switch_resizes_corridor(long_route) -> None:
    index = RouteGeometryIndex()
    matcher = MatchingCoordinator(corridor_provider=index)
    matcher.update(long_route)

    matcher.ingest(make_fix(north_of(BASE, 1050), 0.0, speed=25.0))
    assert matcher.active_config is HIGHWAY
    assert index.window_length == HIGHWAY.corridor_window_length
    assert index.window_range == range(6, 15)
    assert matcher.diagnostics.active_profile == "highway"

    matcher.ingest(make_fix(north_of(BASE, 1075), 1.0, speed=5.0))
    assert matcher.active_config is CITY
    assert index.window_length == CITY.corridor_window_length
    assert index.window_range == range(8, 13)


def test_initial_window_length_pushed_to_provider(route) -> None:
    segments, _ = build_segments(route)
    corridor = StaticCorridor(segments)
    MatchingCoordinator(corridor_provider=corridor, initial_config=HIGHWAY)
    assert corridor.window_lengths == [HIGHWAY.corridor_window_length]


# --- Output stream ---------------------------------------------------
def test_stream_delivers_in_order(coordinator) -> None:
    received: List = []
    coordinator.enhanced_locations.subscribe(received.append)
    channel = coordinator.enhanced_locations.subscribe_queue()

    returned = feed(coordinator, along_route(102.5, 10))

    assert received == returned
    queued = [channel.get_nowait() for _ in range(channel.qsize())]
    assert queued == returned
    timestamps = [loc.timestamp for loc in received]
    assert timestamps == sorted(timestamps)


def test_concurrent_ingest_publishes_each_tick_once(coordinator) -> None:
    received: List = []
    coordinator.enhanced_locations.subscribe(received.append)
    fixes = along_route(102.5, 40)
    results: List[Optional[object]] = []
    results_lock = threading.Lock()

    def worker(chunk: Sequence[RawFix]) -> None:
        for fix in chunk:
            location = coordinator.ingest(fix)
            with results_lock:
                results.append(location)

    threads = [threading.Thread(target=worker, args=(fixes[i::4],)) for i in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert len(received) == 40
    assert all(location is not None for location in results)
    assert sorted(loc.timestamp for loc in received) == [float(i) for i in range(40)]


def test_state_readers_wait_for_tick_in_progress(coordinator) -> None:
    observed: List = []
    blocked: List[bool] = []

    def read_state() -> None:
        coordinator.active_config
        coordinator.backtrack_frame_count
        observed.append(coordinator.previous_location)

    def on_location(location) -> None:
        reader = threading.Thread(target=read_state)
        reader.start()
        reader.join(timeout=0.2)
        blocked.append(reader.is_alive())
        readers.append(reader)

    readers: List[threading.Thread] = []
    coordinator.enhanced_locations.subscribe(on_location)
    location = coordinator.ingest(make_fix(north_of(BASE, 102.5), 0.0))
    for reader in readers:
        reader.join()

    assert blocked == [True]
    assert observed == [location]


def test_has_route_geometry_follows_update(coordinator, long_route) -> None:
    assert coordinator.has_route_geometry
    coordinator.reset()
    assert not coordinator.has_route_geometry
    coordinator.update(long_route)
    assert coordinator.has_route_geometry
