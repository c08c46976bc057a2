"""Replay a recorded GPS trace through the matcher against a saved route."""

from __future__ import annotations

import argparse
from dataclasses import dataclass, field
import json
import logging
from pathlib import Path
from typing import Any, List, Optional, Sequence, Union

import pandas as pd

from ..config import FEED_FILTER_ENABLED, REPLAY_OUTPUT_FILE
from ..errors import RouteMatchError, RoutePayloadError, TraceFormatError
from ..matching import MatcherDiagnostics
from ..models import EnhancedLocation, OffRouteEvent, RawFix, Route
from ..routes import load_route_json
from ..services import NavigationPipeline, NavigationPipelineConfig

PathLike = Union[str, Path]

RESULT_COLUMNS = [
    "timestamp",
    "lat",
    "lon",
    "heading",
    "speed",
    "confidence",
    "progress_m",
    "segment_index",
    "step_index",
    "distance_from_route_m",
]


@dataclass(slots=True)
class ReplayResult:
    """Everything the pipeline published while replaying a trace."""

    locations: List[EnhancedLocation] = field(default_factory=list)
    events: List[OffRouteEvent] = field(default_factory=list)
    fixes_in: int = 0
    diagnostics: Optional[MatcherDiagnostics] = None


def load_trace(path: PathLike) -> List[RawFix]:
    """Read fixes from a recorded trace file.

    Accepts either ``{"trace": [{"location": {...}}, ...]}`` (entries with a
    null location are skipped) or a bare list of fix mappings.
    """

    with Path(path).open("r", encoding="utf-8") as handle:
        try:
            payload = json.load(handle)
        except json.JSONDecodeError as exc:
            raise TraceFormatError(f"Trace file {path} is not valid JSON") from exc

    entries: Sequence[Any]
    if isinstance(payload, dict):
        entries = payload.get("trace") or []
    elif isinstance(payload, list):
        entries = payload
    else:
        raise TraceFormatError(f"Trace file {path} must contain a list or object")

    fixes: List[RawFix] = []
    for position, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise TraceFormatError(f"Trace entry {position} is not an object")
        location = entry.get("location", entry)
        if location is None:
            continue
        try:
            fixes.append(RawFix.from_dict(location))
        except (KeyError, TypeError, ValueError) as exc:
            raise TraceFormatError(f"Trace entry {position} is malformed: {exc}") from exc
    return fixes


def replay(
    route: Route,
    fixes: Sequence[RawFix],
    *,
    use_feed: bool = FEED_FILTER_ENABLED,
) -> ReplayResult:
    """Feed ``fixes`` through a fresh pipeline and collect its outputs."""

    pipeline = NavigationPipeline(NavigationPipelineConfig(use_feed=use_feed))
    pipeline.update(route)
    if not pipeline.coordinator.has_route_geometry:
        pipeline.close()
        raise RouteMatchError("Route has no usable geometry to match against")

    result = ReplayResult(fixes_in=len(fixes))
    pipeline.coordinator.enhanced_locations.subscribe(result.locations.append)
    pipeline.detector.events.subscribe(result.events.append)
    try:
        for fix in fixes:
            pipeline.push(fix)
    finally:
        pipeline.close()
    result.diagnostics = pipeline.coordinator.diagnostics
    return result


def results_frame(locations: Sequence[EnhancedLocation]) -> pd.DataFrame:
    """Tabulate matched locations, one row per emitted tick."""

    rows = [
        {
            "timestamp": loc.timestamp,
            "lat": loc.coordinate[0],
            "lon": loc.coordinate[1],
            "heading": loc.heading,
            "speed": loc.speed,
            "confidence": loc.confidence,
            "progress_m": loc.candidate.progress_along_route,
            "segment_index": loc.candidate.segment_index,
            "step_index": loc.candidate.step_index,
            "distance_from_route_m": loc.candidate.distance_from_route,
        }
        for loc in locations
    ]
    return pd.DataFrame(rows, columns=RESULT_COLUMNS)


def _build_parser() -> argparse.ArgumentParser:
    """Return the CLI argument parser for the replay tool."""

    parser = argparse.ArgumentParser(
        description="Replay a recorded GPS trace through the route matcher."
    )
    parser.add_argument("route", type=Path, help="Route payload JSON file")
    parser.add_argument("trace", type=Path, help="Recorded trace JSON file")
    parser.add_argument(
        "--output",
        type=Path,
        default=Path(REPLAY_OUTPUT_FILE),
        help=f"CSV path for matched locations (default: {REPLAY_OUTPUT_FILE})",
    )
    parser.add_argument(
        "--no-feed",
        action="store_true",
        help="Bypass the location feed filter and ingest every fix",
    )
    return parser


def _setup_logging() -> None:
    if not logging.getLogger().hasHandlers():
        logging.basicConfig(
            level=logging.INFO,
            format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        )


def main(argv: Optional[Sequence[str]] = None) -> int:
    """CLI entry point used via ``python -m routematch.tools.replay_trace``."""

    args = _build_parser().parse_args(argv)
    _setup_logging()

    try:
        route = load_route_json(args.route)
        fixes = load_trace(args.trace)
    except (RoutePayloadError, TraceFormatError, FileNotFoundError) as exc:
        logging.error("Failed to load inputs: %s", exc)
        return 1

    try:
        result = replay(route, fixes, use_feed=not args.no_feed)
    except RouteMatchError as exc:
        logging.error("%s", exc)
        return 1

    frame = results_frame(result.locations)
    args.output.parent.mkdir(parents=True, exist_ok=True)
    frame.to_csv(args.output, index=False)

    diagnostics = result.diagnostics
    logging.info(
        "Matched %d of %d fixes; %d off-route transitions",
        len(result.locations),
        result.fixes_in,
        len(result.events),
    )
    if diagnostics is not None:
        logging.info(
            "Jitter RMS %.2f m over %d samples; %d dead-reckoned, %d backtrack holds",
            diagnostics.jitter_rms_m,
            diagnostics.jitter_samples,
            diagnostics.dead_reckoned_ticks,
            diagnostics.backtrack_held_ticks,
        )
    logging.info("Matched trace written to %s", args.output)
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
