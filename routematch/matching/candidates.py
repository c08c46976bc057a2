"""Projection of raw fixes onto windowed route segments."""

from __future__ import annotations

from abc import ABCMeta, abstractmethod
from typing import List, Sequence

import numpy as np

from ..models import Candidate, RawFix
from .corridor import RouteSegment
from .geometry import LocalProjection, angular_difference, project_onto_segments
from .profiles import MatchingConfig


class CandidateGeneratorInterface(metaclass=ABCMeta):
    """Produces ranked on-route hypotheses for a single fix."""

    @abstractmethod
    def generate_candidates(
        self,
        fix: RawFix,
        segments: Sequence[RouteSegment],
        config: MatchingConfig,
    ) -> List[Candidate]:
        """Return candidates ordered by lateral distance then heading difference."""


class CandidateGenerator(CandidateGeneratorInterface):
    """Perpendicular projection of the fix onto every segment in the window."""

    def generate_candidates(
        self,
        fix: RawFix,
        segments: Sequence[RouteSegment],
        config: MatchingConfig,
    ) -> List[Candidate]:
        if not segments:
            return []

        projection = LocalProjection.for_epsg(segments[0].epsg)
        point = projection.to_metric(fix.coordinate)
        starts = np.asarray([s.start_point for s in segments], dtype=float)
        ends = np.asarray([s.end_point for s in segments], dtype=float)
        t, projected, distances = project_onto_segments(point, starts, ends)

        observed = fix.course if fix.has_valid_course else None
        heading_differences = np.asarray(
            [
                angular_difference(observed, s.tangent) if observed is not None else 0.0
                for s in segments
            ],
            dtype=float,
        )

        # Primary key is the last one passed to lexsort.
        order = np.lexsort((heading_differences, distances))[: config.max_candidates]

        candidates: List[Candidate] = []
        for idx in order:
            segment = segments[int(idx)]
            if t[idx] <= 0:
                coordinate = segment.start_coordinate
            elif t[idx] >= 1:
                coordinate = segment.end_coordinate
            else:
                coordinate = projection.to_latlon(*projected[idx])
            candidates.append(
                Candidate(
                    coordinate=coordinate,
                    distance_from_route=float(distances[idx]),
                    progress_along_route=segment.cumulative_distance
                    + float(t[idx]) * segment.length,
                    heading=segment.tangent,
                    segment_index=segment.index,
                    step_index=segment.step_index,
                    curvature=segment.curvature,
                    distance_to_next_maneuver=segment.distance_to_next_maneuver,
                    heading_difference=float(heading_differences[idx]),
                    is_near_fork=segment.distance_to_next_maneuver
                    <= config.near_fork_radius,
                )
            )
        return candidates


__all__ = ["CandidateGenerator", "CandidateGeneratorInterface"]
