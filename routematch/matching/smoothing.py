"""Pure numeric helpers for smoothing, blending and confidence.

Every function here takes its previous values explicitly so the matcher's
post-processing can be tested without a coordinator instance.
"""

from __future__ import annotations

import math
from typing import Optional, Sequence

import numpy as np

from ..config import (
    BLEND_MIN_DURATION_S,
    MATCHING_MAX_SPEED_MPS,
    MATCHING_MIN_CADENCE_S,
)
from ..models import LatLon
from .geometry import LocalProjection, interpolate_planar, normalize_bearing


def clamp(value: float, lower: float, upper: float) -> float:
    """Clamp ``value`` into [lower, upper], tolerating swapped bounds."""

    lo, hi = min(lower, upper), max(lower, upper)
    return max(lo, min(value, hi))


def clamp_speed(speed: float, max_speed: float = MATCHING_MAX_SPEED_MPS) -> float:
    """Clamp a GPS speed into [0, max_speed]; unknown speeds become zero."""

    if not math.isfinite(speed):
        return 0.0
    return clamp(speed, 0.0, max_speed)


def expected_travel_distance(speed: float, elapsed: float) -> float:
    """Displacement bound for one tick: speed x elapsed clamped to 0.5x..1.5x speed."""

    clamped = clamp_speed(speed)
    expected = clamped * max(elapsed, MATCHING_MIN_CADENCE_S)
    return clamp(expected, clamped * 0.5, clamped * 1.5)


def smooth_coordinate(
    start: LatLon,
    target: LatLon,
    max_step: float,
    alpha: float,
    projection: Optional[LocalProjection] = None,
) -> LatLon:
    """Move ``start`` toward ``target`` by ``alpha``, never further than ``max_step`` metres."""

    projection = projection or LocalProjection.around([start])
    start_point = projection.to_metric(start)
    target_point = projection.to_metric(target)
    distance = math.hypot(
        target_point[0] - start_point[0], target_point[1] - start_point[1]
    )
    if not distance > 0:
        return target

    limiting = min(1.0, max_step / distance) if max_step > 0 else 1.0
    effective_alpha = clamp(alpha * limiting, 0.0, 1.0)
    return projection.to_latlon(
        *interpolate_planar(start_point, target_point, effective_alpha)
    )


def smooth_heading(
    previous: Optional[float], new_heading: float, alpha: float
) -> float:
    """Circular exponential average of two bearings, weighted ``alpha`` toward the new one."""

    if previous is None:
        return normalize_bearing(new_heading)
    weight_new = clamp(alpha, 0.0, 1.0)
    weight_prev = 1.0 - weight_new
    prev_rad = math.radians(previous)
    new_rad = math.radians(new_heading)
    x = weight_prev * math.cos(prev_rad) + weight_new * math.cos(new_rad)
    y = weight_prev * math.sin(prev_rad) + weight_new * math.sin(new_rad)
    return normalize_bearing(math.degrees(math.atan2(y, x)))


def blend_factor(elapsed: float, duration: float) -> float:
    """Fraction of the dead-reckoning blend completed after ``elapsed`` seconds."""

    duration = max(duration, BLEND_MIN_DURATION_S)
    if not math.isfinite(elapsed):
        return 1.0
    return clamp(elapsed / duration, 0.0, 1.0)


def interpolate_coordinate(
    start: LatLon,
    target: LatLon,
    factor: float,
    projection: Optional[LocalProjection] = None,
) -> LatLon:
    if factor <= 0:
        return start
    if factor >= 1:
        return target
    projection = projection or LocalProjection.around([start])
    return projection.to_latlon(
        *interpolate_planar(
            projection.to_metric(start), projection.to_metric(target), factor
        )
    )


def softmax_margin(scores: Sequence[float]) -> float:
    """Confidence as the softmax probability gap between the first two scores.

    ``scores`` must be ordered best-first. The result lies in [0, 1].
    """

    values = np.asarray([s for s in scores if s is not None], dtype=float)
    values = values[np.isfinite(values)]
    if values.size == 0:
        return 0.0
    exp_scores = np.exp(values - values.max())
    total = float(exp_scores.sum())
    if not total > 0:
        return 0.0
    top = float(exp_scores[0]) / total
    second = float(exp_scores[1]) / total if values.size > 1 else 0.0
    return clamp(top - second, 0.0, 1.0)


def derive_speed(
    raw_speed: float,
    progress_delta: Optional[float],
    elapsed: float,
) -> float:
    """Raw GPS speed when valid, otherwise forward progress over elapsed time."""

    if math.isfinite(raw_speed) and raw_speed >= 0:
        return raw_speed
    if progress_delta is None:
        return 0.0
    return max(0.0, progress_delta) / max(elapsed, MATCHING_MIN_CADENCE_S)


__all__ = [
    "blend_factor",
    "clamp",
    "clamp_speed",
    "derive_speed",
    "expected_travel_distance",
    "interpolate_coordinate",
    "smooth_coordinate",
    "smooth_heading",
    "softmax_margin",
]
