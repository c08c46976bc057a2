"""Speed-adaptive tuning presets for the matching pipeline."""

from __future__ import annotations

from dataclasses import dataclass
import math

from ..config import MATCHING_HIGHWAY_SPEED_THRESHOLD_MPS


@dataclass(frozen=True, slots=True)
class MatchingConfig:
    """Scoring widths, penalties and thresholds applied for one tick.

    Attributes:
        name: Preset identifier ("city" or "highway").
        sigma_distance: Gaussian width (metres) for lateral offset.
        sigma_heading: Gaussian width (degrees) for heading disagreement.
        sigma_progress: Gaussian width (metres) for progress continuity.
        lambda_backtrack: Penalty applied when progress regresses.
        lambda_jump: Penalty applied when the step index jumps by more than one.
        epsilon_backtrack: Regression (metres) tolerated before it counts.
        weight_distance: Emission weight for the distance term.
        weight_heading: Emission weight for the heading term.
        max_candidates: Cap on candidates kept per tick.
        corridor_window_length: Total corridor length (metres) around the user.
        near_fork_radius: Distance to a maneuver (metres) treated as a fork.
        dead_reckoning_blend_duration: Seconds spent blending out of dead reckoning.
        position_alpha: Exponential smoothing factor for the coordinate.
        heading_alpha: Exponential smoothing factor for the heading.
        backtrack_acceptance_frames: Consecutive regressions before one is accepted.
        dead_reckoning_accuracy_threshold: Accuracy (metres) above which a fix is ignored.
        dead_reckoning_gap_threshold: Seconds between fixes above which a fix is ignored.
        dead_reckoning_max_distance: Cap (metres) on one dead-reckoned step.
    """

    name: str
    sigma_distance: float
    sigma_heading: float
    sigma_progress: float
    lambda_backtrack: float
    lambda_jump: float
    epsilon_backtrack: float
    weight_distance: float
    weight_heading: float
    max_candidates: int
    corridor_window_length: float
    near_fork_radius: float
    dead_reckoning_blend_duration: float
    position_alpha: float
    heading_alpha: float
    backtrack_acceptance_frames: int
    dead_reckoning_accuracy_threshold: float
    dead_reckoning_gap_threshold: float
    dead_reckoning_max_distance: float

    def __post_init__(self) -> None:
        if self.max_candidates < 1:
            raise ValueError("max_candidates must be >= 1")
        if self.backtrack_acceptance_frames < 1:
            raise ValueError("backtrack_acceptance_frames must be >= 1")
        for name in ("sigma_distance", "sigma_heading", "sigma_progress"):
            if not getattr(self, name) > 0:
                raise ValueError(f"{name} must be greater than zero")
        if not self.dead_reckoning_blend_duration > 0:
            raise ValueError("dead_reckoning_blend_duration must be greater than zero")


CITY = MatchingConfig(
    name="city",
    sigma_distance=8.0,
    sigma_heading=20.0,
    sigma_progress=15.0,
    lambda_backtrack=4.0,
    lambda_jump=6.0,
    epsilon_backtrack=3.0,
    weight_distance=2.0,
    weight_heading=1.0,
    max_candidates=5,
    corridor_window_length=400.0,
    near_fork_radius=80.0,
    dead_reckoning_blend_duration=0.75,
    position_alpha=0.22,
    heading_alpha=0.28,
    backtrack_acceptance_frames=5,
    dead_reckoning_accuracy_threshold=35.0,
    dead_reckoning_gap_threshold=1.2,
    dead_reckoning_max_distance=30.0,
)

HIGHWAY = MatchingConfig(
    name="highway",
    sigma_distance=6.0,
    sigma_heading=15.0,
    sigma_progress=12.0,
    lambda_backtrack=4.0,
    lambda_jump=6.0,
    epsilon_backtrack=3.0,
    weight_distance=1.5,
    weight_heading=1.0,
    max_candidates=5,
    corridor_window_length=800.0,
    near_fork_radius=80.0,
    dead_reckoning_blend_duration=0.75,
    position_alpha=0.18,
    heading_alpha=0.24,
    backtrack_acceptance_frames=5,
    dead_reckoning_accuracy_threshold=45.0,
    dead_reckoning_gap_threshold=1.4,
    dead_reckoning_max_distance=45.0,
)


def select_config(
    speed: float,
    highway_threshold: float = MATCHING_HIGHWAY_SPEED_THRESHOLD_MPS,
) -> MatchingConfig:
    """Pick the preset for ``speed``; unknown speeds fall back to city."""

    if not math.isfinite(speed) or speed < 0:
        return CITY
    return HIGHWAY if speed > highway_threshold else CITY


__all__ = ["CITY", "HIGHWAY", "MatchingConfig", "select_config"]
