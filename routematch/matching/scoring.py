"""Emission and transition scoring for map-matching candidates."""

from __future__ import annotations

from abc import ABCMeta, abstractmethod
import math
from typing import List, Optional, Sequence, Tuple

from ..models import Candidate
from .profiles import MatchingConfig
from .smoothing import clamp_speed, expected_travel_distance

# Near forks distance is trusted less and heading continuity more.
_FORK_DISTANCE_WEIGHT = 0.6
_FORK_HEADING_WEIGHT = 1.2


class ScoringEngineInterface(metaclass=ABCMeta):
    """Ranks candidates given the previous match and motion since it."""

    @abstractmethod
    def score(
        self,
        candidates: Sequence[Candidate],
        previous: Optional[Candidate],
        elapsed: float,
        speed: float,
        config: MatchingConfig,
    ) -> List[Candidate]:
        """Return scored copies of ``candidates`` sorted best-first."""


class ScoringEngine(ScoringEngineInterface):
    """Hidden-Markov style scoring: observation fit plus progress continuity."""

    def score(
        self,
        candidates: Sequence[Candidate],
        previous: Optional[Candidate],
        elapsed: float,
        speed: float,
        config: MatchingConfig,
    ) -> List[Candidate]:
        if not candidates:
            return []

        expected_delta = expected_travel_distance(clamp_speed(speed), elapsed)
        scored: List[Candidate] = []
        for candidate in candidates:
            emission = emission_score(candidate, config)
            transition = transition_score(candidate, previous, expected_delta, config)
            scored.append(
                candidate.with_scores(emission + transition, emission, transition)
            )

        scored.sort(key=_sort_key, reverse=True)
        return scored


def emission_score(candidate: Candidate, config: MatchingConfig) -> float:
    """Weighted Gaussian fit of lateral offset and heading agreement."""

    weight_distance, weight_heading = _adjusted_weights(candidate, config)
    distance_term = math.exp(
        -(candidate.distance_from_route**2) / (2 * config.sigma_distance**2)
    )
    heading_term = math.exp(
        -(candidate.heading_difference**2) / (2 * config.sigma_heading**2)
    )
    return weight_distance * distance_term + weight_heading * heading_term


def transition_score(
    candidate: Candidate,
    previous: Optional[Candidate],
    expected_delta: float,
    config: MatchingConfig,
) -> float:
    """Gaussian on progress delta minus backtrack and step-jump penalties."""

    if previous is None:
        return 0.0

    delta_s = candidate.progress_along_route - previous.progress_along_route
    gaussian = math.exp(
        -((delta_s - expected_delta) ** 2) / (2 * config.sigma_progress**2)
    )

    penalties = 0.0
    if delta_s < -config.epsilon_backtrack:
        penalties += config.lambda_backtrack
    if abs(candidate.step_index - previous.step_index) > 1:
        penalties += config.lambda_jump
    return gaussian - penalties


def _adjusted_weights(
    candidate: Candidate, config: MatchingConfig
) -> Tuple[float, float]:
    if not candidate.is_near_fork:
        return config.weight_distance, config.weight_heading
    return (
        config.weight_distance * _FORK_DISTANCE_WEIGHT,
        config.weight_heading * _FORK_HEADING_WEIGHT,
    )


def _sort_key(candidate: Candidate) -> float:
    score = candidate.score
    if score is None or not math.isfinite(score):
        return -math.inf
    return score


__all__ = [
    "ScoringEngine",
    "ScoringEngineInterface",
    "emission_score",
    "transition_score",
]
