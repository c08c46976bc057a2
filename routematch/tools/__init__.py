"""Utility entry points for supplementary developer tooling."""

from .replay_trace import load_trace, replay, results_frame

__all__ = ["load_trace", "replay", "results_frame"]
