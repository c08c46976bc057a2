"""Central configuration for the route matching engine.

All values are constants imported by the rest of the package. Adjust as needed
for your environment. Each value may be overridden through an environment
variable of the same name (optionally via a local `.env`).
"""

from __future__ import annotations

import importlib
import os


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    return default


# Load .env variables when python-dotenv is available.
_load_dotenv = None
try:
    _dotenv_mod = importlib.import_module("dotenv")
    _load_dotenv = getattr(_dotenv_mod, "load_dotenv", None)
except Exception:
    _load_dotenv = None

if callable(_load_dotenv):
    # Load .env from the current directory or any parent folder.
    _load_dotenv()


# ---------------------------------------------------------------------------
# Matching pipeline
# ---------------------------------------------------------------------------
# Speed (m/s) above which the highway profile is selected. 70 km/h by default.
MATCHING_HIGHWAY_SPEED_THRESHOLD_MPS = _env_float(
    "MATCHING_HIGHWAY_SPEED_THRESHOLD_MPS", 70.0 / 3.6
)

# GPS speeds are clamped to this ceiling (≈ 200 km/h) before scoring.
MATCHING_MAX_SPEED_MPS = _env_float("MATCHING_MAX_SPEED_MPS", 55.0)

# Lower bound applied to elapsed time in rate-dependent formulas so duplicate
# timestamps never divide by zero.
MATCHING_MIN_CADENCE_S = _env_float("MATCHING_MIN_CADENCE_S", 0.2)

# Smallest corridor window (metres) the geometry index accepts.
CORRIDOR_MIN_WINDOW_LENGTH_M = _env_float("CORRIDOR_MIN_WINDOW_LENGTH_M", 100.0)

# Number of local projection transformers kept in memory.
PROJECTION_CACHE_SIZE = _env_int("PROJECTION_CACHE_SIZE", 32)

# Confidence removed from the last normal match per dead-reckoned tick.
DEAD_RECKONING_CONFIDENCE_DECAY = _env_float("DEAD_RECKONING_CONFIDENCE_DECAY", 0.1)

# Floor for the per-tick position smoothing step (metres).
SMOOTHING_MIN_STEP_M = _env_float("SMOOTHING_MIN_STEP_M", 5.0)

# Floor for the dead-reckoning blend duration (seconds).
BLEND_MIN_DURATION_S = 0.1


# ---------------------------------------------------------------------------
# Location feed
# ---------------------------------------------------------------------------
# Cadence the matcher expects (seconds). Fixes arriving faster than 40% of
# this interval are dropped as jitter.
FEED_TARGET_INTERVAL_S = _env_float("FEED_TARGET_INTERVAL_S", 1.0 / 5.0)

# Horizontal accuracy ceiling (metres). Worse fixes are clamped to it; fixes
# worse than four times the ceiling are rejected outright.
FEED_ACCURACY_CEILING_M = _env_float("FEED_ACCURACY_CEILING_M", 65.0)

# Disable the feed filter entirely (every fix goes straight to the matcher).
FEED_FILTER_ENABLED = _env_bool("FEED_FILTER_ENABLED", True)


# ---------------------------------------------------------------------------
# Off-route detection
# ---------------------------------------------------------------------------
# Lateral distance (metres) and heading deviation (degrees) per mode.
OFF_ROUTE_CITY_DISTANCE_M = _env_float("OFF_ROUTE_CITY_DISTANCE_M", 28.0)
OFF_ROUTE_CITY_HEADING_DEG = _env_float("OFF_ROUTE_CITY_HEADING_DEG", 55.0)
OFF_ROUTE_HIGHWAY_DISTANCE_M = _env_float("OFF_ROUTE_HIGHWAY_DISTANCE_M", 48.0)
OFF_ROUTE_HIGHWAY_HEADING_DEG = _env_float("OFF_ROUTE_HIGHWAY_HEADING_DEG", 45.0)

# Consecutive frames needed to enter/leave the off-route state.
OFF_ROUTE_ENTER_FRAMES = _env_int("OFF_ROUTE_ENTER_FRAMES", 3)
OFF_ROUTE_EXIT_FRAMES = _env_int("OFF_ROUTE_EXIT_FRAMES", 5)

# Below this confidence both distance and heading must be exceeded.
OFF_ROUTE_LOW_CONFIDENCE = _env_float("OFF_ROUTE_LOW_CONFIDENCE", 0.2)


# ---------------------------------------------------------------------------
# Replay tool
# ---------------------------------------------------------------------------
# Default CSV path written by ``routematch.tools.replay_trace``.
REPLAY_OUTPUT_FILE = os.getenv("REPLAY_OUTPUT_FILE", "matched_trace.csv")
