"""Central error types used across the package."""

from __future__ import annotations


class RouteMatchError(RuntimeError):
    """Base error for route matching failures outside the per-fix hot path."""


class RoutePayloadError(ValueError):
    """Raised when a route payload is missing steps or carries unusable geometry."""


class TraceFormatError(ValueError):
    """Raised when a recorded trace file cannot be parsed into fixes."""


__all__ = [
    "RouteMatchError",
    "RoutePayloadError",
    "TraceFormatError",
]
