"""Geodesic helpers and local planar projections used by the matcher."""

from __future__ import annotations

from dataclasses import dataclass
import math
from threading import RLock
from typing import Sequence, Tuple

from cachetools import LRUCache
import numpy as np
from numpy.typing import NDArray
from pyproj import CRS, Transformer

from ..config import PROJECTION_CACHE_SIZE
from ..models import LatLon

MetricArray = NDArray[np.float64]

EARTH_RADIUS_M = 6_371_000.0


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate distance between two points in meters using Haversine formula"""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_M * c


def polyline_length(points: Sequence[LatLon]) -> float:
    """Sum of haversine lengths between consecutive points."""

    return sum(
        haversine_distance(a[0], a[1], b[0], b[1]) for a, b in zip(points, points[1:])
    )


def normalize_bearing(bearing: float) -> float:
    """Wrap a bearing into [0, 360)."""

    if not math.isfinite(bearing):
        return 0.0
    wrapped = bearing % 360.0
    # -1e-17 % 360 rounds up to 360.0
    return 0.0 if wrapped >= 360.0 else wrapped


def initial_bearing(start: LatLon, end: LatLon) -> float:
    """Great-circle initial bearing from ``start`` to ``end`` in degrees (0=North)."""
    phi1 = math.radians(start[0])
    phi2 = math.radians(end[0])
    delta_lambda = math.radians(end[1] - start[1])

    x = math.sin(delta_lambda) * math.cos(phi2)
    y = math.cos(phi1) * math.sin(phi2) - math.sin(phi1) * math.cos(phi2) * math.cos(
        delta_lambda
    )

    return normalize_bearing(math.degrees(math.atan2(x, y)))


def angular_difference(angle_a: float, angle_b: float) -> float:
    """Smallest absolute difference between two bearings, in [0, 180]."""

    diff = abs(angle_a - angle_b) % 360.0
    return 360.0 - diff if diff > 180.0 else diff


def destination_point(origin: LatLon, heading: float, distance_m: float) -> LatLon:
    """Project ``origin`` forward along ``heading`` by ``distance_m`` on a sphere."""

    heading_rad = math.radians(heading)
    ratio = distance_m / EARTH_RADIUS_M
    lat1 = math.radians(origin[0])
    lon1 = math.radians(origin[1])

    lat2 = math.asin(
        math.sin(lat1) * math.cos(ratio)
        + math.cos(lat1) * math.sin(ratio) * math.cos(heading_rad)
    )
    lon2 = lon1 + math.atan2(
        math.sin(heading_rad) * math.sin(ratio) * math.cos(lat1),
        math.cos(ratio) - math.sin(lat1) * math.sin(lat2),
    )
    return (math.degrees(lat2), math.degrees(lon2))


# Module-level LRU cache of WGS84 -> local CRS transformers keyed by EPSG code.
_transformer_cache: LRUCache[int, Transformer] = LRUCache(
    maxsize=max(1, PROJECTION_CACHE_SIZE)
)
_transformer_cache_lock = RLock()


def _transformer_for_epsg(epsg: int) -> Transformer:
    with _transformer_cache_lock:
        cached = _transformer_cache.get(epsg)
    if cached is not None:
        return cached
    try:
        target_crs = CRS.from_epsg(epsg)
    except Exception:
        target_crs = CRS.from_epsg(3857)
    transformer = Transformer.from_crs(CRS.from_epsg(4326), target_crs, always_xy=True)
    with _transformer_cache_lock:
        _transformer_cache[epsg] = transformer
    return transformer


def _utm_epsg(mean_lat: float, mean_lon: float) -> int:
    zone = int((mean_lon + 180.0) // 6.0) + 1
    zone = max(1, min(zone, 60))
    if mean_lat >= 0:
        return 32600 + zone
    return 32700 + zone


@dataclass(frozen=True, slots=True)
class LocalProjection:
    """Round-trips lat/lon pairs through a local UTM metric plane."""

    transformer: Transformer
    epsg: int

    @classmethod
    def around(cls, points: Sequence[LatLon]) -> "LocalProjection":
        """Build a projection centred on the mean of ``points``."""

        if not points:
            raise ValueError("Cannot build a projection for an empty point collection")
        mean_lat = float(np.mean([pt[0] for pt in points]))
        mean_lon = float(np.mean([pt[1] for pt in points]))
        return cls.for_epsg(_utm_epsg(mean_lat, mean_lon))

    @classmethod
    def for_epsg(cls, epsg: int) -> "LocalProjection":
        return cls(transformer=_transformer_for_epsg(epsg), epsg=epsg)

    def to_metric(self, point: LatLon) -> Tuple[float, float]:
        x, y = self.transformer.transform(point[1], point[0])
        return float(x), float(y)

    def to_metric_array(self, points: Sequence[LatLon]) -> MetricArray:
        if not points:
            return np.empty((0, 2), dtype=float)
        lats = np.asarray([pt[0] for pt in points], dtype=float)
        lons = np.asarray([pt[1] for pt in points], dtype=float)
        xs, ys = self.transformer.transform(lons, lats)
        return np.column_stack((xs, ys)).astype(float, copy=False)

    def to_latlon(self, x: float, y: float) -> LatLon:
        lon, lat = self.transformer.transform(x, y, direction="INVERSE")
        return float(lat), float(lon)


def project_onto_segments(
    point: Sequence[float],
    starts: MetricArray,
    ends: MetricArray,
) -> Tuple[MetricArray, MetricArray, MetricArray]:
    """Perpendicularly project ``point`` onto each planar segment.

    Returns the clamped parameter ``t`` in [0, 1], the projected points and
    the planar distance from ``point`` to each projection. Zero-length
    segments project onto their start point with ``t = 0``.
    """

    p = np.asarray(point, dtype=float)
    deltas = ends - starts
    denominators = np.einsum("ij,ij->i", deltas, deltas)
    numerators = np.einsum("ij,ij->i", p - starts, deltas)
    t = np.zeros(len(starts), dtype=float)
    valid = denominators > 0
    t[valid] = numerators[valid] / denominators[valid]
    t = np.clip(t, 0.0, 1.0)
    projected = starts + deltas * t[:, None]
    distances = np.linalg.norm(projected - p, axis=1)
    return t, projected, distances


def interpolate_planar(
    start: Tuple[float, float], target: Tuple[float, float], factor: float
) -> Tuple[float, float]:
    """Linear interpolation between two planar points."""

    return (
        start[0] + (target[0] - start[0]) * factor,
        start[1] + (target[1] - start[1]) * factor,
    )


__all__ = [
    "EARTH_RADIUS_M",
    "LocalProjection",
    "MetricArray",
    "angular_difference",
    "destination_point",
    "haversine_distance",
    "initial_bearing",
    "interpolate_planar",
    "normalize_bearing",
    "polyline_length",
    "project_onto_segments",
]
