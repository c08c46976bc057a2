"""Pipeline services layered around the matching coordinator."""

from .location_feed import LocationFeed
from .off_route import OffRouteDetector
from .pipeline import NavigationPipeline, NavigationPipelineConfig
from .progress import ProgressIntegrator

__all__ = [
    "LocationFeed",
    "NavigationPipeline",
    "NavigationPipelineConfig",
    "OffRouteDetector",
    "ProgressIntegrator",
]
