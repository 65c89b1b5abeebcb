"""Backend: windowed bundle adjustment."""

from .local_mapping import LocalMapping, LocalMappingResult
from .optimizer import BAResult, BundleAdjustmentOptions, ScipyBundleAdjustment

__all__ = [
    # Bundle Adjustment
    "BundleAdjustmentOptions",
    "ScipyBundleAdjustment",
    "BAResult",
    # Local Mapping
    "LocalMapping",
    "LocalMappingResult",
]
