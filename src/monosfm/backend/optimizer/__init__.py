"""Bundle adjustment optimizers."""

from .scipy_ba import BAObservation, BAResult, BundleAdjustmentOptions, ScipyBundleAdjustment

__all__ = [
    "BundleAdjustmentOptions",
    "ScipyBundleAdjustment",
    "BAObservation",
    "BAResult",
]
