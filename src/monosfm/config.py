"""Top-level configuration for the visual odometry loop.

Option groups live next to the component that consumes them and are
composed here into `VisualOdometryOptions`. A full configuration can be
loaded from YAML with `load_options`, where each nested key maps to one
option group:

    sliding_window_length: 3
    distance_metric: HAMMING
    matcher:
      ratio_threshold: 0.85
      keep_best_k: 100
    pnp_ransac:
      iterations: 100
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

import yaml

from .backend.optimizer import BundleAdjustmentOptions
from .frontend.distance_metric import MetricKind
from .frontend.matcher import FeatureMatcherOptions
from .geometry.fundamental import FundamentalRansacOptions
from .geometry.pose_estimator import PnPRansacOptions

logger = logging.getLogger(__name__)


@dataclass
class VisualOdometryOptions:
    """Top-level options for the visual odometry loop."""

    sliding_window_length: int = 3
    min_points_visible_ratio: float = 0.5
    perform_bundle_adjustment: bool = False
    seed_new_landmarks: bool = True
    distance_metric: MetricKind = MetricKind.SCALED_L2
    max_descriptor_distance: float | None = None  # landmark descriptor gate
    random_seed: int | None = 0

    matcher: FeatureMatcherOptions = field(default_factory=FeatureMatcherOptions)
    fundamental_ransac: FundamentalRansacOptions = field(
        default_factory=FundamentalRansacOptions
    )
    pnp_ransac: PnPRansacOptions = field(default_factory=PnPRansacOptions)
    bundle_adjustment: BundleAdjustmentOptions = field(
        default_factory=BundleAdjustmentOptions
    )

    def __post_init__(self) -> None:
        if isinstance(self.distance_metric, str):
            self.distance_metric = MetricKind(self.distance_metric.upper())
        if self.sliding_window_length < 2:
            raise ValueError("sliding_window_length must be at least 2")
        if not 0.0 <= self.min_points_visible_ratio <= 1.0:
            raise ValueError("min_points_visible_ratio must be in [0, 1]")
        if self.max_descriptor_distance is not None and self.max_descriptor_distance < 0:
            raise ValueError("max_descriptor_distance must be non-negative or None")

    def to_dict(self) -> dict[str, Any]:
        """Return a plain dictionary suitable for YAML serialization."""
        data = asdict(self)
        data["distance_metric"] = self.distance_metric.value
        return data


_NESTED_OPTIONS = {
    "matcher": FeatureMatcherOptions,
    "fundamental_ransac": FundamentalRansacOptions,
    "pnp_ransac": PnPRansacOptions,
    "bundle_adjustment": BundleAdjustmentOptions,
}


def _build(cls, values: dict[str, Any] | None):
    """Instantiate a dataclass, ignoring unknown keys with a warning."""
    values = values or {}
    known = {f.name for f in fields(cls)}
    unknown = set(values) - known
    if unknown:
        logger.warning(f"Ignoring unknown {cls.__name__} keys: {sorted(unknown)}")
    return cls(**{k: v for k, v in values.items() if k in known})


def options_from_dict(data: dict[str, Any]) -> VisualOdometryOptions:
    """Build VisualOdometryOptions from a nested dictionary."""
    data = dict(data)
    nested = {key: _build(cls, data.pop(key, None)) for key, cls in _NESTED_OPTIONS.items()}
    return _build(VisualOdometryOptions, {**data, **nested})


def load_options(path: str | Path) -> VisualOdometryOptions:
    """Load VisualOdometryOptions from a YAML file.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ValueError: If the file is malformed or an option fails validation
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, "r") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValueError(f"Config root must be a mapping, got {type(data).__name__}")

    return options_from_dict(data)


def save_options(options: VisualOdometryOptions, path: str | Path) -> None:
    """Write VisualOdometryOptions to a YAML file."""
    with open(path, "w") as f:
        yaml.safe_dump(options.to_dict(), f, sort_keys=False)
