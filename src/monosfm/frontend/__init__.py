"""Frontend components: poses, cameras, per-frame features and matching."""

from .camera import Camera, CameraIntrinsics, DistortionCoeffs
from .distance_metric import DistanceMetric, MetricKind
from .features import Feature, Features
from .matcher import (
    DescriptorMatches,
    FeatureMatcher2D2D,
    FeatureMatcher2D3D,
    FeatureMatcherOptions,
    match_descriptors,
)
from .pose import SE3

__all__ = [
    # Pose
    "SE3",
    # Camera
    "Camera",
    "CameraIntrinsics",
    "DistortionCoeffs",
    # Features
    "Feature",
    "Features",
    # Matching
    "DistanceMetric",
    "MetricKind",
    "DescriptorMatches",
    "FeatureMatcherOptions",
    "FeatureMatcher2D2D",
    "FeatureMatcher2D3D",
    "match_descriptors",
]
