"""monosfm - incremental monocular structure-from-motion in Python."""

__version__ = "0.1.0"

# Re-export main classes for convenient imports
from .frontend import (
    SE3,
    Camera,
    CameraIntrinsics,
    DescriptorMatches,
    DistanceMetric,
    DistortionCoeffs,
    Feature,
    FeatureMatcher2D2D,
    FeatureMatcher2D3D,
    FeatureMatcherOptions,
    Features,
    MetricKind,
    match_descriptors,
)
from .geometry import (
    FundamentalRansacOptions,
    PnPRansacOptions,
    PoseEstimator2D3D,
    TwoViewSolver,
    triangulate,
)
from .map import Landmark, Observation, Session, View
from .backend import (
    BAResult,
    BundleAdjustmentOptions,
    LocalMapping,
    ScipyBundleAdjustment,
)
from .config import VisualOdometryOptions, load_options, save_options
from .visual_odometry import TrackingStatus, VisualOdometry, VOFrame, VOState

__all__ = [
    "__version__",
    # Visual Odometry
    "VisualOdometry",
    "VisualOdometryOptions",
    "VOFrame",
    "VOState",
    "TrackingStatus",
    "load_options",
    "save_options",
    # Pose / Camera
    "SE3",
    "Camera",
    "CameraIntrinsics",
    "DistortionCoeffs",
    # Features / Matching
    "Feature",
    "Features",
    "DistanceMetric",
    "MetricKind",
    "DescriptorMatches",
    "FeatureMatcherOptions",
    "FeatureMatcher2D2D",
    "FeatureMatcher2D3D",
    "match_descriptors",
    # Geometry
    "FundamentalRansacOptions",
    "PnPRansacOptions",
    "PoseEstimator2D3D",
    "TwoViewSolver",
    "triangulate",
    # Map
    "Session",
    "View",
    "Landmark",
    "Observation",
    # Backend / Bundle Adjustment
    "BundleAdjustmentOptions",
    "ScipyBundleAdjustment",
    "BAResult",
    "LocalMapping",
]
