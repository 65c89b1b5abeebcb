"""Multi-view geometry: epipolar estimation, PnP and triangulation."""

from .essential import (
    RelativePoseResult,
    compute_essential_matrix,
    compute_relative_pose,
    fundamental_from_essential,
    pose_candidates,
)
from .fundamental import (
    FundamentalRansacOptions,
    FundamentalResult,
    estimate_fundamental_matrix,
    estimate_fundamental_matrix_ransac,
    sampson_distance,
)
from .pose_estimator import PnPRansacOptions, PnPResult, PoseEstimator2D3D
from .ransac import RansacOptions
from .triangulation import triangulate, triangulate_matches
from .two_view import TwoViewResult, TwoViewSolver

__all__ = [
    # RANSAC
    "RansacOptions",
    # Two-view
    "FundamentalRansacOptions",
    "FundamentalResult",
    "estimate_fundamental_matrix",
    "estimate_fundamental_matrix_ransac",
    "sampson_distance",
    "RelativePoseResult",
    "compute_essential_matrix",
    "compute_relative_pose",
    "fundamental_from_essential",
    "pose_candidates",
    "TwoViewResult",
    "TwoViewSolver",
    # PnP
    "PnPRansacOptions",
    "PnPResult",
    "PoseEstimator2D3D",
    # Triangulation
    "triangulate",
    "triangulate_matches",
]
