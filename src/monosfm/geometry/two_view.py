"""Two-view relative pose: fundamental -> essential -> cheirality vote."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from ..frontend.camera import CameraIntrinsics
from ..frontend.pose import SE3
from .essential import compute_essential_matrix, compute_relative_pose
from .fundamental import FundamentalRansacOptions, estimate_fundamental_matrix_ransac
from .ransac import as_generator

logger = logging.getLogger(__name__)


@dataclass
class TwoViewResult:
    """Output of a full two-view estimation.

    Attributes:
        success: True if every stage succeeded
        pose: Relative pose of camera 2 with respect to camera 1
        F: Fundamental matrix (None if estimation failed early)
        E: Essential matrix (None if estimation failed early)
        inliers: Boolean mask of fundamental-matrix inliers
        num_visible: Cheirality count of the winning pose
        message: Reason for failure, empty on success
    """

    success: bool
    pose: SE3 | None
    F: np.ndarray | None
    E: np.ndarray | None
    inliers: np.ndarray
    num_visible: int = 0
    message: str = ""


class TwoViewSolver:
    """Estimates the relative pose between two calibrated views."""

    def __init__(
        self,
        fundamental_options: FundamentalRansacOptions | None = None,
        min_points_visible_ratio: float = 0.5,
        rng: np.random.Generator | int | None = None,
    ) -> None:
        self._fundamental_options = fundamental_options or FundamentalRansacOptions()
        self._min_points_visible_ratio = min_points_visible_ratio
        self._rng = as_generator(rng)

    def solve(
        self,
        pts1: np.ndarray,
        pts2: np.ndarray,
        intrinsics1: CameraIntrinsics,
        intrinsics2: CameraIntrinsics,
    ) -> TwoViewResult:
        """Estimate the pose of camera 2 relative to camera 1.

        Every correspondence takes part in the cheirality vote, so the
        visibility ratio is measured against all input matches, outliers
        included.
        """
        pts1 = np.asarray(pts1, dtype=np.float64).reshape(-1, 2)
        pts2 = np.asarray(pts2, dtype=np.float64).reshape(-1, 2)

        f_result = estimate_fundamental_matrix_ransac(
            pts1, pts2, self._fundamental_options, self._rng
        )
        if not f_result.success:
            return TwoViewResult(
                success=False,
                pose=None,
                F=None,
                E=None,
                inliers=f_result.inliers,
                message=f_result.message,
            )

        E = compute_essential_matrix(f_result.F, intrinsics1, intrinsics2)
        inliers = f_result.inliers
        pose_result = compute_relative_pose(
            E,
            pts1,
            pts2,
            intrinsics1,
            intrinsics2,
            self._min_points_visible_ratio,
        )
        if not pose_result.success:
            logger.debug(pose_result.message)

        return TwoViewResult(
            success=pose_result.success,
            pose=pose_result.pose,
            F=f_result.F,
            E=E,
            inliers=inliers,
            num_visible=pose_result.num_visible,
            message=pose_result.message,
        )
