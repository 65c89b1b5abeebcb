"""Absolute camera pose estimation from 2D-3D correspondences with RANSAC."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import cv2
import numpy as np

from ..frontend.camera import Camera, CameraIntrinsics, DistortionCoeffs
from ..frontend.pose import SE3
from .ransac import RansacOptions, as_generator

logger = logging.getLogger(__name__)


@dataclass
class PnPRansacOptions(RansacOptions):
    """RANSAC parameters for 2D-3D pose estimation.

    Attributes:
        acceptable_error: Inlier threshold on reprojection error (pixels)
        refine_with_all_inliers: If True, refine the RANSAC pose on all
            inliers with iterative PnP
    """

    iterations: int = 100
    acceptable_error: float = 1.0
    minimum_num_inliers: int = 5
    num_samples: int = 6
    refine_with_all_inliers: bool = True

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.num_samples < 6:
            raise ValueError("The linear pose solver needs num_samples >= 6")


@dataclass
class PnPResult:
    """Result of PnP pose estimation.

    Attributes:
        success: True if pose estimation succeeded
        pose: Estimated world-to-camera pose T_camera_world. None if failed.
        inliers: Boolean mask indicating which correspondences are inliers
        num_inliers: Number of inlier correspondences
        reprojection_error: Mean reprojection error of inliers (pixels)
        message: Reason for failure, empty on success
    """

    success: bool
    pose: SE3 | None
    inliers: np.ndarray  # (N,) bool
    num_inliers: int
    reprojection_error: float
    message: str = ""


def solve_linear_pose(rays: np.ndarray, points_3d: np.ndarray) -> SE3 | None:
    """Direct linear estimate of [R|t] from 6 or more correspondences.

    Solves x ~ [R|t] X for the 3x4 matrix in normalized image coordinates,
    then projects its left 3x3 block onto SO(3).

    Args:
        rays: Nx2 normalized image coordinates
        points_3d: Nx3 world points (not all coplanar)

    Returns:
        World-to-camera pose, or None for degenerate input
    """
    n = len(rays)
    if n < 6:
        return None

    # Condition the 3D points: centroid at origin, mean distance sqrt(3).
    mean = points_3d.mean(axis=0)
    centered = points_3d - mean
    mean_dist = np.mean(np.linalg.norm(centered, axis=1))
    if mean_dist <= 0:
        return None
    scale = np.sqrt(3.0) / mean_dist
    X = np.hstack([centered * scale, np.ones((n, 1))])

    x = rays[:, 0:1]
    y = rays[:, 1:2]
    zeros = np.zeros((n, 4))
    A = np.vstack(
        [
            np.hstack([X, zeros, -x * X]),
            np.hstack([zeros, X, -y * X]),
        ]
    )

    try:
        _, _, Vt = np.linalg.svd(A)
    except np.linalg.LinAlgError:
        return None

    T = np.eye(4)
    T[:3, :3] *= scale
    T[:3, 3] = -scale * mean
    P = Vt[-1].reshape(3, 4) @ T

    M = P[:, :3]
    det = np.linalg.det(M)
    if abs(det) < 1e-12:
        return None
    if det < 0:
        P = -P
        M = -M

    try:
        U, S, Vt_m = np.linalg.svd(M)
    except np.linalg.LinAlgError:
        return None

    R = U @ Vt_m
    t = P[:, 3] / np.mean(S)
    pose = SE3(rotation=R, translation=t)
    return pose if pose.is_finite() else None


class PoseEstimator2D3D:
    """Estimates an absolute camera pose from 2D-3D correspondences.

    Runs RANSAC over a minimal linear solve, scoring each hypothesis by
    pixel reprojection error against every correspondence. The largest
    inlier set wins and is optionally refined with iterative PnP.
    """

    def __init__(
        self,
        options: PnPRansacOptions | None = None,
        rng: np.random.Generator | int | None = None,
    ) -> None:
        self._options = options or PnPRansacOptions()
        self._rng = as_generator(rng)

    def _failure(self, n_points: int, message: str, num_inliers: int = 0) -> PnPResult:
        return PnPResult(
            success=False,
            pose=None,
            inliers=np.zeros(n_points, dtype=bool),
            num_inliers=num_inliers,
            reprojection_error=float("inf"),
            message=message,
        )

    @staticmethod
    def _errors(camera: Camera, points_3d: np.ndarray, points_2d: np.ndarray) -> np.ndarray:
        """Per-point reprojection error, infinite for points behind the camera."""
        errors = np.full(len(points_3d), np.inf)
        in_front = camera.in_front(points_3d)
        if in_front.any():
            projected = camera.project(points_3d[in_front])
            errors[in_front] = np.linalg.norm(projected - points_2d[in_front], axis=1)
        return errors

    def estimate_pose(
        self,
        points_2d: np.ndarray,
        points_3d: np.ndarray,
        intrinsics: CameraIntrinsics,
        distortion: DistortionCoeffs | None = None,
    ) -> PnPResult:
        """Estimate the world-to-camera pose of a calibrated camera.

        Args:
            points_2d: Nx2 observed pixel coordinates
            points_3d: Nx3 corresponding world points
            intrinsics: Camera intrinsics
            distortion: Lens distortion, None for an ideal pinhole

        Returns:
            PnPResult with estimated pose and inlier information
        """
        points_2d = np.asarray(points_2d, dtype=np.float64).reshape(-1, 2)
        points_3d = np.asarray(points_3d, dtype=np.float64).reshape(-1, 3)
        n_points = len(points_3d)
        if len(points_2d) != n_points:
            raise ValueError(f"Got {len(points_2d)} 2D points for {n_points} 3D points")

        options = self._options
        if n_points < options.num_samples:
            return self._failure(
                n_points, f"Too few correspondences: {n_points} < {options.num_samples}"
            )

        camera = Camera(intrinsics=intrinsics, distortion=distortion or DistortionCoeffs())
        rays = camera.pixels_to_rays(points_2d)

        best_pose = None
        best_inliers = np.zeros(n_points, dtype=bool)
        best_count = 0

        for _ in range(options.iterations):
            sample = self._rng.choice(n_points, size=options.num_samples, replace=False)
            pose = solve_linear_pose(rays[sample], points_3d[sample])
            if pose is None:
                continue

            errors = self._errors(camera.with_extrinsics(pose), points_3d, points_2d)
            inliers = errors < options.acceptable_error
            count = int(np.sum(inliers))
            if count > best_count:
                best_pose, best_inliers, best_count = pose, inliers, count
                if count == n_points:
                    break

        if best_pose is None or best_count < options.minimum_num_inliers:
            return self._failure(
                n_points,
                f"Too few inliers: {best_count} < {options.minimum_num_inliers}",
                num_inliers=best_count,
            )

        if options.refine_with_all_inliers and best_count >= 4:
            best_pose = self._refine(
                camera, best_pose, points_3d[best_inliers], points_2d[best_inliers]
            )

        errors = self._errors(camera.with_extrinsics(best_pose), points_3d, points_2d)
        inliers = errors < options.acceptable_error
        num_inliers = int(np.sum(inliers))
        if num_inliers < options.minimum_num_inliers:
            return self._failure(
                n_points,
                f"Too few inliers after refinement: {num_inliers}",
                num_inliers=num_inliers,
            )

        return PnPResult(
            success=True,
            pose=best_pose,
            inliers=inliers,
            num_inliers=num_inliers,
            reprojection_error=float(np.mean(errors[inliers])),
        )

    def _refine(
        self,
        camera: Camera,
        pose: SE3,
        points_3d: np.ndarray,
        points_2d: np.ndarray,
    ) -> SE3:
        """Refine a pose on its inliers with iterative PnP.

        The refined pose is kept only if it does not increase the mean
        reprojection error.
        """
        rvec, tvec = pose.to_rvec_tvec()
        try:
            success, rvec_refined, tvec_refined = cv2.solvePnP(
                objectPoints=points_3d.reshape(-1, 1, 3),
                imagePoints=points_2d.reshape(-1, 1, 2),
                cameraMatrix=camera.K,
                distCoeffs=camera.distortion.to_array(),
                rvec=rvec.reshape(3, 1).copy(),
                tvec=tvec.reshape(3, 1).copy(),
                useExtrinsicGuess=True,
                flags=cv2.SOLVEPNP_ITERATIVE,
            )
        except cv2.error as e:
            logger.debug(f"PnP refinement failed: {e}")
            return pose

        if not success:
            return pose

        refined = SE3.from_rvec_tvec(rvec_refined, tvec_refined)
        if not refined.is_finite():
            return pose

        before = np.mean(self._errors(camera.with_extrinsics(pose), points_3d, points_2d))
        after = np.mean(self._errors(camera.with_extrinsics(refined), points_3d, points_2d))
        return refined if after <= before else pose

    @property
    def options(self) -> PnPRansacOptions:
        return self._options
