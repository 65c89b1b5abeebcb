"""Bundle adjustment using scipy.optimize.least_squares.

Bundle adjustment jointly optimizes camera poses and 3D landmark positions
by minimizing the sum of squared reprojection errors.

The optimization problem:
    minimize sum_i ||observed_i - project(pose_j, point_k)||^2

Where:
- observed_i is a 2D pixel observation (undistorted to the pinhole model)
- pose_j is the world-to-camera pose of the observing view
- point_k is the 3D position of the landmark
- project() projects the 3D point to 2D using the view's intrinsics
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import cv2
import numpy as np
from scipy.optimize import least_squares
from scipy.sparse import lil_matrix

from ...frontend.pose import SE3

if TYPE_CHECKING:
    from ...map.landmark import Landmark
    from ...map.session import Session
    from ...map.view import View

logger = logging.getLogger(__name__)

_LOSSES = ("linear", "huber", "soft_l1", "cauchy", "arctan")

# Residual assigned to a point that falls behind its camera.
_BEHIND_CAMERA_RESIDUAL = 1e6


@dataclass
class BundleAdjustmentOptions:
    """Configuration for windowed bundle adjustment.

    Attributes:
        max_iterations: Cap on optimizer function evaluations
        ftol: Cost-change tolerance for convergence
        xtol: Parameter-change tolerance for convergence
        gtol: Gradient tolerance for convergence
        loss: Loss function ("linear", "huber", "soft_l1", "cauchy", "arctan")
        num_fixed_poses: Oldest poses of the window held constant (gauge freedom)
        min_observations: Skip optimization below this many residual terms
    """

    max_iterations: int = 50
    ftol: float = 1e-10
    xtol: float = 1e-10
    gtol: float = 1e-10
    loss: str = "linear"
    num_fixed_poses: int = 1
    min_observations: int = 10

    def __post_init__(self) -> None:
        if self.max_iterations <= 0:
            raise ValueError("max_iterations must be positive")
        if self.loss not in _LOSSES:
            raise ValueError(f"loss must be one of {_LOSSES}, got {self.loss!r}")
        if self.num_fixed_poses < 0:
            raise ValueError("num_fixed_poses must be non-negative")


@dataclass
class BAObservation:
    """A single 2D observation for bundle adjustment."""

    view_idx: int  # Index in the views list (not view.index)
    point_idx: int  # Index in the landmarks list (not landmark.index)
    pixel: np.ndarray  # (2,) undistorted pixel coordinates
    intrinsics: np.ndarray  # (4,) fx, fy, cx, cy


@dataclass
class BAResult:
    """Result of bundle adjustment optimization."""

    success: bool
    # Optimized poses: view.index -> world-to-camera SE3
    optimized_poses: dict[int, SE3] = field(default_factory=dict)
    # Optimized points: landmark.index -> position
    optimized_points: dict[int, np.ndarray] = field(default_factory=dict)
    initial_cost: float = 0.0
    final_cost: float = 0.0
    iterations: int = 0
    message: str = ""


def _rvec_to_rotation(rvec: np.ndarray) -> np.ndarray:
    """Convert Rodrigues vector to rotation matrix."""
    R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).reshape(3, 1))
    return R


def _rotation_to_rvec(R: np.ndarray) -> np.ndarray:
    """Convert rotation matrix to Rodrigues vector."""
    rvec, _ = cv2.Rodrigues(R)
    return rvec.flatten()


class ScipyBundleAdjustment:
    """Bundle adjustment using scipy's trust-region least squares.

    Optimizes the world-to-camera poses of the non-fixed views and the
    positions of the given landmarks to minimize reprojection error. Uses
    the sparse Jacobian structure for efficiency.
    """

    def __init__(self, options: BundleAdjustmentOptions | None = None) -> None:
        self._options = options or BundleAdjustmentOptions()

    @property
    def options(self) -> BundleAdjustmentOptions:
        return self._options

    def optimize(
        self,
        views: list[View],
        landmarks: list[Landmark],
        session: Session,
        num_fixed_poses: int | None = None,
    ) -> BAResult:
        """Run bundle adjustment optimization.

        Args:
            views: Views whose observations produce residuals, oldest first
            landmarks: Landmarks to optimize
            session: Session owning the observations
            num_fixed_poses: Number of leading views held constant.
                Defaults to the configured value.

        Returns:
            BAResult with optimized poses and points
        """
        if len(views) == 0 or len(landmarks) == 0:
            return BAResult(success=False, message="No views or landmarks")

        n_fixed = self._options.num_fixed_poses if num_fixed_poses is None else num_fixed_poses
        n_fixed = min(n_fixed, len(views))

        lm_index_to_idx = {lm.index: idx for idx, lm in enumerate(landmarks)}
        observations = self._collect_observations(views, session, lm_index_to_idx)

        if len(observations) < self._options.min_observations:
            return BAResult(
                success=False, message=f"Too few observations: {len(observations)}"
            )

        n_views = len(views)
        n_points = len(landmarks)

        # Format: [rvec_k, tvec_k, ... for free views, point_0, point_1, ...]
        x0 = self._pack_parameters(views, landmarks, n_fixed)
        fixed_poses = [(v.pose.rotation, v.pose.translation) for v in views[:n_fixed]]

        view_idx = np.array([o.view_idx for o in observations], dtype=np.int64)
        point_idx = np.array([o.point_idx for o in observations], dtype=np.int64)
        pixels = np.array([o.pixel for o in observations])
        intrinsics = np.array([o.intrinsics for o in observations])
        args = (view_idx, point_idx, pixels, intrinsics, n_views, n_fixed, fixed_poses)

        initial_residuals = self._compute_residuals(x0, *args)
        initial_cost = 0.5 * np.sum(initial_residuals**2)

        sparsity = self._build_sparsity_matrix(view_idx, point_idx, n_views, n_points, n_fixed)

        try:
            result = least_squares(
                fun=self._compute_residuals,
                x0=x0,
                jac_sparsity=sparsity,
                args=args,
                method="trf",
                loss=self._options.loss,
                ftol=self._options.ftol,
                xtol=self._options.xtol,
                gtol=self._options.gtol,
                max_nfev=self._options.max_iterations,
                x_scale="jac",
                verbose=0,
            )
        except (ValueError, np.linalg.LinAlgError) as e:
            return BAResult(
                success=False,
                initial_cost=initial_cost,
                message=f"Optimization failed: {e}",
            )

        final_cost = 0.5 * np.sum(result.fun**2)

        if not np.isfinite(result.x).all() or not np.isfinite(final_cost):
            return BAResult(
                success=False,
                message="Optimization produced non-finite values",
                initial_cost=initial_cost,
                final_cost=final_cost,
            )

        # Check for divergence
        if final_cost > initial_cost * 10:
            return BAResult(
                success=False,
                message="Optimization diverged",
                initial_cost=initial_cost,
                final_cost=final_cost,
            )

        optimized_poses, optimized_points = self._unpack_parameters(
            result.x, views, landmarks, n_fixed
        )

        return BAResult(
            success=bool(result.success or final_cost < initial_cost),
            optimized_poses=optimized_poses,
            optimized_points=optimized_points,
            initial_cost=initial_cost,
            final_cost=final_cost,
            iterations=result.nfev,
            message=result.message,
        )

    def _collect_observations(
        self,
        views: list[View],
        session: Session,
        lm_index_to_idx: dict[int, int],
    ) -> list[BAObservation]:
        """Collect all incorporated observations of the given landmarks."""
        observations = []

        for v_idx, view in enumerate(views):
            camera = view.camera
            intr = camera.intrinsics
            intrinsics = np.array([intr.fx, intr.fy, intr.cx, intr.cy])

            obs_list = [
                session.get_observation(i)
                for i in view.observation_indices
            ]
            obs_list = [o for o in obs_list if o.landmark_index in lm_index_to_idx]
            if not obs_list:
                continue

            # Residuals use the pinhole model, so undistort the measurements once.
            rays = camera.pixels_to_rays(np.array([o.pixel for o in obs_list]))
            undistorted = rays * intrinsics[:2] + intrinsics[2:]

            for obs, pixel in zip(obs_list, undistorted):
                observations.append(
                    BAObservation(
                        view_idx=v_idx,
                        point_idx=lm_index_to_idx[obs.landmark_index],
                        pixel=pixel,
                        intrinsics=intrinsics,
                    )
                )

        return observations

    def _pack_parameters(
        self,
        views: list[View],
        landmarks: list[Landmark],
        n_fixed: int,
    ) -> np.ndarray:
        """Pack free poses and points into a flat parameter vector."""
        params = []

        for view in views[n_fixed:]:
            params.extend(_rotation_to_rvec(view.pose.rotation))
            params.extend(view.pose.translation)

        for lm in landmarks:
            params.extend(lm.position)

        return np.array(params, dtype=np.float64)

    def _unpack_parameters(
        self,
        params: np.ndarray,
        views: list[View],
        landmarks: list[Landmark],
        n_fixed: int,
    ) -> tuple[dict[int, SE3], dict[int, np.ndarray]]:
        """Unpack parameter vector to poses of free views and points."""
        points_start = 6 * (len(views) - n_fixed)

        optimized_poses: dict[int, SE3] = {}
        for k, view in enumerate(views[n_fixed:]):
            rvec = params[6 * k : 6 * k + 3]
            tvec = params[6 * k + 3 : 6 * k + 6]
            optimized_poses[view.index] = SE3(
                rotation=_rvec_to_rotation(rvec), translation=tvec.copy()
            )

        points = params[points_start:].reshape(-1, 3)
        optimized_points = {lm.index: points[i].copy() for i, lm in enumerate(landmarks)}

        return optimized_poses, optimized_points

    def _compute_residuals(
        self,
        params: np.ndarray,
        view_idx: np.ndarray,
        point_idx: np.ndarray,
        pixels: np.ndarray,
        intrinsics: np.ndarray,
        n_views: int,
        n_fixed: int,
        fixed_poses: list[tuple[np.ndarray, np.ndarray]],
    ) -> np.ndarray:
        """Compute reprojection residuals for all observations."""
        rotations = np.empty((n_views, 3, 3))
        translations = np.empty((n_views, 3))

        for idx in range(n_views):
            if idx < n_fixed:
                rotations[idx], translations[idx] = fixed_poses[idx]
            else:
                k = 6 * (idx - n_fixed)
                rotations[idx] = _rvec_to_rotation(params[k : k + 3])
                translations[idx] = params[k + 3 : k + 6]

        points_3d = params[6 * (n_views - n_fixed) :].reshape(-1, 3)

        p_cam = (
            np.einsum("nij,nj->ni", rotations[view_idx], points_3d[point_idx])
            + translations[view_idx]
        )
        depth = p_cam[:, 2]
        in_front = depth > 1e-6
        safe_depth = np.where(in_front, depth, 1.0)

        u = intrinsics[:, 0] * p_cam[:, 0] / safe_depth + intrinsics[:, 2]
        v = intrinsics[:, 1] * p_cam[:, 1] / safe_depth + intrinsics[:, 3]
        residuals = np.column_stack([u, v]) - pixels
        residuals[~in_front] = _BEHIND_CAMERA_RESIDUAL

        return residuals.ravel()

    def _build_sparsity_matrix(
        self,
        view_idx: np.ndarray,
        point_idx: np.ndarray,
        n_views: int,
        n_points: int,
        n_fixed: int,
    ) -> lil_matrix:
        """Build sparse Jacobian structure for efficient optimization.

        The Jacobian has structure where each observation only affects:
        - 6 pose parameters (for its view, unless the view is fixed)
        - 3 point parameters (for its landmark)
        """
        pose_params = 6 * (n_views - n_fixed)
        n_params = pose_params + 3 * n_points
        n_residuals = len(view_idx) * 2

        sparsity = lil_matrix((n_residuals, n_params), dtype=int)

        for i, (v, p) in enumerate(zip(view_idx, point_idx)):
            row_start = i * 2

            if v >= n_fixed:
                pose_col_start = (v - n_fixed) * 6
                sparsity[row_start : row_start + 2, pose_col_start : pose_col_start + 6] = 1

            point_col_start = pose_params + p * 3
            sparsity[row_start : row_start + 2, point_col_start : point_col_start + 3] = 1

        return sparsity
