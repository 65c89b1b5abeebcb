"""Essential matrix computation and relative pose disambiguation."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from ..frontend.camera import Camera, CameraIntrinsics
from ..frontend.pose import SE3
from .triangulation import triangulate_matches

logger = logging.getLogger(__name__)

_W = np.array([[0.0, -1.0, 0.0], [1.0, 0.0, 0.0], [0.0, 0.0, 1.0]])


@dataclass
class RelativePoseResult:
    """Result of extracting a relative pose from an essential matrix.

    Attributes:
        success: True if the winning candidate has enough points in front
            of both cameras
        pose: Pose of camera 2 relative to camera 1 (maps camera-1
            coordinates to camera-2 coordinates), unit-norm translation
        num_visible: Cheirality count of the winning candidate
        message: Reason for failure, empty on success
    """

    success: bool
    pose: SE3 | None
    num_visible: int
    message: str = ""


def _as_matrix(intrinsics: CameraIntrinsics | np.ndarray) -> np.ndarray:
    if isinstance(intrinsics, CameraIntrinsics):
        return intrinsics.to_matrix()
    return np.asarray(intrinsics, dtype=np.float64)


def compute_essential_matrix(
    F: np.ndarray,
    intrinsics1: CameraIntrinsics | np.ndarray,
    intrinsics2: CameraIntrinsics | np.ndarray,
) -> np.ndarray:
    """Compute E = K2^T @ F @ K1."""
    K1 = _as_matrix(intrinsics1)
    K2 = _as_matrix(intrinsics2)
    return K2.T @ F @ K1


def fundamental_from_essential(
    E: np.ndarray,
    intrinsics1: CameraIntrinsics | np.ndarray,
    intrinsics2: CameraIntrinsics | np.ndarray,
) -> np.ndarray:
    """Compute F = K2^-T @ E @ K1^-1, the inverse of `compute_essential_matrix`."""
    K1_inv = np.linalg.inv(_as_matrix(intrinsics1))
    K2_inv = np.linalg.inv(_as_matrix(intrinsics2))
    return K2_inv.T @ E @ K1_inv


def pose_candidates(E: np.ndarray) -> list[SE3]:
    """Return the four (R, t) decompositions of an essential matrix.

    Based on Hartley & Zisserman, Multiple View Geometry, section 9.6.2.
    Rotations are sign-corrected to det = +1.

    Raises:
        np.linalg.LinAlgError: If the SVD does not converge
    """
    U, _, Vt = np.linalg.svd(E)

    R1 = U @ _W @ Vt
    R2 = U @ _W.T @ Vt
    if np.linalg.det(R1) < 0:
        R1 = -R1
    if np.linalg.det(R2) < 0:
        R2 = -R2

    t = U[:, 2]
    return [
        SE3(rotation=R1, translation=t),
        SE3(rotation=R1, translation=-t),
        SE3(rotation=R2, translation=t),
        SE3(rotation=R2, translation=-t),
    ]


def compute_relative_pose(
    E: np.ndarray,
    pts1: np.ndarray,
    pts2: np.ndarray,
    intrinsics1: CameraIntrinsics,
    intrinsics2: CameraIntrinsics,
    min_points_visible_ratio: float = 0.5,
) -> RelativePoseResult:
    """Pick the candidate pose that puts the most points in front of both cameras.

    Camera 1 sits at the identity. For each of the four candidates every
    correspondence is triangulated and counted if it has positive depth in
    both cameras.

    Args:
        E: 3x3 essential matrix
        pts1: Nx2 pixel coordinates in camera 1
        pts2: Nx2 pixel coordinates in camera 2
        intrinsics1: Intrinsics of camera 1
        intrinsics2: Intrinsics of camera 2
        min_points_visible_ratio: Fail if the best count is below this
            fraction of the correspondences

    Returns:
        RelativePoseResult with the winning pose
    """
    pts1 = np.asarray(pts1, dtype=np.float64).reshape(-1, 2)
    pts2 = np.asarray(pts2, dtype=np.float64).reshape(-1, 2)
    num_matches = len(pts1)

    try:
        candidates = pose_candidates(E)
    except np.linalg.LinAlgError:
        return RelativePoseResult(
            success=False,
            pose=None,
            num_visible=0,
            message="SVD of the essential matrix failed",
        )

    camera1 = Camera(intrinsics=intrinsics1)

    best_pose = None
    best_count = -1
    for candidate in candidates:
        camera2 = Camera(intrinsics=intrinsics2, extrinsics=candidate)
        _, in_front = triangulate_matches(pts1, pts2, camera1, camera2)
        count = int(np.sum(in_front))
        logger.debug(f"Pose candidate has {count}/{num_matches} points in front")

        if count > best_count:
            best_count = count
            best_pose = candidate

    if best_count < min_points_visible_ratio * num_matches or best_count <= 0:
        return RelativePoseResult(
            success=False,
            pose=None,
            num_visible=max(best_count, 0),
            message=(
                f"Ambiguous relative pose: only {best_count}/{num_matches} "
                f"points in front of both cameras"
            ),
        )

    return RelativePoseResult(success=True, pose=best_pose, num_visible=best_count)
