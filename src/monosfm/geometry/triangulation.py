"""Multi-view triangulation of 3D points from 2D observations.

A point seen by cameras P_i = [R_i | t_i] at normalized coordinates
(x_i, y_i) satisfies, for every camera,

    x_i * (P_i[2] @ X) - P_i[0] @ X = 0
    y_i * (P_i[2] @ X) - P_i[1] @ X = 0

Stacking these rows gives a homogeneous system A X = 0 solved by SVD
(linear DLT). The linear estimate is then optionally refined by minimizing
pixel reprojection error with scipy's least squares.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np
from scipy.optimize import least_squares

from ..frontend.camera import Camera

logger = logging.getLogger(__name__)

# Optical centers closer than this are treated as coincident.
_MIN_BASELINE = 1e-9


def _dlt_rows(xy: np.ndarray, Rt: np.ndarray) -> np.ndarray:
    """Return the two DLT rows contributed by one normalized observation."""
    return np.vstack([xy[0] * Rt[2] - Rt[0], xy[1] * Rt[2] - Rt[1]])


def _reprojection_residuals(
    point: np.ndarray,
    rays: np.ndarray,
    rotations: np.ndarray,
    translations: np.ndarray,
    focals: np.ndarray,
) -> np.ndarray:
    """Pixel-scaled residuals of a point against normalized observations."""
    p_cam = np.einsum("nij,j->ni", rotations, point) + translations
    projected = p_cam[:, :2] / p_cam[:, 2:3]
    return ((projected - rays) * focals).ravel()


def triangulate(
    pixels: np.ndarray,
    cameras: Sequence[Camera],
    refine: bool = True,
) -> np.ndarray | None:
    """Triangulate one 3D point from two or more observations.

    Args:
        pixels: Nx2 pixel coordinates, one per camera
        cameras: N cameras with known intrinsics and extrinsics
        refine: If True, polish the linear solution by minimizing
            reprojection error

    Returns:
        The (3,) world point, or None if the cameras are degenerate, the
        system is singular, or the point is behind any camera
    """
    pixels = np.asarray(pixels, dtype=np.float64).reshape(-1, 2)
    if len(pixels) != len(cameras):
        raise ValueError(f"Got {len(pixels)} pixels for {len(cameras)} cameras")
    if len(cameras) < 2:
        return None

    centers = np.array([cam.center for cam in cameras])
    if np.max(np.linalg.norm(centers - centers[0], axis=1)) < _MIN_BASELINE:
        logger.debug("Triangulation failed: coincident optical centers")
        return None

    rays = np.vstack([cam.pixels_to_rays(px) for cam, px in zip(cameras, pixels)])
    A = np.vstack(
        [_dlt_rows(xy, cam.extrinsics.to_Rt()) for xy, cam in zip(rays, cameras)]
    )

    try:
        _, _, Vt = np.linalg.svd(A)
    except np.linalg.LinAlgError:
        logger.debug("Triangulation failed: SVD did not converge")
        return None

    X = Vt[-1]
    if abs(X[3]) < 1e-12:
        logger.debug("Triangulation failed: point at infinity")
        return None
    point = X[:3] / X[3]

    if refine:
        rotations = np.array([cam.extrinsics.rotation for cam in cameras])
        translations = np.array([cam.extrinsics.translation for cam in cameras])
        focals = np.array([[cam.intrinsics.fx, cam.intrinsics.fy] for cam in cameras])
        try:
            result = least_squares(
                _reprojection_residuals,
                point,
                args=(rays, rotations, translations, focals),
                method="lm",
                xtol=1e-12,
                ftol=1e-12,
            )
            if np.isfinite(result.x).all():
                point = result.x
        except (ValueError, np.linalg.LinAlgError) as e:
            logger.debug(f"Triangulation refinement skipped: {e}")

    if not np.isfinite(point).all():
        return None

    for cam in cameras:
        if not cam.is_in_front(point):
            logger.debug("Triangulation failed: point behind a camera")
            return None

    return point


def triangulate_matches(
    pts1: np.ndarray,
    pts2: np.ndarray,
    camera1: Camera,
    camera2: Camera,
) -> tuple[np.ndarray, np.ndarray]:
    """Linearly triangulate many two-view correspondences at once.

    Args:
        pts1: Nx2 pixel coordinates in the first camera
        pts2: Nx2 pixel coordinates in the second camera
        camera1: First camera
        camera2: Second camera

    Returns:
        Tuple of (points, valid) where points is Nx3 in world frame and
        valid marks points that are finite and in front of both cameras
    """
    pts1 = np.asarray(pts1, dtype=np.float64).reshape(-1, 2)
    pts2 = np.asarray(pts2, dtype=np.float64).reshape(-1, 2)
    n = len(pts1)
    if n == 0:
        return np.empty((0, 3), dtype=np.float64), np.zeros(0, dtype=bool)

    if np.linalg.norm(camera1.center - camera2.center) < _MIN_BASELINE:
        return np.full((n, 3), np.nan), np.zeros(n, dtype=bool)

    xy1 = camera1.pixels_to_rays(pts1)
    xy2 = camera2.pixels_to_rays(pts2)
    P1 = camera1.extrinsics.to_Rt()
    P2 = camera2.extrinsics.to_Rt()

    # (N, 4, 4) batch of DLT systems.
    A = np.stack(
        [
            xy1[:, 0:1] * P1[2] - P1[0],
            xy1[:, 1:2] * P1[2] - P1[1],
            xy2[:, 0:1] * P2[2] - P2[0],
            xy2[:, 1:2] * P2[2] - P2[1],
        ],
        axis=1,
    )
    _, _, Vt = np.linalg.svd(A)
    X = Vt[:, -1, :]

    with np.errstate(divide="ignore", invalid="ignore"):
        points = X[:, :3] / X[:, 3:4]

    valid = np.isfinite(points).all(axis=1)
    valid[valid] &= camera1.in_front(points[valid]) & camera2.in_front(points[valid])
    return points, valid
