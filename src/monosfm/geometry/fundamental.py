"""Fundamental matrix estimation using the normalized 8-point algorithm and RANSAC."""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

from .ransac import RansacOptions, as_generator

logger = logging.getLogger(__name__)


@dataclass
class FundamentalRansacOptions(RansacOptions):
    """RANSAC parameters for fundamental matrix estimation.

    `acceptable_error` is a Sampson distance in squared pixels.
    """

    def __post_init__(self) -> None:
        super().__post_init__()
        if self.num_samples < 8:
            raise ValueError("The eight-point algorithm needs num_samples >= 8")


@dataclass
class FundamentalResult:
    """Result of robust fundamental matrix estimation.

    Attributes:
        success: True if a model with enough inliers was found
        F: 3x3 fundamental matrix with x2^T F x1 = 0, None if failed
        inliers: Boolean mask over the input correspondences
        num_inliers: Number of inlier correspondences
        message: Reason for failure, empty on success
    """

    success: bool
    F: np.ndarray | None
    inliers: np.ndarray  # (N,) bool
    num_inliers: int
    message: str = ""


def normalize_points(pts: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Center points on their centroid and scale to mean distance sqrt(2).

    Args:
        pts: Nx2 points

    Returns:
        Tuple of (normalized_pts, T) where T is the 3x3 similarity that
        maps homogeneous pts to normalized_pts
    """
    mean = np.mean(pts, axis=0)
    centered = pts - mean
    mean_dist = np.mean(np.linalg.norm(centered, axis=1))
    scale = np.sqrt(2.0) / mean_dist if mean_dist > 0 else 1.0

    T = np.array(
        [
            [scale, 0.0, -scale * mean[0]],
            [0.0, scale, -scale * mean[1]],
            [0.0, 0.0, 1.0],
        ],
        dtype=np.float64,
    )
    return centered * scale, T


def constrain_F(F: np.ndarray) -> np.ndarray:
    """Enforce the rank-2 constraint by zeroing the smallest singular value."""
    U, S, Vt = np.linalg.svd(F)
    S[2] = 0.0
    return U @ np.diag(S) @ Vt


def estimate_fundamental_matrix(pts1: np.ndarray, pts2: np.ndarray) -> np.ndarray:
    """Estimate F from 8 or more correspondences with the normalized 8-point algorithm.

    Args:
        pts1: Nx2 pixel coordinates in the first image
        pts2: Nx2 pixel coordinates in the second image

    Returns:
        Rank-2 fundamental matrix with unit Frobenius norm

    Raises:
        ValueError: If fewer than 8 correspondences are given
        np.linalg.LinAlgError: If the SVD does not converge
    """
    pts1 = np.asarray(pts1, dtype=np.float64).reshape(-1, 2)
    pts2 = np.asarray(pts2, dtype=np.float64).reshape(-1, 2)
    if len(pts1) < 8 or len(pts1) != len(pts2):
        raise ValueError(
            f"Need at least 8 point correspondences, got {len(pts1)} and {len(pts2)}"
        )

    pts1_norm, T1 = normalize_points(pts1)
    pts2_norm, T2 = normalize_points(pts2)

    x1, y1 = pts1_norm[:, 0], pts1_norm[:, 1]
    x2, y2 = pts2_norm[:, 0], pts2_norm[:, 1]
    ones = np.ones(len(pts1))
    A = np.column_stack([x2 * x1, x2 * y1, x2, y2 * x1, y2 * y1, y2, x1, y1, ones])

    _, _, Vt = np.linalg.svd(A)
    F = constrain_F(Vt[-1].reshape(3, 3))

    # Undo normalization: F = T2^T @ F_norm @ T1
    F = T2.T @ F @ T1
    return F / np.linalg.norm(F)


def sampson_distance(F: np.ndarray, pts1: np.ndarray, pts2: np.ndarray) -> np.ndarray:
    """Return the first-order geometric error of each correspondence (pixels^2)."""
    ones = np.ones((len(pts1), 1))
    x1 = np.hstack([pts1, ones])
    x2 = np.hstack([pts2, ones])

    Fx1 = x1 @ F.T
    Ftx2 = x2 @ F
    numerator = np.sum(x2 * Fx1, axis=1) ** 2
    denominator = Fx1[:, 0] ** 2 + Fx1[:, 1] ** 2 + Ftx2[:, 0] ** 2 + Ftx2[:, 1] ** 2
    with np.errstate(divide="ignore", invalid="ignore"):
        error = numerator / denominator
    return np.where(denominator > 0, error, np.inf)


def estimate_fundamental_matrix_ransac(
    pts1: np.ndarray,
    pts2: np.ndarray,
    options: FundamentalRansacOptions | None = None,
    rng: np.random.Generator | int | None = None,
) -> FundamentalResult:
    """Robustly estimate F with RANSAC over 8-point minimal samples.

    The model with the most inliers is refit on all of its inliers.

    Args:
        pts1: Nx2 pixel coordinates in the first image
        pts2: Nx2 pixel coordinates in the second image
        options: RANSAC parameters
        rng: Random generator or seed for sampling

    Returns:
        FundamentalResult with the best model and its inlier mask
    """
    options = options or FundamentalRansacOptions()
    rng = as_generator(rng)

    pts1 = np.asarray(pts1, dtype=np.float64).reshape(-1, 2)
    pts2 = np.asarray(pts2, dtype=np.float64).reshape(-1, 2)
    n = len(pts1)

    if n < options.num_samples:
        return FundamentalResult(
            success=False,
            F=None,
            inliers=np.zeros(n, dtype=bool),
            num_inliers=0,
            message=f"Too few correspondences: {n} < {options.num_samples}",
        )

    best_F = None
    best_inliers = np.zeros(n, dtype=bool)
    best_count = 0

    for _ in range(options.iterations):
        sample = rng.choice(n, size=options.num_samples, replace=False)
        try:
            F = estimate_fundamental_matrix(pts1[sample], pts2[sample])
        except np.linalg.LinAlgError:
            continue

        inliers = sampson_distance(F, pts1, pts2) < options.acceptable_error
        count = int(np.sum(inliers))
        if count > best_count:
            best_F, best_inliers, best_count = F, inliers, count
            if count == n:
                break

    if best_F is None or best_count < max(options.minimum_num_inliers, 8):
        return FundamentalResult(
            success=False,
            F=None,
            inliers=np.zeros(n, dtype=bool),
            num_inliers=best_count,
            message=(
                f"Too few inliers: {best_count} < "
                f"{max(options.minimum_num_inliers, 8)}"
            ),
        )

    try:
        refit = estimate_fundamental_matrix(pts1[best_inliers], pts2[best_inliers])
        refit_inliers = sampson_distance(refit, pts1, pts2) < options.acceptable_error
        if np.sum(refit_inliers) >= best_count:
            best_F, best_inliers = refit, refit_inliers
            best_count = int(np.sum(refit_inliers))
    except np.linalg.LinAlgError:
        logger.debug("Fundamental matrix refit failed, keeping the RANSAC model")

    return FundamentalResult(
        success=True,
        F=best_F,
        inliers=best_inliers,
        num_inliers=best_count,
    )
