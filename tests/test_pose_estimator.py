"""Tests for 2D-3D pose estimation."""

import numpy as np
import pytest

from monosfm.frontend.camera import Camera
from monosfm.frontend.pose import SE3
from monosfm.geometry.pose_estimator import (
    PnPRansacOptions,
    PoseEstimator2D3D,
    solve_linear_pose,
)


@pytest.fixture
def pnp_problem(intrinsics):
    """Noiseless 2D-3D correspondences for a known camera."""
    rng = np.random.default_rng(4)
    points = rng.uniform(-2.0, 2.0, size=(60, 3))
    pose = SE3.look_at(np.array([7.0, -3.0, 2.0]), np.array([0.2, 0.1, 0.0]))
    pixels = Camera(intrinsics=intrinsics, extrinsics=pose).project(points)
    return points, pixels, pose


class TestLinearPose:
    """Test suite for the minimal linear solver."""

    def test_exact_on_six_points(self, pnp_problem, intrinsics):
        points, pixels, pose = pnp_problem
        rays = Camera(intrinsics=intrinsics).pixels_to_rays(pixels[:6])

        estimate = solve_linear_pose(rays, points[:6])

        assert estimate is not None
        assert estimate.is_close(pose, atol=1e-8)

    def test_too_few_points(self, pnp_problem):
        points, pixels, _ = pnp_problem
        assert solve_linear_pose(pixels[:5], points[:5]) is None


class TestPoseEstimator2D3D:
    """Test suite for PoseEstimator2D3D."""

    def test_noiseless_recovery(self, pnp_problem, intrinsics):
        points, pixels, pose = pnp_problem
        estimator = PoseEstimator2D3D(rng=0)

        result = estimator.estimate_pose(pixels, points, intrinsics)

        assert result.success
        assert result.num_inliers == len(points)
        assert result.reprojection_error < 1e-6
        np.testing.assert_allclose(result.pose.rotation, pose.rotation, atol=1e-6)
        np.testing.assert_allclose(result.pose.camera_center, pose.camera_center, atol=1e-6)

    def test_rejects_outliers(self, pnp_problem, intrinsics):
        points, pixels, pose = pnp_problem
        pixels = pixels.copy()
        pixels[:10] += np.random.default_rng(1).uniform(30.0, 60.0, size=(10, 2))

        result = PoseEstimator2D3D(PnPRansacOptions(iterations=200), rng=0).estimate_pose(
            pixels, points, intrinsics
        )

        assert result.success
        assert not result.inliers[:10].any()
        assert result.inliers[10:].all()
        np.testing.assert_allclose(result.pose.camera_center, pose.camera_center, atol=1e-6)

    def test_too_few_correspondences(self, pnp_problem, intrinsics):
        points, pixels, _ = pnp_problem
        result = PoseEstimator2D3D(rng=0).estimate_pose(pixels[:4], points[:4], intrinsics)

        assert not result.success
        assert result.pose is None
        assert "Too few correspondences" in result.message

    def test_random_correspondences_fail(self, pnp_problem, intrinsics):
        points, _, _ = pnp_problem
        rng = np.random.default_rng(2)
        pixels = rng.uniform([0.0, 0.0], [1920.0, 1080.0], size=(len(points), 2))

        result = PoseEstimator2D3D(rng=0).estimate_pose(pixels, points, intrinsics)

        assert not result.success
        assert result.num_inliers < 5

    def test_mismatched_lengths(self, pnp_problem, intrinsics):
        points, pixels, _ = pnp_problem
        with pytest.raises(ValueError, match="2D points"):
            PoseEstimator2D3D().estimate_pose(pixels[:10], points[:9], intrinsics)

    def test_options_validation(self):
        with pytest.raises(ValueError, match="num_samples >= 6"):
            PnPRansacOptions(num_samples=5)
