"""Tests for camera intrinsics, distortion and projection."""

from pathlib import Path

import numpy as np
import pytest

from monosfm.frontend.camera import Camera, CameraIntrinsics, DistortionCoeffs
from monosfm.frontend.pose import SE3


@pytest.fixture
def sensor_yaml(tmp_path: Path) -> Path:
    """Write a sensor.yaml style calibration file."""
    path = tmp_path / "sensor.yaml"
    path.write_text(
        "intrinsics: [458.654, 457.296, 367.215, 248.375]\n"
        "resolution: [752, 480]\n"
        "distortion_coefficients: [-0.28340811, 0.07395907, 0.00019359, 1.76187114e-05]\n"
    )
    return path


class TestCameraIntrinsics:
    """Test suite for CameraIntrinsics."""

    def test_from_vertical_fov(self):
        intr = CameraIntrinsics.from_vertical_fov(1920, 1080, np.deg2rad(90.0))

        assert intr.fx == pytest.approx(540.0)
        assert intr.fy == pytest.approx(540.0)
        assert (intr.cx, intr.cy) == (960.0, 540.0)
        assert (intr.width, intr.height) == (1920, 1080)

    def test_to_matrix(self):
        K = CameraIntrinsics(fx=500.0, fy=400.0, cx=320.0, cy=240.0).to_matrix()

        np.testing.assert_allclose(
            K, [[500.0, 0.0, 320.0], [0.0, 400.0, 240.0], [0.0, 0.0, 1.0]]
        )

    def test_rejects_non_positive_focal_length(self):
        with pytest.raises(ValueError, match="Focal lengths"):
            CameraIntrinsics(fx=0.0, fy=500.0, cx=0.0, cy=0.0)

    def test_from_yaml(self, sensor_yaml: Path):
        intr = CameraIntrinsics.from_yaml(sensor_yaml)

        assert intr.fx == pytest.approx(458.654)
        assert intr.cy == pytest.approx(248.375)
        assert (intr.width, intr.height) == (752, 480)

    def test_from_yaml_missing_file(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError, match="Calibration file not found"):
            CameraIntrinsics.from_yaml(tmp_path / "missing.yaml")

    def test_from_yaml_malformed(self, tmp_path: Path):
        path = tmp_path / "bad.yaml"
        path.write_text("intrinsics: [1.0, 2.0]\n")

        with pytest.raises(ValueError, match="Invalid intrinsics"):
            CameraIntrinsics.from_yaml(path)

    def test_distortion_from_yaml(self, sensor_yaml: Path):
        dist = DistortionCoeffs.from_yaml(sensor_yaml)

        assert dist.k1 == pytest.approx(-0.28340811)
        assert dist.k3 == 0.0
        assert not dist.is_zero


class TestCamera:
    """Test suite for Camera projection and back-projection."""

    @pytest.fixture
    def camera(self, intrinsics: CameraIntrinsics) -> Camera:
        pose = SE3.look_at(np.array([6.0, 2.0, 1.0]), np.zeros(3))
        return Camera(intrinsics=intrinsics, extrinsics=pose)

    def test_project_then_back_project(self, camera: Camera):
        rng = np.random.default_rng(0)
        points = rng.uniform(-1.0, 1.0, size=(20, 3))

        pixels = camera.project(points)
        directions = np.array([camera.pixel_to_direction(px) for px in pixels])
        expected = points - camera.center
        expected /= np.linalg.norm(expected, axis=1, keepdims=True)

        np.testing.assert_allclose(directions, expected, atol=1e-10)

    def test_world_to_image_behind_camera(self, camera: Camera):
        behind = camera.center + (camera.center - np.zeros(3))

        assert not camera.is_in_front(behind)
        assert camera.world_to_image(behind) is None

    def test_world_to_image_out_of_bounds(self, camera: Camera):
        direction = camera.extrinsics.rotation.T @ np.array([5.0, 0.0, 1.0])
        outside = camera.center + direction

        assert camera.is_in_front(outside)
        assert camera.world_to_image(outside) is None

    def test_world_to_image_visible(self, camera: Camera):
        pixel = camera.world_to_image(np.zeros(3))

        np.testing.assert_allclose(
            pixel, [camera.intrinsics.cx, camera.intrinsics.cy], atol=1e-9
        )

    def test_projection_matrix_agrees_with_project(self, camera: Camera):
        point = np.array([0.3, -0.2, 0.5])
        homogeneous = camera.projection_matrix @ np.append(point, 1.0)

        np.testing.assert_allclose(
            homogeneous[:2] / homogeneous[2], camera.project(point)[0], atol=1e-9
        )

    def test_distorted_round_trip(self, camera: Camera):
        distorted = Camera(
            intrinsics=camera.intrinsics,
            extrinsics=camera.extrinsics,
            distortion=DistortionCoeffs(k1=-0.05, k2=0.01),
        )
        points = np.array([[0.2, 0.1, -0.3], [-0.5, 0.4, 0.2], [0.0, 0.0, 0.0]])

        pixels = distorted.project(points)
        rays = distorted.pixels_to_rays(pixels)
        p_cam = distorted.extrinsics.transform_points(points)

        np.testing.assert_allclose(rays, p_cam[:, :2] / p_cam[:, 2:3], atol=1e-6)
