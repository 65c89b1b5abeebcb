"""Shared fixtures: noiseless synthetic scenes."""

from dataclasses import dataclass

import numpy as np
import pytest

from monosfm.frontend.camera import Camera, CameraIntrinsics
from monosfm.frontend.features import Features
from monosfm.frontend.pose import SE3


@dataclass
class SyntheticScene:
    """Random points observed by cameras on an arc around the origin."""

    intrinsics: CameraIntrinsics
    points: np.ndarray  # (N, 3) world points
    descriptors: np.ndarray  # (N, D) unit float descriptors, one per point
    poses: list[SE3]  # world-to-camera poses

    def camera(self, k: int) -> Camera:
        return Camera(intrinsics=self.intrinsics, extrinsics=self.poses[k])

    def visible(self, k: int) -> np.ndarray:
        """Indices of the points visible in camera k."""
        return np.flatnonzero(self.camera(k).visible(self.points))

    def frame(self, k: int, seed: int | None = None) -> tuple[Features, np.ndarray]:
        """Features of camera k and the point index of each feature.

        Features are shuffled so their order carries no information.
        """
        idx = self.visible(k)
        if seed is not None:
            idx = np.random.default_rng(seed).permutation(idx)
        pixels = self.camera(k).project(self.points[idx])
        return Features(points=pixels, descriptors=self.descriptors[idx].copy()), idx

    def relative_pose(self, a: int, b: int) -> SE3:
        """Pose mapping camera-a coordinates into camera-b coordinates."""
        return self.poses[b] @ self.poses[a].inverse()

    def in_reconstruction_frame(self, points: np.ndarray) -> np.ndarray:
        """Express world points in camera 0's frame, scaled by the 0-1 baseline."""
        scale = 1.0 / np.linalg.norm(self.relative_pose(0, 1).translation)
        return scale * self.poses[0].transform_points(points)


def make_scene(
    num_points: int = 100,
    num_cameras: int = 20,
    radius: float = 8.0,
    step_deg: float = 10.0,
    descriptor_dim: int = 64,
    seed: int = 42,
) -> SyntheticScene:
    rng = np.random.default_rng(seed)
    intrinsics = CameraIntrinsics.from_vertical_fov(1920, 1080, np.deg2rad(90.0))

    points = rng.uniform(-2.0, 2.0, size=(num_points, 3))
    descriptors = rng.normal(size=(num_points, descriptor_dim))
    descriptors /= np.linalg.norm(descriptors, axis=1, keepdims=True)

    poses = []
    for k in range(num_cameras):
        theta = np.deg2rad(step_deg * k)
        center = np.array([radius * np.cos(theta), radius * np.sin(theta), 1.0 + 0.1 * k])
        poses.append(SE3.look_at(center, np.zeros(3)))

    return SyntheticScene(intrinsics, points, descriptors, poses)


@pytest.fixture
def intrinsics() -> CameraIntrinsics:
    return CameraIntrinsics.from_vertical_fov(1920, 1080, np.deg2rad(90.0))


@pytest.fixture
def scene() -> SyntheticScene:
    return make_scene()


@pytest.fixture
def small_scene() -> SyntheticScene:
    return make_scene(num_points=40, num_cameras=4, seed=7)
