"""Pinhole camera model: intrinsics, distortion, projection and back-projection."""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

import cv2
import numpy as np
import yaml

from .pose import SE3


@dataclass
class CameraIntrinsics:
    """Camera intrinsic parameters (pinhole model) and image bounds."""

    fx: float  # Focal length x (pixels)
    fy: float  # Focal length y (pixels)
    cx: float  # Principal point x (pixels)
    cy: float  # Principal point y (pixels)
    width: int = 0  # Image width (pixels), 0 = unbounded
    height: int = 0  # Image height (pixels), 0 = unbounded
    left: int = 0
    top: int = 0

    def __post_init__(self) -> None:
        if self.fx <= 0 or self.fy <= 0:
            raise ValueError(f"Focal lengths must be positive, got ({self.fx}, {self.fy})")

    @classmethod
    def from_vertical_fov(
        cls, width: int, height: int, vertical_fov: float
    ) -> CameraIntrinsics:
        """Create square-pixel intrinsics centered on the image.

        Args:
            width: Image width in pixels
            height: Image height in pixels
            vertical_fov: Vertical field of view in radians

        Returns:
            CameraIntrinsics with fx = fy
        """
        f = 0.5 * height / np.tan(0.5 * vertical_fov)
        return cls(
            fx=f, fy=f, cx=0.5 * width, cy=0.5 * height, width=width, height=height
        )

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> CameraIntrinsics:
        """Parse a sensor.yaml style calibration file.

        Expected keys are `intrinsics: [fu, fv, cu, cv]` and optionally
        `resolution: [width, height]`.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the intrinsics entry is malformed
        """
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Calibration file not found: {yaml_path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        intrinsics_list = data.get("intrinsics")
        if intrinsics_list is None or len(intrinsics_list) != 4:
            raise ValueError(f"Invalid intrinsics in {yaml_path}")

        width, height = data.get("resolution", (0, 0))
        return cls(
            fx=float(intrinsics_list[0]),
            fy=float(intrinsics_list[1]),
            cx=float(intrinsics_list[2]),
            cy=float(intrinsics_list[3]),
            width=int(width),
            height=int(height),
        )

    def to_matrix(self) -> np.ndarray:
        """Return 3x3 camera intrinsic matrix K."""
        return np.array(
            [[self.fx, 0.0, self.cx], [0.0, self.fy, self.cy], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    def in_bounds(self, pixels: np.ndarray) -> np.ndarray:
        """Return a boolean mask of pixels inside the image rectangle."""
        pixels = np.asarray(pixels, dtype=np.float64).reshape(-1, 2)
        mask = np.ones(len(pixels), dtype=bool)
        if self.width > 0:
            mask &= (pixels[:, 0] >= self.left) & (pixels[:, 0] < self.left + self.width)
        if self.height > 0:
            mask &= (pixels[:, 1] >= self.top) & (pixels[:, 1] < self.top + self.height)
        return mask


@dataclass
class DistortionCoeffs:
    """Radial-tangential distortion coefficients (OpenCV order)."""

    k1: float = 0.0
    k2: float = 0.0
    p1: float = 0.0
    p2: float = 0.0
    k3: float = 0.0

    @classmethod
    def from_yaml(cls, yaml_path: str | Path) -> DistortionCoeffs:
        """Read `distortion_coefficients` from a sensor.yaml file, zeros if absent."""
        with open(yaml_path, "r") as f:
            data = yaml.safe_load(f) or {}
        coeffs = list(data.get("distortion_coefficients") or [])
        if len(coeffs) > 5:
            raise ValueError(f"Invalid distortion coefficients in {yaml_path}")
        return cls(*[float(c) for c in coeffs])

    def to_array(self) -> np.ndarray:
        """Return distortion coefficients as (5,) array for OpenCV."""
        return np.array([self.k1, self.k2, self.p1, self.p2, self.k3], dtype=np.float64)

    @property
    def is_zero(self) -> bool:
        return not np.any(self.to_array())


@dataclass
class Camera:
    """A calibrated camera placed in the world.

    Attributes:
        intrinsics: Pinhole intrinsics and image bounds
        extrinsics: World-to-camera pose T_camera_world
        distortion: Lens distortion coefficients
    """

    intrinsics: CameraIntrinsics
    extrinsics: SE3 = field(default_factory=SE3.identity)
    distortion: DistortionCoeffs = field(default_factory=DistortionCoeffs)

    def with_extrinsics(self, extrinsics: SE3) -> Camera:
        """Return a copy of this camera placed at a different pose."""
        return Camera(
            intrinsics=self.intrinsics, extrinsics=extrinsics, distortion=self.distortion
        )

    @property
    def K(self) -> np.ndarray:
        return self.intrinsics.to_matrix()

    @property
    def center(self) -> np.ndarray:
        """Optical center in world frame."""
        return self.extrinsics.camera_center

    @property
    def projection_matrix(self) -> np.ndarray:
        """Return the 3x4 projection matrix P = K [R|t]."""
        return self.K @ self.extrinsics.to_Rt()

    def depths(self, points_world: np.ndarray) -> np.ndarray:
        """Return the z coordinate of each point in the camera frame."""
        return self.extrinsics.transform_points(points_world)[:, 2]

    def in_front(self, points_world: np.ndarray) -> np.ndarray:
        """Vectorized cheirality test: True where depth is positive."""
        return self.depths(points_world) > 0.0

    def is_in_front(self, point_world: np.ndarray) -> bool:
        """Return True if the point lies in front of the camera."""
        return bool(self.in_front(np.asarray(point_world).reshape(1, 3))[0])

    def project(self, points_world: np.ndarray) -> np.ndarray:
        """Project Nx3 world points to Nx2 pixel coordinates.

        No visibility check is performed; see `world_to_image`.
        """
        points_world = np.asarray(points_world, dtype=np.float64).reshape(-1, 3)
        if len(points_world) == 0:
            return np.empty((0, 2), dtype=np.float64)

        if not self.distortion.is_zero:
            rvec, tvec = self.extrinsics.to_rvec_tvec()
            projected, _ = cv2.projectPoints(
                points_world.reshape(-1, 1, 3),
                rvec,
                tvec,
                self.K,
                self.distortion.to_array(),
            )
            return projected.reshape(-1, 2)

        p_cam = self.extrinsics.transform_points(points_world)
        u = self.intrinsics.fx * p_cam[:, 0] / p_cam[:, 2] + self.intrinsics.cx
        v = self.intrinsics.fy * p_cam[:, 1] / p_cam[:, 2] + self.intrinsics.cy
        return np.column_stack([u, v])

    def world_to_image(self, point_world: np.ndarray) -> np.ndarray | None:
        """Project a single world point, or None if it is not visible.

        A point is visible when it is in front of the camera and projects
        inside the image bounds.
        """
        point_world = np.asarray(point_world, dtype=np.float64).reshape(1, 3)
        if not self.in_front(point_world)[0]:
            return None
        pixel = self.project(point_world)
        if not self.intrinsics.in_bounds(pixel)[0]:
            return None
        return pixel[0]

    def visible(self, points_world: np.ndarray) -> np.ndarray:
        """Vectorized visibility mask for Nx3 world points."""
        points_world = np.asarray(points_world, dtype=np.float64).reshape(-1, 3)
        mask = self.in_front(points_world)
        if mask.any():
            mask[mask] = self.intrinsics.in_bounds(self.project(points_world[mask]))
        return mask

    def pixels_to_rays(self, pixels: np.ndarray) -> np.ndarray:
        """Back-project Nx2 pixels to normalized image coordinates (x, y).

        The bearing in the camera frame is (x, y, 1). Lens distortion is
        removed when coefficients are non-zero.
        """
        pixels = np.asarray(pixels, dtype=np.float64).reshape(-1, 2)
        if len(pixels) == 0:
            return np.empty((0, 2), dtype=np.float64)

        if not self.distortion.is_zero:
            undistorted = cv2.undistortPoints(
                pixels.reshape(-1, 1, 2), self.K, self.distortion.to_array()
            )
            return undistorted.reshape(-1, 2)

        x = (pixels[:, 0] - self.intrinsics.cx) / self.intrinsics.fx
        y = (pixels[:, 1] - self.intrinsics.cy) / self.intrinsics.fy
        return np.column_stack([x, y])

    def pixel_to_direction(self, pixel: np.ndarray) -> np.ndarray:
        """Return the unit viewing direction of a pixel in world frame."""
        xy = self.pixels_to_rays(pixel)[0]
        ray_cam = np.array([xy[0], xy[1], 1.0])
        ray_world = self.extrinsics.rotation.T @ ray_cam
        return ray_world / np.linalg.norm(ray_world)
