"""SE(3) pose representation for camera extrinsics and relative motion."""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np


@dataclass
class SE3:
    """Rigid body transformation (rotation + translation) in SE(3).

    Camera extrinsics are stored as the world-to-camera transform
    T_camera_world, mapping a world point into the camera frame:

        p_camera = R @ p_world + t

    A relative pose between two cameras uses the same convention, mapping
    points from camera A's frame into camera B's frame.

    Attributes:
        rotation: 3x3 orthonormal rotation matrix (det = +1)
        translation: 3D translation vector
    """

    rotation: np.ndarray  # 3x3 rotation matrix
    translation: np.ndarray  # (3,) translation vector

    def __post_init__(self) -> None:
        """Validate and normalize inputs."""
        self.rotation = np.asarray(self.rotation, dtype=np.float64)
        self.translation = np.asarray(self.translation, dtype=np.float64).flatten()

        if self.rotation.shape != (3, 3):
            raise ValueError(f"Rotation must be 3x3, got {self.rotation.shape}")
        if self.translation.shape != (3,):
            raise ValueError(
                f"Translation must be (3,), got {self.translation.shape}"
            )

    @classmethod
    def identity(cls) -> SE3:
        """Create identity transformation."""
        return cls(rotation=np.eye(3), translation=np.zeros(3))

    @classmethod
    def from_Rt(cls, R: np.ndarray, t: np.ndarray) -> SE3:
        """Create SE3 from rotation matrix and translation vector."""
        return cls(rotation=R, translation=t)

    @classmethod
    def from_matrix(cls, T: np.ndarray) -> SE3:
        """Create SE3 from a 3x4 [R|t] or 4x4 homogeneous matrix.

        Args:
            T: 3x4 or 4x4 transformation matrix

        Returns:
            SE3 transformation
        """
        T = np.asarray(T)
        if T.shape not in ((3, 4), (4, 4)):
            raise ValueError(f"Transform must be 3x4 or 4x4, got {T.shape}")
        return cls(rotation=T[:3, :3], translation=T[:3, 3])

    @classmethod
    def from_rvec_tvec(cls, rvec: np.ndarray, tvec: np.ndarray) -> SE3:
        """Create SE3 from an OpenCV Rodrigues vector and translation.

        cv2.solvePnP returns exactly this world-to-camera parameterization,
        so no inversion is needed.
        """
        R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).reshape(3, 1))
        return cls(rotation=R, translation=np.asarray(tvec).flatten())

    @classmethod
    def from_euler(cls, angles: np.ndarray, translation: np.ndarray) -> SE3:
        """Create SE3 from XYZ Euler angles (radians) and a translation.

        The rotation is R = Rz @ Ry @ Rx.
        """
        ax, ay, az = np.asarray(angles, dtype=np.float64).flatten()
        cx, sx = np.cos(ax), np.sin(ax)
        cy, sy = np.cos(ay), np.sin(ay)
        cz, sz = np.cos(az), np.sin(az)
        Rx = np.array([[1, 0, 0], [0, cx, -sx], [0, sx, cx]])
        Ry = np.array([[cy, 0, sy], [0, 1, 0], [-sy, 0, cy]])
        Rz = np.array([[cz, -sz, 0], [sz, cz, 0], [0, 0, 1]])
        return cls(rotation=Rz @ Ry @ Rx, translation=translation)

    @classmethod
    def look_at(
        cls,
        center: np.ndarray,
        target: np.ndarray,
        up: np.ndarray | None = None,
    ) -> SE3:
        """Create the world-to-camera pose of a camera at `center` looking at `target`.

        Uses the camera convention X-right, Y-down, Z-forward.
        """
        center = np.asarray(center, dtype=np.float64).flatten()
        target = np.asarray(target, dtype=np.float64).flatten()
        up = np.array([0.0, 0.0, 1.0]) if up is None else np.asarray(up, dtype=np.float64)

        forward = target - center
        forward /= np.linalg.norm(forward)
        right = np.cross(forward, up)
        if np.linalg.norm(right) < 1e-9:
            raise ValueError("Up vector is parallel to the viewing direction")
        right /= np.linalg.norm(right)
        down = np.cross(forward, right)

        R = np.vstack([right, down, forward])
        return cls(rotation=R, translation=-R @ center)

    def to_matrix(self) -> np.ndarray:
        """Convert to 4x4 homogeneous transformation matrix."""
        T = np.eye(4, dtype=np.float64)
        T[:3, :3] = self.rotation
        T[:3, 3] = self.translation
        return T

    def to_Rt(self) -> np.ndarray:
        """Return the 3x4 [R|t] matrix."""
        return np.hstack([self.rotation, self.translation.reshape(3, 1)])

    def to_rvec_tvec(self) -> tuple[np.ndarray, np.ndarray]:
        """Convert to OpenCV Rodrigues vector and translation."""
        rvec, _ = cv2.Rodrigues(self.rotation)
        return rvec.flatten(), self.translation.copy()

    def inverse(self) -> SE3:
        """Compute the inverse transformation [R^T, -R^T @ t]."""
        R_inv = self.rotation.T
        t_inv = -R_inv @ self.translation
        return SE3(rotation=R_inv, translation=t_inv)

    def compose(self, other: SE3) -> SE3:
        """Compose with another transformation: self @ other.

        If other maps frame A to frame B and self maps B to C, the result
        maps A to C. For example, the pose of camera 2 is

            T_cam2_world = T_cam2_cam1.compose(T_cam1_world)
        """
        R = self.rotation @ other.rotation
        t = self.rotation @ other.translation + self.translation
        return SE3(rotation=R, translation=t)

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Apply the transformation to Nx3 points."""
        points = np.asarray(points, dtype=np.float64)
        if points.ndim == 1:
            points = points.reshape(1, 3)

        if points.shape[1] != 3:
            raise ValueError(f"Points must be Nx3, got {points.shape}")

        return (self.rotation @ points.T).T + self.translation

    def transform_point(self, point: np.ndarray) -> np.ndarray:
        """Apply the transformation to a single 3D point."""
        point = np.asarray(point, dtype=np.float64).flatten()
        return self.rotation @ point + self.translation

    @property
    def camera_center(self) -> np.ndarray:
        """Return the optical center in world frame, c = -R^T @ t."""
        return -self.rotation.T @ self.translation

    def is_finite(self) -> bool:
        """Return True if all entries are finite."""
        return bool(
            np.isfinite(self.rotation).all() and np.isfinite(self.translation).all()
        )

    def is_close(self, other: SE3, atol: float = 1e-6) -> bool:
        """Return True if both rotation and translation agree within atol."""
        return bool(
            np.allclose(self.rotation, other.rotation, atol=atol)
            and np.allclose(self.translation, other.translation, atol=atol)
        )

    def __repr__(self) -> str:
        """Return string representation."""
        c = self.camera_center
        return f"SE3(center=[{c[0]:.3f}, {c[1]:.3f}, {c[2]:.3f}])"

    def __matmul__(self, other: SE3) -> SE3:
        """Matrix multiplication operator for composition."""
        return self.compose(other)
