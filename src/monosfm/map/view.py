"""View: one processed frame with its camera and observations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from ..frontend.camera import Camera
from ..frontend.pose import SE3

if TYPE_CHECKING:
    from .session import Session


@dataclass
class View:
    """A localized frame.

    Attributes:
        index: Session-assigned handle, monotonically increasing
        camera: Camera with intrinsics and world-to-camera extrinsics
        observation_indices: Ordered handles of this view's observations
    """

    index: int
    camera: Camera
    observation_indices: list[int] = field(default_factory=list)

    @property
    def pose(self) -> SE3:
        """World-to-camera pose of this view."""
        return self.camera.extrinsics

    def set_pose(self, pose: SE3) -> None:
        self.camera = self.camera.with_extrinsics(pose)

    @property
    def num_observations(self) -> int:
        return len(self.observation_indices)

    def add_observation(self, observation_index: int) -> None:
        self.observation_indices.append(observation_index)

    def observed_landmarks(self, session: Session) -> list[int]:
        """Return the landmark handles of this view's incorporated observations."""
        landmarks = []
        for obs_idx in self.observation_indices:
            obs = session.get_observation(obs_idx)
            if obs.landmark_index is not None:
                landmarks.append(obs.landmark_index)
        return landmarks

    def has_observed_landmark(self, session: Session, landmark_index: int) -> bool:
        return landmark_index in self.observed_landmarks(session)

    def unincorporated_observations(self, session: Session) -> list[int]:
        """Return handles of observations not yet tied to any landmark."""
        return [
            obs_idx
            for obs_idx in self.observation_indices
            if not session.get_observation(obs_idx).incorporated
        ]
