"""Observation: one detected feature of a view, optionally resolved to a landmark."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass
class Observation:
    """A single 2D detection in a view.

    Observations are created once, already attached to their view, and are
    never deleted individually. The landmark link is set at most once, the
    first time the observation is incorporated into a landmark.

    Attributes:
        index: Session-assigned handle
        view_index: Handle of the view that produced this detection
        pixel: 2D pixel coordinates (u, v)
        descriptor: Feature descriptor
        landmark_index: Landmark this observation supports, None until incorporated
        matched_landmark: Putative landmark from 2D-3D matching, set before
            incorporation is attempted
    """

    index: int
    view_index: int
    pixel: np.ndarray  # (2,) float64
    descriptor: np.ndarray
    landmark_index: int | None = None
    matched_landmark: int | None = None

    def __post_init__(self) -> None:
        self.pixel = np.asarray(self.pixel, dtype=np.float64).flatten()
        self.descriptor = np.asarray(self.descriptor).flatten()

    @property
    def incorporated(self) -> bool:
        """Return True once this observation supports a landmark."""
        return self.landmark_index is not None

    def set_incorporated_landmark(self, landmark_index: int) -> None:
        """Record the landmark this observation was incorporated into.

        Raises:
            ValueError: If already incorporated into a different landmark
        """
        if self.landmark_index is not None and self.landmark_index != landmark_index:
            raise ValueError(
                f"Observation {self.index} already belongs to landmark "
                f"{self.landmark_index}, cannot move it to {landmark_index}"
            )
        self.landmark_index = landmark_index
