"""Per-frame feature containers supplied by an external detector."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

import numpy as np


@dataclass
class Feature:
    """A single 2D image feature.

    Attributes:
        u: Horizontal pixel coordinate
        v: Vertical pixel coordinate
        scale: Detection scale, if the detector provides one
        orientation: Keypoint orientation in radians, if available
    """

    u: float
    v: float
    scale: float | None = None
    orientation: float | None = None


@dataclass
class Features:
    """Container for the features and descriptors of one frame.

    Attributes:
        points: Nx2 array of (u, v) pixel coordinates
        descriptors: NxD descriptor array (uint8 packed bits or float)
        scales: Optional (N,) detection scales
        orientations: Optional (N,) keypoint orientations
    """

    points: np.ndarray
    descriptors: np.ndarray
    scales: np.ndarray | None = None
    orientations: np.ndarray | None = None

    def __post_init__(self) -> None:
        self.points = np.asarray(self.points, dtype=np.float64).reshape(-1, 2)
        self.descriptors = np.asarray(self.descriptors)
        if self.descriptors.ndim == 1:
            if self.descriptors.size == 0:
                self.descriptors = self.descriptors.reshape(0, 0)
            else:
                self.descriptors = self.descriptors.reshape(len(self.points), -1)
        if len(self.descriptors) != len(self.points):
            raise ValueError(
                f"Got {len(self.points)} points but {len(self.descriptors)} descriptors"
            )

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[Feature, np.ndarray]]) -> Features:
        """Build from an ordered list of (Feature, descriptor) pairs."""
        pairs = list(pairs)
        if len(pairs) == 0:
            return cls.empty()

        points = np.array([[f.u, f.v] for f, _ in pairs], dtype=np.float64)
        descriptors = np.array([np.asarray(d).flatten() for _, d in pairs])

        scales = None
        if all(f.scale is not None for f, _ in pairs):
            scales = np.array([f.scale for f, _ in pairs], dtype=np.float64)
        orientations = None
        if all(f.orientation is not None for f, _ in pairs):
            orientations = np.array([f.orientation for f, _ in pairs], dtype=np.float64)

        return cls(
            points=points,
            descriptors=descriptors,
            scales=scales,
            orientations=orientations,
        )

    @classmethod
    def empty(cls, descriptor_length: int = 0, dtype=np.float64) -> Features:
        return cls(
            points=np.empty((0, 2), dtype=np.float64),
            descriptors=np.empty((0, descriptor_length), dtype=dtype),
        )

    def __len__(self) -> int:
        """Return number of features."""
        return len(self.points)
