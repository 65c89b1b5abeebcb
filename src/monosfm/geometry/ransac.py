"""Shared RANSAC configuration."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass
class RansacOptions:
    """RANSAC loop parameters.

    Attributes:
        iterations: Number of minimal samples to draw
        acceptable_error: Inlier threshold on the model's error
        minimum_num_inliers: Reject the best model if it has fewer inliers
        num_samples: Correspondences per minimal sample
    """

    iterations: int = 50
    acceptable_error: float = 1e-1
    minimum_num_inliers: int = 8
    num_samples: int = 8

    def __post_init__(self) -> None:
        if self.iterations <= 0:
            raise ValueError("iterations must be positive")
        if self.acceptable_error <= 0:
            raise ValueError("acceptable_error must be positive")
        if self.minimum_num_inliers < 0:
            raise ValueError("minimum_num_inliers must be non-negative")
        if self.num_samples <= 0:
            raise ValueError("num_samples must be positive")


def as_generator(rng: np.random.Generator | int | None) -> np.random.Generator:
    """Return a numpy Generator from a seed, a Generator, or None."""
    if isinstance(rng, np.random.Generator):
        return rng
    return np.random.default_rng(rng)
