"""Descriptor distance metrics shared by matching and landmark incorporation."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np

# Number of set bits for every byte value.
_POPCOUNT_TABLE = np.array([bin(i).count("1") for i in range(256)], dtype=np.uint8)


class MetricKind(Enum):
    """Supported descriptor comparison schemes."""

    HAMMING = "HAMMING"  # bit distance of packed binary descriptors
    SCALED_L2 = "SCALED_L2"  # 0.5 * squared L2 distance of unit vectors


@dataclass
class DistanceMetric:
    """Descriptor distance with an optional hard cutoff.

    SCALED_L2 expects unit-norm descriptors and computes
    0.5 * ||a - b||^2, which equals 1 - a.b for unit vectors and lies in
    [0, 2]. HAMMING counts differing bits of uint8 packed descriptors.

    Attributes:
        kind: Which metric to apply
        max_distance: Cutoff above which descriptors never match.
            Infinity means no cutoff.
    """

    kind: MetricKind = MetricKind.SCALED_L2
    max_distance: float = float("inf")

    def __post_init__(self) -> None:
        if isinstance(self.kind, str):
            self.kind = MetricKind(self.kind.upper())
        if self.max_distance is None:
            self.max_distance = float("inf")
        if self.max_distance < 0:
            raise ValueError(f"max_distance must be non-negative, got {self.max_distance}")

    @property
    def has_cutoff(self) -> bool:
        """Return True if a finite maximum distance is configured."""
        return np.isfinite(self.max_distance)

    @property
    def requires_normalization(self) -> bool:
        return self.kind == MetricKind.SCALED_L2

    def with_max_distance(self, max_distance: float | None) -> DistanceMetric:
        """Return a copy with a different cutoff (None keeps the current one)."""
        if max_distance is None:
            return DistanceMetric(kind=self.kind, max_distance=self.max_distance)
        return DistanceMetric(kind=self.kind, max_distance=max_distance)

    def maybe_normalize(self, descriptors: np.ndarray) -> np.ndarray:
        """Scale float descriptors to unit L2 norm in place if the metric needs it.

        Safe to call repeatedly. All-zero rows are left unchanged.

        Args:
            descriptors: NxD (or D,) descriptor array

        Returns:
            The same array, for chaining
        """
        if not self.requires_normalization or descriptors.size == 0:
            return descriptors
        if not np.issubdtype(descriptors.dtype, np.floating):
            raise ValueError(
                f"{self.kind.value} requires float descriptors, got {descriptors.dtype}"
            )

        view = descriptors.reshape(-1, descriptors.shape[-1])
        norms = np.linalg.norm(view, axis=1, keepdims=True)
        norms[norms == 0.0] = 1.0
        view /= norms
        return descriptors

    def _check_pair(self, a: np.ndarray, b: np.ndarray) -> None:
        if a.shape[-1] != b.shape[-1]:
            raise ValueError(
                f"Descriptor lengths differ: {a.shape[-1]} vs {b.shape[-1]}"
            )
        if self.kind == MetricKind.HAMMING and (a.dtype != np.uint8 or b.dtype != np.uint8):
            raise ValueError("HAMMING distance requires uint8 packed descriptors")

    def __call__(self, a: np.ndarray, b: np.ndarray) -> float:
        """Return the distance between two descriptors."""
        a = np.asarray(a).flatten()
        b = np.asarray(b).flatten()
        return float(self.pairwise(a.reshape(1, -1), b.reshape(1, -1))[0, 0])

    def pairwise(self, descriptors_a: np.ndarray, descriptors_b: np.ndarray) -> np.ndarray:
        """Return the full n x m distance matrix between two descriptor sets."""
        A = np.asarray(descriptors_a)
        B = np.asarray(descriptors_b)
        if len(A) == 0 or len(B) == 0:
            return np.empty((len(A), len(B)), dtype=np.float64)
        self._check_pair(A, B)

        if self.kind == MetricKind.HAMMING:
            xor = np.bitwise_xor(A[:, None, :], B[None, :, :])
            return _POPCOUNT_TABLE[xor].sum(axis=2, dtype=np.int64).astype(np.float64)

        A = A.astype(np.float64, copy=False)
        B = B.astype(np.float64, copy=False)
        sq_a = np.sum(A * A, axis=1)[:, None]
        sq_b = np.sum(B * B, axis=1)[None, :]
        sq = sq_a + sq_b - 2.0 * (A @ B.T)
        return 0.5 * np.maximum(sq, 0.0)
