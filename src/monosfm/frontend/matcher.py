"""Nearest-descriptor matching for 2D-2D and 2D-3D correspondences."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterator, Sequence

import numpy as np

from .distance_metric import DistanceMetric
from .features import Features

if TYPE_CHECKING:
    from ..map.session import Session


@dataclass
class FeatureMatcherOptions:
    """Options for nearest-descriptor matching.

    Attributes:
        use_ratio_test: Apply Lowe's ratio test to each one-way match
        ratio_threshold: Accept a match only if
            best_distance < ratio_threshold^2 * second_best_distance
        require_symmetric: Keep only mutual nearest neighbors
        min_matches: Fail if fewer matches survive
        keep_best_k: Truncate to the k lowest-distance matches (None = keep all)
        max_descriptor_distance: Cutoff overriding the metric's own
            (None = use the metric's cutoff)
    """

    use_ratio_test: bool = True
    ratio_threshold: float = 0.85
    require_symmetric: bool = True
    min_matches: int = 8
    keep_best_k: int | None = None
    max_descriptor_distance: float | None = None

    def __post_init__(self) -> None:
        if not 0.0 < self.ratio_threshold <= 1.0:
            raise ValueError("ratio_threshold must be in (0, 1]")
        if self.min_matches < 0:
            raise ValueError("min_matches must be non-negative")
        if self.keep_best_k is not None and self.keep_best_k <= 0:
            raise ValueError("keep_best_k must be positive or None")
        if self.max_descriptor_distance is not None and self.max_descriptor_distance < 0:
            raise ValueError("max_descriptor_distance must be non-negative or None")


@dataclass
class DescriptorMatches:
    """Result of matching descriptor set A against descriptor set B.

    Attributes:
        success: False if fewer than `min_matches` survived filtering
        index_a: Indices into set A
        index_b: Indices into set B (landmark indices for 2D-3D matching)
        distances: Descriptor distance of each match
        message: Reason for failure, empty on success
    """

    success: bool
    index_a: np.ndarray  # (N,) int
    index_b: np.ndarray  # (N,) int
    distances: np.ndarray  # (N,) float64
    message: str = ""

    @classmethod
    def empty(cls, success: bool = False, message: str = "") -> DescriptorMatches:
        return cls(
            success=success,
            index_a=np.empty(0, dtype=np.int64),
            index_b=np.empty(0, dtype=np.int64),
            distances=np.empty(0, dtype=np.float64),
            message=message,
        )

    def __len__(self) -> int:
        """Return number of matches."""
        return len(self.index_a)

    def __iter__(self) -> Iterator[tuple[int, int, float]]:
        """Iterate over (index_a, index_b, distance) tuples."""
        for a, b, d in zip(self.index_a, self.index_b, self.distances):
            yield int(a), int(b), float(d)

    def as_set(self) -> set[tuple[int, int]]:
        """Return the (index_a, index_b) pairs as a set."""
        return {(int(a), int(b)) for a, b in zip(self.index_a, self.index_b)}


def _one_way_matches(
    distances: np.ndarray,
    max_distance: float,
    use_ratio_test: bool,
    ratio_threshold: float,
) -> np.ndarray:
    """Best match in B for every row of A, or -1 where none is accepted.

    Candidates above the cutoff are excluded before ranking. With the
    ratio test enabled, a row with a single surviving candidate is accepted.
    """
    n, m = distances.shape
    best = np.full(n, -1, dtype=np.int64)
    if n == 0 or m == 0:
        return best

    masked = np.where(distances <= max_distance, distances, np.inf)
    best_idx = np.argmin(masked, axis=1)
    best_dist = masked[np.arange(n), best_idx]
    accept = np.isfinite(best_dist)

    if use_ratio_test and m >= 2:
        second_dist = np.partition(masked, 1, axis=1)[:, 1]
        ratio_sq = ratio_threshold * ratio_threshold
        accept &= ~np.isfinite(second_dist) | (best_dist < ratio_sq * second_dist)

    best[accept] = best_idx[accept]
    return best


def match_descriptors(
    descriptors_a: np.ndarray,
    descriptors_b: np.ndarray,
    metric: DistanceMetric,
    options: FeatureMatcherOptions,
) -> DescriptorMatches:
    """Match every descriptor in A to its nearest neighbor in B.

    Descriptors must already be normalized if the metric requires it.

    1. One-way pass A->B with optional ratio test and distance cutoff.
    2. Optional mutual-nearest-neighbor filter using the B->A pass.
    3. Fail if fewer than `min_matches` survive.
    4. Optionally keep the `keep_best_k` lowest-distance matches, ordered by
       distance with ties broken by index in A.

    Returns:
        DescriptorMatches ordered by index in A, or by distance when
        `keep_best_k` is set
    """
    metric = metric.with_max_distance(options.max_descriptor_distance)
    distances = metric.pairwise(descriptors_a, descriptors_b)

    forward = _one_way_matches(
        distances, metric.max_distance, options.use_ratio_test, options.ratio_threshold
    )
    index_a = np.flatnonzero(forward >= 0)
    index_b = forward[index_a]

    if options.require_symmetric and len(index_a) > 0:
        reverse = _one_way_matches(
            distances.T,
            metric.max_distance,
            options.use_ratio_test,
            options.ratio_threshold,
        )
        mutual = reverse[index_b] == index_a
        index_a = index_a[mutual]
        index_b = index_b[mutual]

    if len(index_a) < options.min_matches:
        return DescriptorMatches.empty(
            message=f"Insufficient matches: {len(index_a)} < {options.min_matches}"
        )

    match_distances = distances[index_a, index_b]

    if options.keep_best_k is not None:
        # Stable sort keeps index-in-A order among equal distances.
        order = np.argsort(match_distances, kind="stable")[: options.keep_best_k]
        index_a = index_a[order]
        index_b = index_b[order]
        match_distances = match_distances[order]

    return DescriptorMatches(
        success=True,
        index_a=index_a.astype(np.int64),
        index_b=index_b.astype(np.int64),
        distances=match_distances.astype(np.float64),
    )


def _prepared(descriptors: np.ndarray, metric: DistanceMetric) -> np.ndarray:
    """Copy descriptors and normalize them if the metric needs it."""
    descriptors = np.array(descriptors, copy=True)
    if metric.requires_normalization:
        descriptors = descriptors.astype(np.float64, copy=False)
    return metric.maybe_normalize(descriptors)


class FeatureMatcher2D2D:
    """Matches features of one frame against features of another frame."""

    def __init__(
        self,
        metric: DistanceMetric,
        options: FeatureMatcherOptions | None = None,
    ) -> None:
        self._metric = metric
        self._options = options or FeatureMatcherOptions()

    def match(self, features_a: Features, features_b: Features) -> DescriptorMatches:
        """Match two frames.

        Returns:
            DescriptorMatches where index_a / index_b index the features of
            each frame
        """
        if len(features_a) == 0 or len(features_b) == 0:
            return DescriptorMatches.empty(message="No features to match")

        return match_descriptors(
            _prepared(features_a.descriptors, self._metric),
            _prepared(features_b.descriptors, self._metric),
            self._metric,
            self._options,
        )

    @property
    def options(self) -> FeatureMatcherOptions:
        return self._options


class FeatureMatcher2D3D:
    """Matches the features of a new frame against landmark descriptors."""

    def __init__(
        self,
        metric: DistanceMetric,
        options: FeatureMatcherOptions | None = None,
    ) -> None:
        self._metric = metric
        self._options = options or FeatureMatcherOptions()

    def match(
        self,
        features: Features,
        landmark_indices: Sequence[int],
        session: Session,
    ) -> DescriptorMatches:
        """Match frame features to landmarks.

        Returns:
            DescriptorMatches where index_a indexes `features` and index_b
            holds landmark indices
        """
        landmark_indices = np.asarray(landmark_indices, dtype=np.int64)
        if len(features) == 0 or len(landmark_indices) == 0:
            return DescriptorMatches.empty(message="No features or landmarks to match")

        landmark_descriptors = np.array(
            [session.get_landmark(int(idx)).descriptor for idx in landmark_indices]
        )

        matches = match_descriptors(
            _prepared(features.descriptors, self._metric),
            _prepared(landmark_descriptors, self._metric),
            self._metric,
            self._options,
        )
        if matches.success:
            matches.index_b = landmark_indices[matches.index_b]
        return matches

    @property
    def options(self) -> FeatureMatcherOptions:
        return self._options
