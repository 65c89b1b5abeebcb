"""Tests for descriptor matching."""

import numpy as np
import pytest

from monosfm.frontend.camera import Camera, CameraIntrinsics
from monosfm.frontend.distance_metric import DistanceMetric, MetricKind
from monosfm.frontend.features import Features
from monosfm.frontend.matcher import (
    FeatureMatcher2D2D,
    FeatureMatcher2D3D,
    FeatureMatcherOptions,
    match_descriptors,
)
from monosfm.map.session import Session


def _unit(rows: np.ndarray) -> np.ndarray:
    return rows / np.linalg.norm(rows, axis=1, keepdims=True)


@pytest.fixture
def descriptor_sets() -> tuple[np.ndarray, np.ndarray]:
    """Overlapping float descriptor sets: 25 shared (noisy) rows plus extras."""
    rng = np.random.default_rng(3)
    shared = rng.normal(size=(25, 32))
    A = _unit(np.vstack([shared, rng.normal(size=(10, 32))]))
    B = _unit(np.vstack([shared + 0.05 * rng.normal(size=shared.shape), rng.normal(size=(15, 32))]))
    return A, B


class TestMatchDescriptors:
    """Test suite for the generic matching routine."""

    def test_recovers_shared_rows(self, descriptor_sets):
        A, B = descriptor_sets
        matches = match_descriptors(A, B, DistanceMetric(), FeatureMatcherOptions())

        assert matches.success
        assert {(a, b) for a, b in matches.as_set() if a < 25} == {(i, i) for i in range(25)}

    def test_permutation_invariance(self, descriptor_sets):
        A, B = descriptor_sets
        options = FeatureMatcherOptions(min_matches=0)
        reference = match_descriptors(A, B, DistanceMetric(), options).as_set()

        rng = np.random.default_rng(11)
        perm_a = rng.permutation(len(A))
        perm_b = rng.permutation(len(B))
        permuted = match_descriptors(A[perm_a], B[perm_b], DistanceMetric(), options)
        mapped = {(int(perm_a[a]), int(perm_b[b])) for a, b in permuted.as_set()}

        assert mapped == reference

    def test_symmetric_filter_is_mutual_and_never_increases(self):
        rng = np.random.default_rng(5)
        A = _unit(rng.normal(size=(40, 8)))
        B = _unit(rng.normal(size=(15, 8)))
        metric = DistanceMetric()

        one_way = match_descriptors(
            A,
            B,
            metric,
            FeatureMatcherOptions(use_ratio_test=False, require_symmetric=False, min_matches=0),
        )
        mutual = match_descriptors(
            A,
            B,
            metric,
            FeatureMatcherOptions(use_ratio_test=False, require_symmetric=True, min_matches=0),
        )

        assert len(mutual) <= len(one_way)
        assert mutual.as_set() <= one_way.as_set()

        D = metric.pairwise(A, B)
        for a, b, _ in mutual:
            assert np.argmin(D[a]) == b
            assert np.argmin(D[:, b]) == a

    def test_min_matches_failure(self, descriptor_sets):
        A, B = descriptor_sets
        matches = match_descriptors(A, B, DistanceMetric(), FeatureMatcherOptions(min_matches=100))

        assert not matches.success
        assert len(matches) == 0
        assert "Insufficient matches" in matches.message

    def test_keep_best_k(self, descriptor_sets):
        A, B = descriptor_sets
        metric = DistanceMetric()
        everything = match_descriptors(A, B, metric, FeatureMatcherOptions())
        best = match_descriptors(A, B, metric, FeatureMatcherOptions(keep_best_k=10))

        assert len(best) == 10
        assert np.all(np.diff(best.distances) >= 0)
        assert best.as_set() <= everything.as_set()
        assert best.distances[-1] <= np.sort(everything.distances)[10]

    def test_keep_best_k_breaks_ties_by_index_in_a(self):
        A = np.array([[1.0, 0.0], [1.0, 0.0], [0.0, 1.0]])
        B = np.array([[1.0, 0.0], [0.0, 1.0]])
        options = FeatureMatcherOptions(
            use_ratio_test=False, require_symmetric=False, min_matches=0, keep_best_k=3
        )
        matches = match_descriptors(A, B, DistanceMetric(), options)

        assert list(matches.index_a) == [0, 1, 2]

    def test_ratio_test_rejects_ambiguous_match(self):
        A = np.array([[1.0, 0.0, 0.0]])
        B = _unit(np.array([[1.0, 0.1, 0.0], [1.0, -0.1, 0.0], [0.0, 0.0, 1.0]]))
        metric = DistanceMetric()

        strict = match_descriptors(
            A, B, metric, FeatureMatcherOptions(require_symmetric=False, min_matches=0)
        )
        loose = match_descriptors(
            A,
            B,
            metric,
            FeatureMatcherOptions(use_ratio_test=False, require_symmetric=False, min_matches=0),
        )

        assert len(strict) == 0
        assert len(loose) == 1

    def test_single_candidate_passes_ratio_test(self):
        A = np.array([[1.0, 0.0]])
        B = np.array([[0.0, 1.0]])
        matches = match_descriptors(A, B, DistanceMetric(), FeatureMatcherOptions(min_matches=1))

        assert matches.as_set() == {(0, 0)}

    def test_cutoff_excludes_distant_candidates(self):
        A = np.array([[1.0, 0.0]])
        B = np.array([[0.0, 1.0]])
        options = FeatureMatcherOptions(min_matches=0, max_descriptor_distance=0.5)
        matches = match_descriptors(A, B, DistanceMetric(), options)

        assert len(matches) == 0

    def test_hamming(self):
        rng = np.random.default_rng(2)
        A = rng.integers(0, 256, size=(20, 32), dtype=np.uint8)
        B = A[::-1].copy()
        matches = match_descriptors(
            A, B, DistanceMetric(kind=MetricKind.HAMMING), FeatureMatcherOptions()
        )

        assert matches.as_set() == {(i, 19 - i) for i in range(20)}
        np.testing.assert_array_equal(matches.distances, 0.0)


class TestFeatureMatchers:
    """Test suite for the 2D-2D and 2D-3D adapters."""

    def test_2d2d_normalizes_descriptors(self, descriptor_sets):
        A, B = descriptor_sets
        features_a = Features(points=np.zeros((len(A), 2)), descriptors=3.0 * A)
        features_b = Features(points=np.zeros((len(B), 2)), descriptors=0.5 * B)
        matcher = FeatureMatcher2D2D(DistanceMetric())

        matches = matcher.match(features_a, features_b)

        assert matches.success
        assert (0, 0) in matches.as_set()
        # Inputs are not modified.
        np.testing.assert_allclose(features_a.descriptors, 3.0 * A)

    def test_2d2d_empty_frame(self):
        matcher = FeatureMatcher2D2D(DistanceMetric())
        matches = matcher.match(Features.empty(4), Features.empty(4))

        assert not matches.success

    def test_2d3d_returns_landmark_indices(self, descriptor_sets):
        A, B = descriptor_sets
        session = Session(DistanceMetric())
        view = session.create_view(Camera(CameraIntrinsics(fx=1.0, fy=1.0, cx=0.0, cy=0.0)))

        # Landmarks 0..4 carry unrelated descriptors, 5.. carry the rows of B.
        rng = np.random.default_rng(9)
        descriptors = np.vstack([_unit(rng.normal(size=(5, 32))), B])
        for desc in descriptors:
            landmark = session.create_landmark()
            obs = session.create_observation(view.index, np.zeros(2), desc)
            landmark.incorporate_observation(session, obs.index)

        landmark_indices = list(range(5, 5 + len(B)))
        features = Features(points=np.zeros((len(A), 2)), descriptors=A)
        matches = FeatureMatcher2D3D(DistanceMetric()).match(features, landmark_indices, session)

        assert matches.success
        for a in range(25):
            assert (a, a + 5) in matches.as_set()
