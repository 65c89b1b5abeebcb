"""Tests for the per-frame feature containers."""

import numpy as np
import pytest

from monosfm.frontend.features import Feature, Features


class TestFeatures:
    """Test suite for Features."""

    def test_from_pairs(self):
        pairs = [
            (Feature(u=1.0, v=2.0, scale=1.5), np.array([1, 2, 3], dtype=np.uint8)),
            (Feature(u=3.0, v=4.0, scale=2.0), np.array([4, 5, 6], dtype=np.uint8)),
        ]

        features = Features.from_pairs(pairs)

        assert len(features) == 2
        np.testing.assert_array_equal(features.points, [[1.0, 2.0], [3.0, 4.0]])
        np.testing.assert_array_equal(features.descriptors[1], [4, 5, 6])
        np.testing.assert_array_equal(features.scales, [1.5, 2.0])
        assert features.orientations is None

    def test_from_no_pairs(self):
        assert len(Features.from_pairs([])) == 0

    def test_empty_lists(self):
        features = Features(points=[], descriptors=[])

        assert len(features) == 0
        assert features.points.shape == (0, 2)
        assert features.descriptors.shape == (0, 0)

    def test_flat_descriptors_are_split_per_point(self):
        features = Features(points=np.zeros((2, 2)), descriptors=np.arange(8.0))

        assert features.descriptors.shape == (2, 4)

    def test_mismatched_lengths(self):
        with pytest.raises(ValueError, match="descriptors"):
            Features(points=np.zeros((3, 2)), descriptors=np.zeros((2, 4)))
