"""Tests for Landmark incorporation and Observation bookkeeping."""

import numpy as np
import pytest

from monosfm.frontend.distance_metric import DistanceMetric
from monosfm.geometry.triangulation import triangulate
from monosfm.map.session import Session


def _observe(session, scene, view, point_idx, descriptor=None):
    """Create an observation of scene point `point_idx` in `view`."""
    pixel = view.camera.project(scene.points[point_idx])[0]
    if descriptor is None:
        descriptor = scene.descriptors[point_idx]
    return session.create_observation(view.index, pixel, descriptor)


@pytest.fixture
def populated(small_scene):
    """Session with one view per scene camera."""
    session = Session(DistanceMetric())
    views = [session.create_view(small_scene.camera(k)) for k in range(4)]
    return session, views


class TestIncorporation:
    """Test suite for Landmark.incorporate_observation."""

    def test_empty_landmark_accepts_and_copies_descriptor(self, small_scene, populated):
        session, views = populated
        landmark = session.create_landmark()
        obs = _observe(session, small_scene, views[0], 0)

        assert landmark.incorporate_observation(session, obs.index)
        np.testing.assert_array_equal(landmark.descriptor, small_scene.descriptors[0])
        np.testing.assert_array_equal(landmark.position, np.zeros(3))
        assert obs.incorporated
        assert obs.landmark_index == landmark.index
        assert not landmark.has_position

    def test_retriangulation_matches_direct_triangulation(self, small_scene, populated):
        session, views = populated
        landmark = session.create_landmark()
        observations = [_observe(session, small_scene, view, 5) for view in views]

        for obs in observations:
            assert landmark.incorporate_observation(session, obs.index, retriangulate=True)

        expected = triangulate(
            np.array([o.pixel for o in observations]), [v.camera for v in views]
        )
        np.testing.assert_allclose(landmark.position, expected, atol=1e-9)
        np.testing.assert_allclose(landmark.position, small_scene.points[5], atol=1e-9)
        assert landmark.has_position
        assert landmark.seen_by_at_least_n_views(session, 4)
        assert landmark.source_view(session) == views[0].index

    def test_descriptor_gate_rejects_without_mutation(self, small_scene, populated):
        session, views = populated
        session.metric = DistanceMetric(max_distance=0.2)
        landmark = session.create_landmark()
        first = _observe(session, small_scene, views[0], 1)
        second = _observe(session, small_scene, views[1], 1)
        landmark.incorporate_observation(session, first.index)
        landmark.incorporate_observation(session, second.index)
        position = landmark.position

        # Same physical point but the descriptor of an unrelated one.
        impostor = _observe(session, small_scene, views[2], 1, small_scene.descriptors[2])
        assert not landmark.incorporate_observation(session, impostor.index)

        assert landmark.observation_indices == [first.index, second.index]
        np.testing.assert_array_equal(landmark.position, position)
        assert not impostor.incorporated

    def test_no_cutoff_accepts_any_descriptor(self, small_scene, populated):
        session, views = populated
        landmark = session.create_landmark()
        landmark.incorporate_observation(session, _observe(session, small_scene, views[0], 1).index)

        impostor = _observe(session, small_scene, views[1], 1, small_scene.descriptors[2])
        assert landmark.incorporate_observation(session, impostor.index)

    def test_triangulation_failure_rejects_without_mutation(self, small_scene, populated):
        session, views = populated
        landmark = session.create_landmark()
        first = _observe(session, small_scene, views[0], 3)
        landmark.incorporate_observation(session, first.index)

        # Second detection from the same view: coincident optical centers.
        again = _observe(session, small_scene, views[0], 3)
        assert not landmark.incorporate_observation(session, again.index)

        assert landmark.observation_indices == [first.index]
        assert not again.incorporated

    def test_without_retriangulation_position_is_kept(self, small_scene, populated):
        session, views = populated
        landmark = session.create_landmark()
        landmark.incorporate_observation(session, _observe(session, small_scene, views[0], 4).index)
        landmark.set_position(np.array([1.0, 2.0, 3.0]))

        obs = _observe(session, small_scene, views[1], 4)
        assert landmark.incorporate_observation(session, obs.index, retriangulate=False)
        np.testing.assert_array_equal(landmark.position, [1.0, 2.0, 3.0])

    def test_observation_cannot_join_two_landmarks(self, small_scene, populated):
        session, views = populated
        first, second = session.create_landmark(), session.create_landmark()
        obs = _observe(session, small_scene, views[0], 0)
        first.incorporate_observation(session, obs.index)

        with pytest.raises(ValueError, match="already belongs"):
            second.incorporate_observation(session, obs.index)

    def test_position_is_a_copy(self, populated):
        session, _ = populated
        landmark = session.create_landmark()

        landmark.position[0] = 42.0
        assert landmark.position[0] == 0.0


class TestView:
    """Test suite for the view-side observation queries."""

    def test_observed_and_unincorporated(self, small_scene, populated):
        session, views = populated
        landmark = session.create_landmark()
        matched = _observe(session, small_scene, views[0], 0)
        loose = _observe(session, small_scene, views[0], 1)
        landmark.incorporate_observation(session, matched.index)

        assert views[0].observed_landmarks(session) == [landmark.index]
        assert views[0].has_observed_landmark(session, landmark.index)
        assert views[0].unincorporated_observations(session) == [loose.index]
        assert not views[1].has_observed_landmark(session, landmark.index)

    def test_set_incorporated_landmark_conflict(self, small_scene, populated):
        session, views = populated
        obs = _observe(session, small_scene, views[0], 0)
        obs.set_incorporated_landmark(3)
        obs.set_incorporated_landmark(3)

        with pytest.raises(ValueError):
            obs.set_incorporated_landmark(4)
