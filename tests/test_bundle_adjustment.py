"""Tests for bundle adjustment and local mapping."""

import numpy as np
import pytest

from monosfm.backend.local_mapping import LocalMapping
from monosfm.backend.optimizer import BundleAdjustmentOptions, ScipyBundleAdjustment
from monosfm.frontend.pose import SE3
from monosfm.map.session import Session


def _build_session(scene, num_points: int = 30) -> Session:
    """Session with exact views and landmarks observed by every view."""
    session = Session()
    views = [session.create_view(scene.camera(k)) for k in range(len(scene.poses))]
    for j in range(num_points):
        landmark = session.create_landmark()
        for view in views:
            pixel = view.camera.project(scene.points[j])[0]
            obs = session.create_observation(view.index, pixel, scene.descriptors[j])
            landmark.incorporate_observation(session, obs.index, retriangulate=False)
        landmark.set_position(scene.points[j])
    return session


def _perturb_landmarks(session: Session, scale: float = 0.05, seed: int = 0) -> None:
    rng = np.random.default_rng(seed)
    for landmark in session.landmarks():
        landmark.set_position(landmark.position + rng.normal(scale=scale, size=3))


def _perturb_view(session: Session, index: int) -> None:
    view = session.get_view(index)
    delta = SE3.from_euler(np.array([0.01, -0.005, 0.008]), np.array([0.05, -0.03, 0.02]))
    view.set_pose(delta @ view.pose)


class TestScipyBundleAdjustment:
    """Test suite for ScipyBundleAdjustment."""

    def test_recovers_landmarks_with_fixed_poses(self, small_scene):
        session = _build_session(small_scene)
        _perturb_landmarks(session)
        optimizer = ScipyBundleAdjustment(BundleAdjustmentOptions(max_iterations=100))

        result = optimizer.optimize(
            session.views(), session.landmarks(), session, num_fixed_poses=len(session.views())
        )

        assert result.success
        assert result.final_cost < result.initial_cost
        assert result.optimized_poses == {}
        for index, position in result.optimized_points.items():
            np.testing.assert_allclose(position, small_scene.points[index], atol=1e-5)

    def test_too_few_observations(self, small_scene):
        session = _build_session(small_scene, num_points=2)
        result = ScipyBundleAdjustment().optimize(session.views(), session.landmarks(), session)

        assert not result.success
        assert "Too few observations" in result.message

    def test_empty_input(self, small_scene):
        session = _build_session(small_scene, num_points=0)
        result = ScipyBundleAdjustment().optimize(session.views(), [], session)

        assert not result.success

    def test_invalid_loss(self):
        with pytest.raises(ValueError, match="loss"):
            BundleAdjustmentOptions(loss="l1")


class TestLocalMapping:
    """Test suite for LocalMapping."""

    def test_reduces_cost_and_writes_back(self, small_scene):
        session = _build_session(small_scene)
        _perturb_landmarks(session, scale=0.02)
        _perturb_view(session, 3)
        before = session.get_view(3).pose

        local_mapping = LocalMapping(BundleAdjustmentOptions(num_fixed_poses=2, max_iterations=100))
        result = local_mapping.run(session, session.views())

        assert result.success
        assert result.ba_result.final_cost < 1e-3 * result.ba_result.initial_cost
        assert result.num_views_optimized == 4
        assert result.num_points_optimized == 30
        assert not session.get_view(3).pose.is_close(before, atol=1e-9)
        np.testing.assert_allclose(
            session.get_view(3).pose.camera_center, small_scene.poses[3].camera_center, atol=1e-4
        )
        # Fixed views are untouched.
        assert session.get_view(0).pose.is_close(small_scene.poses[0], atol=1e-12)

    def test_failure_keeps_prior_estimates(self, small_scene):
        session = _build_session(small_scene)
        _perturb_landmarks(session)
        positions = {lm.index: lm.position for lm in session.landmarks()}
        poses = {v.index: v.pose for v in session.views()}

        local_mapping = LocalMapping(BundleAdjustmentOptions(min_observations=10_000))
        result = local_mapping.run(session, session.views())

        assert not result.success
        for landmark in session.landmarks():
            np.testing.assert_array_equal(landmark.position, positions[landmark.index])
        for view in session.views():
            assert view.pose is poses[view.index]

    def test_needs_two_views(self, small_scene):
        session = _build_session(small_scene)
        result = LocalMapping().run(session, session.views()[:1])

        assert not result.success
