"""Incremental monocular visual odometry pipeline."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from .backend.local_mapping import LocalMapping
from .config import VisualOdometryOptions
from .frontend.camera import Camera, CameraIntrinsics, DistortionCoeffs
from .frontend.distance_metric import DistanceMetric
from .frontend.features import Features
from .frontend.matcher import DescriptorMatches, FeatureMatcher2D2D, FeatureMatcher2D3D
from .frontend.pose import SE3
from .geometry.pose_estimator import PoseEstimator2D3D
from .geometry.triangulation import triangulate
from .geometry.two_view import TwoViewSolver
from .map.landmark import passes_descriptor_gate
from .map.observation import Observation
from .map.session import Session
from .map.view import View

logger = logging.getLogger(__name__)


class VOState(Enum):
    """Lifecycle state of the visual odometry state machine."""

    UNINITIALIZED = "UNINITIALIZED"
    BOOTSTRAPPING = "BOOTSTRAPPING"
    TRACKING = "TRACKING"


class TrackingStatus(Enum):
    """Outcome of processing a single frame."""

    OK = "OK"
    INITIALIZING = "INITIALIZING"
    FAILED = "FAILED"


@dataclass
class VOTiming:
    """Timing breakdown for a single frame."""

    matching_ms: float = 0.0
    pose_ms: float = 0.0
    map_update_ms: float = 0.0
    ba_ms: float = 0.0
    total_ms: float = 0.0


@dataclass
class VOFrame:
    """Output of visual odometry for a single frame.

    `matches` holds the correspondences used for localization: feature
    pairs (baseline, current) during bootstrap and (feature, landmark)
    pairs while tracking. It is None when no matching was attempted.
    """

    status: TrackingStatus
    message: str = ""
    view_index: int | None = None
    pose: SE3 | None = None
    num_matches: int = 0
    num_inliers: int = 0
    num_incorporated: int = 0
    num_new_landmarks: int = 0
    matches: DescriptorMatches | None = None
    timing: VOTiming = field(default_factory=VOTiming)

    @property
    def position(self) -> np.ndarray | None:
        """Return camera position in world frame."""
        return None if self.pose is None else self.pose.camera_center

    @property
    def is_tracking_ok(self) -> bool:
        return self.status == TrackingStatus.OK


class VisualOdometry:
    """Incremental monocular visual odometry over a sliding window of views.

    Orchestrates the pipeline one frame at a time:
    1. First frame is kept as the baseline
    2. Second frame bootstraps the map from a two-view reconstruction
    3. Every later frame is matched against landmarks of the recent views,
       localized with PnP, and used to extend and re-triangulate landmarks
    4. Optional sliding-window bundle adjustment

    The first view defines the world frame and the bootstrap baseline
    defines the unit of length.
    """

    def __init__(
        self,
        intrinsics: CameraIntrinsics,
        options: VisualOdometryOptions | None = None,
        session: Session | None = None,
        distortion: DistortionCoeffs | None = None,
    ) -> None:
        self._intrinsics = intrinsics
        self._distortion = distortion or DistortionCoeffs()
        self._options = options or VisualOdometryOptions()

        if session is None:
            metric = DistanceMetric(
                kind=self._options.distance_metric,
                max_distance=(
                    float("inf")
                    if self._options.max_descriptor_distance is None
                    else self._options.max_descriptor_distance
                ),
            )
            session = Session(metric)
        self._session = session

        self._local_mapping = LocalMapping(self._options.bundle_adjustment)
        self._setup_solvers()

        self._state = VOState.UNINITIALIZED
        self._baseline: Features | None = None

    def _setup_solvers(self) -> None:
        rng = np.random.default_rng(self._options.random_seed)
        metric = self._session.metric
        self._matcher_2d2d = FeatureMatcher2D2D(metric, self._options.matcher)
        self._matcher_2d3d = FeatureMatcher2D3D(metric, self._options.matcher)
        self._two_view_solver = TwoViewSolver(
            self._options.fundamental_ransac,
            self._options.min_points_visible_ratio,
            rng,
        )
        self._pose_estimator = PoseEstimator2D3D(self._options.pnp_ransac, rng)

    def update(self, features: Features) -> VOFrame:
        """Process the features of the next frame.

        Never raises for data-dependent failures: a frame that cannot be
        localized is reported as FAILED and leaves the session untouched.
        """
        t_start = time.perf_counter()

        if self._state == VOState.UNINITIALIZED:
            frame = self._initialize(features)
        elif self._state == VOState.BOOTSTRAPPING:
            frame = self._bootstrap(features)
        else:
            frame = self._track(features)

        frame.timing.total_ms = (time.perf_counter() - t_start) * 1000
        return frame

    def _camera(self, pose: SE3) -> Camera:
        return Camera(intrinsics=self._intrinsics, extrinsics=pose, distortion=self._distortion)

    def _initialize(self, features: Features) -> VOFrame:
        """Store the first frame as the bootstrap baseline."""
        self._baseline = features
        self._state = VOState.BOOTSTRAPPING
        logger.info(f"Stored baseline frame with {len(features)} features")
        return VOFrame(
            status=TrackingStatus.INITIALIZING,
            message="Stored baseline frame",
        )

    def _bootstrap(self, features: Features) -> VOFrame:
        """Reconstruct the first two views from the baseline and this frame."""
        timing = VOTiming()

        t0 = time.perf_counter()
        matches = self._matcher_2d2d.match(self._baseline, features)
        timing.matching_ms = (time.perf_counter() - t0) * 1000
        if not matches.success:
            return self._bootstrap_failed(
                features, f"Bootstrap matching failed: {matches.message}", matches, timing
            )

        pts1 = self._baseline.points[matches.index_a]
        pts2 = features.points[matches.index_b]

        t0 = time.perf_counter()
        two_view = self._two_view_solver.solve(pts1, pts2, self._intrinsics, self._intrinsics)
        timing.pose_ms = (time.perf_counter() - t0) * 1000
        if not two_view.success:
            return self._bootstrap_failed(
                features, f"Two-view estimation failed: {two_view.message}", matches, timing
            )

        t0 = time.perf_counter()
        session = self._session
        view1 = session.create_view(self._camera(SE3.identity()))
        view2 = session.create_view(self._camera(two_view.pose))
        obs1 = self._add_observations(view1, self._baseline)
        obs2 = self._add_observations(view2, features)

        num_new = 0
        for a, b in zip(matches.index_a[two_view.inliers], matches.index_b[two_view.inliers]):
            if self._create_landmark(view1, view2, obs1[a], obs2[b]):
                num_new += 1
        timing.map_update_ms = (time.perf_counter() - t0) * 1000

        self._baseline = None
        self._state = VOState.TRACKING
        logger.info(
            f"Bootstrapped from {int(np.sum(two_view.inliers))}/{len(matches)} inliers, "
            f"{num_new} landmarks"
        )

        return VOFrame(
            status=TrackingStatus.OK,
            message="Bootstrapped",
            view_index=view2.index,
            pose=view2.pose,
            num_matches=len(matches),
            num_inliers=int(np.sum(two_view.inliers)),
            num_new_landmarks=num_new,
            matches=matches,
            timing=timing,
        )

    def _bootstrap_failed(
        self,
        features: Features,
        message: str,
        matches: DescriptorMatches,
        timing: VOTiming,
    ) -> VOFrame:
        """Replace the baseline with the newest frame and report the failure."""
        logger.warning(f"{message}; using the newest frame as baseline")
        self._baseline = features
        return VOFrame(
            status=TrackingStatus.FAILED,
            message=message,
            num_matches=len(matches),
            matches=matches,
            timing=timing,
        )

    def _track(self, features: Features) -> VOFrame:
        """Localize a frame against the sliding window and extend the map."""
        timing = VOTiming()
        session = self._session
        window = session.latest_views(self._options.sliding_window_length)

        candidates = self._window_landmarks(window)

        t0 = time.perf_counter()
        matches = self._matcher_2d3d.match(features, candidates, session)
        timing.matching_ms = (time.perf_counter() - t0) * 1000
        if not matches.success:
            return self._tracking_failed(
                f"2D-3D matching failed: {matches.message}", matches, timing
            )

        points_2d = features.points[matches.index_a]
        points_3d = np.array([session.get_landmark(int(i)).position for i in matches.index_b])

        t0 = time.perf_counter()
        pnp_result = self._pose_estimator.estimate_pose(
            points_2d, points_3d, self._intrinsics, self._distortion
        )
        timing.pose_ms = (time.perf_counter() - t0) * 1000
        if not pnp_result.success:
            return self._tracking_failed(
                f"Pose estimation failed: {pnp_result.message}", matches, timing
            )

        t0 = time.perf_counter()
        view = session.create_view(self._camera(pnp_result.pose))
        observations = self._add_observations(view, features)

        for feature_idx, lm_index in zip(
            matches.index_a[pnp_result.inliers], matches.index_b[pnp_result.inliers]
        ):
            observations[feature_idx].matched_landmark = int(lm_index)

        num_incorporated = self._incorporate_matched(observations)

        num_new = 0
        if self._options.seed_new_landmarks:
            num_new = self._seed_landmarks(session.latest_views(2))
        timing.map_update_ms = (time.perf_counter() - t0) * 1000

        if self._options.perform_bundle_adjustment:
            t0 = time.perf_counter()
            window = session.latest_views(self._options.sliding_window_length)
            self._local_mapping.run(session, window)
            timing.ba_ms = (time.perf_counter() - t0) * 1000

        logger.debug(
            f"View {view.index}: {pnp_result.num_inliers}/{len(matches)} inliers, "
            f"{num_incorporated} incorporated, {num_new} new landmarks"
        )

        return VOFrame(
            status=TrackingStatus.OK,
            view_index=view.index,
            pose=view.pose,
            num_matches=len(matches),
            num_inliers=pnp_result.num_inliers,
            num_incorporated=num_incorporated,
            num_new_landmarks=num_new,
            matches=matches,
            timing=timing,
        )

    def _tracking_failed(
        self, message: str, matches: DescriptorMatches, timing: VOTiming
    ) -> VOFrame:
        logger.warning(f"Tracking failed: {message}")
        return VOFrame(
            status=TrackingStatus.FAILED,
            message=message,
            num_matches=len(matches),
            matches=matches,
            timing=timing,
        )

    def _window_landmarks(self, window: list[View]) -> list[int]:
        """Return handles of positioned landmarks observed by the window views."""
        indices: set[int] = set()
        for view in window:
            indices.update(view.observed_landmarks(self._session))
        return sorted(i for i in indices if self._session.get_landmark(i).has_position)

    def _incorporate_matched(self, observations: list[Observation]) -> int:
        """Incorporate every observation into its putative landmark.

        A landmark takes at most one observation from the same view; a match
        rejected by the landmark is dropped and the rest proceed.
        """
        incorporated: set[int] = set()
        for obs in observations:
            lm_index = obs.matched_landmark
            if lm_index is None or lm_index in incorporated:
                continue
            landmark = self._session.get_landmark(lm_index)
            if landmark.incorporate_observation(self._session, obs.index, retriangulate=True):
                incorporated.add(lm_index)
            else:
                logger.debug(f"Dropped match of observation {obs.index} to landmark {lm_index}")
        return len(incorporated)

    def _add_observations(self, view: View, features: Features) -> list[Observation]:
        """Turn every feature of a frame into an observation of `view`."""
        return [
            self._session.create_observation(
                view.index, features.points[i], features.descriptors[i]
            )
            for i in range(len(features))
        ]

    def _create_landmark(
        self,
        view1: View,
        view2: View,
        obs1: Observation,
        obs2: Observation,
    ) -> bool:
        """Create a landmark from two corroborating observations.

        Nothing is created if the pair fails the descriptor gate or cannot
        be triangulated.
        """
        session = self._session
        if not passes_descriptor_gate(session.metric, obs1.descriptor, obs2.descriptor):
            return False

        point = triangulate(
            np.array([obs1.pixel, obs2.pixel]), [view1.camera, view2.camera]
        )
        if point is None:
            return False

        landmark = session.create_landmark()
        landmark.incorporate_observation(session, obs1.index)
        landmark.incorporate_observation(session, obs2.index, retriangulate=False)
        landmark.set_position(point)
        return True

    def _seed_landmarks(self, views: list[View]) -> int:
        """Create landmarks from unincorporated observations of two views.

        The residue of both views is matched 2D-2D and triangulated with
        the views' known poses.
        """
        if len(views) < 2:
            return 0

        session = self._session
        view1, view2 = views[-2], views[-1]
        residue1 = [session.get_observation(i) for i in view1.unincorporated_observations(session)]
        residue2 = [session.get_observation(i) for i in view2.unincorporated_observations(session)]
        if not residue1 or not residue2:
            return 0

        features1 = Features(
            points=np.array([o.pixel for o in residue1]),
            descriptors=np.array([o.descriptor for o in residue1]),
        )
        features2 = Features(
            points=np.array([o.pixel for o in residue2]),
            descriptors=np.array([o.descriptor for o in residue2]),
        )
        matches = self._matcher_2d2d.match(features1, features2)
        if not matches.success:
            logger.debug(f"No new landmarks seeded: {matches.message}")
            return 0

        num_new = 0
        for a, b in zip(matches.index_a, matches.index_b):
            if self._create_landmark(view1, view2, residue1[a], residue2[b]):
                num_new += 1
        return num_new

    def reset(self) -> None:
        """Clear the session and return to the uninitialized state."""
        self._session.reset()
        self._setup_solvers()
        self._state = VOState.UNINITIALIZED
        self._baseline = None

    @property
    def trajectory(self) -> list[SE3]:
        """Return the world-to-camera poses of all views in creation order."""
        return [view.pose for view in self._session.views()]

    def get_trajectory_positions(self) -> np.ndarray:
        """Return camera centers as an Nx3 array."""
        poses = self.trajectory
        if len(poses) == 0:
            return np.empty((0, 3), dtype=np.float64)
        return np.array([p.camera_center for p in poses], dtype=np.float64)

    @property
    def current_pose(self) -> SE3 | None:
        views = self._session.latest_views(1)
        return views[0].pose if views else None

    @property
    def state(self) -> VOState:
        return self._state

    @property
    def num_views(self) -> int:
        return self._session.num_views

    @property
    def num_landmarks(self) -> int:
        return self._session.num_landmarks

    @property
    def session(self) -> Session:
        return self._session

    @property
    def options(self) -> VisualOdometryOptions:
        return self._options
