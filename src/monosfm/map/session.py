"""Session: caller-owned tables of views, landmarks and observations."""

from __future__ import annotations

import logging

import numpy as np

from ..frontend.camera import Camera
from ..frontend.distance_metric import DistanceMetric
from .landmark import Landmark
from .observation import Observation
from .view import View

logger = logging.getLogger(__name__)


class Session:
    """Index-addressed store for one reconstruction run.

    Views, landmarks and observations are created through the factory
    methods, which hand out monotonically increasing handles that are
    never reused. Views and landmarks refer to observations by handle.
    Nothing is deleted individually; `reset` clears every table and
    counter at once.

    The descriptor metric used by landmark incorporation is owned here so
    that every component of one run compares descriptors the same way.
    """

    def __init__(self, metric: DistanceMetric | None = None) -> None:
        self.metric = metric or DistanceMetric()
        self._views: dict[int, View] = {}
        self._landmarks: dict[int, Landmark] = {}
        self._observations: dict[int, Observation] = {}
        self._next_view_index: int = 0
        self._next_landmark_index: int = 0
        self._next_observation_index: int = 0

    # Factories

    def create_view(self, camera: Camera) -> View:
        view = View(index=self._next_view_index, camera=camera)
        self._next_view_index += 1
        self._views[view.index] = view
        return view

    def create_landmark(self) -> Landmark:
        landmark = Landmark(index=self._next_landmark_index)
        self._next_landmark_index += 1
        self._landmarks[landmark.index] = landmark
        return landmark

    def create_observation(
        self,
        view_index: int,
        pixel: np.ndarray,
        descriptor: np.ndarray,
    ) -> Observation:
        """Create an observation and attach it to its view.

        Raises:
            KeyError: If the view does not exist
        """
        view = self.get_view(view_index)
        obs = Observation(
            index=self._next_observation_index,
            view_index=view_index,
            pixel=pixel,
            descriptor=descriptor,
        )
        self._next_observation_index += 1
        self._observations[obs.index] = obs
        view.add_observation(obs.index)
        return obs

    # Lookup

    def get_view(self, index: int) -> View:
        """Return a view by handle.

        Raises:
            KeyError: If no view has this handle
        """
        try:
            return self._views[index]
        except KeyError:
            raise KeyError(f"Unknown view index {index}") from None

    def get_landmark(self, index: int) -> Landmark:
        try:
            return self._landmarks[index]
        except KeyError:
            raise KeyError(f"Unknown landmark index {index}") from None

    def get_observation(self, index: int) -> Observation:
        try:
            return self._observations[index]
        except KeyError:
            raise KeyError(f"Unknown observation index {index}") from None

    def is_valid_view(self, index: int) -> bool:
        return 0 <= index < self._next_view_index and index in self._views

    def is_valid_landmark(self, index: int) -> bool:
        return 0 <= index < self._next_landmark_index and index in self._landmarks

    @property
    def num_views(self) -> int:
        return len(self._views)

    @property
    def num_landmarks(self) -> int:
        return len(self._landmarks)

    @property
    def num_observations(self) -> int:
        return len(self._observations)

    @property
    def next_view_index(self) -> int:
        return self._next_view_index

    @property
    def next_landmark_index(self) -> int:
        return self._next_landmark_index

    def views(self) -> list[View]:
        """Return all views in creation order."""
        return list(self._views.values())

    def landmarks(self) -> list[Landmark]:
        """Return all landmarks in creation order."""
        return list(self._landmarks.values())

    def existing_landmark_indices(self) -> list[int]:
        return list(self._landmarks.keys())

    def latest_views(self, n: int) -> list[View]:
        """Return up to the `n` most recently created views, oldest first."""
        if n <= 0:
            return []
        return list(self._views.values())[-n:]

    def reset(self) -> None:
        """Remove all views, landmarks and observations and restart the counters."""
        logger.debug(
            f"Resetting session ({self.num_views} views, {self.num_landmarks} landmarks)"
        )
        self._views.clear()
        self._landmarks.clear()
        self._observations.clear()
        self._next_view_index = 0
        self._next_landmark_index = 0
        self._next_observation_index = 0
