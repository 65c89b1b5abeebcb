"""Landmark: a reconstructed 3D point and the consistency-gated update rule."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

from ..geometry.triangulation import triangulate

if TYPE_CHECKING:
    from ..frontend.distance_metric import DistanceMetric
    from .session import Session

logger = logging.getLogger(__name__)


def descriptor_distance(metric: DistanceMetric, a: np.ndarray, b: np.ndarray) -> float:
    """Distance between two descriptors after the metric's normalization."""
    a = np.array(a, copy=True).reshape(1, -1)
    b = np.array(b, copy=True).reshape(1, -1)
    if metric.requires_normalization:
        a = a.astype(np.float64, copy=False)
        b = b.astype(np.float64, copy=False)
    return metric(metric.maybe_normalize(a)[0], metric.maybe_normalize(b)[0])


def passes_descriptor_gate(metric: DistanceMetric, a: np.ndarray, b: np.ndarray) -> bool:
    """Return True unless a finite cutoff is set and the descriptors exceed it."""
    if not metric.has_cutoff:
        return True
    return descriptor_distance(metric, a, b) <= metric.max_distance


@dataclass
class Landmark:
    """A 3D point with a stable identity across views.

    The position is only meaningful once two or more observations support
    the landmark. The descriptor is copied from the first incorporated
    observation and is used afterwards as an admission gate.

    Attributes:
        index: Session-assigned handle, monotonically increasing
        observation_indices: Ordered handles of supporting observations
    """

    index: int
    _position: np.ndarray = field(default_factory=lambda: np.zeros(3), init=False, repr=False)
    descriptor: np.ndarray | None = None
    observation_indices: list[int] = field(default_factory=list)

    @property
    def position(self) -> np.ndarray:
        """World position (copy)."""
        return self._position.copy()

    def set_position(self, position: np.ndarray) -> None:
        self._position = np.asarray(position, dtype=np.float64).reshape(3).copy()

    @property
    def num_observations(self) -> int:
        return len(self.observation_indices)

    @property
    def has_position(self) -> bool:
        """Return True if at least two observations support the position."""
        return len(self.observation_indices) >= 2

    def source_view(self, session: Session) -> int | None:
        """Return the handle of the view that first observed this landmark."""
        if not self.observation_indices:
            return None
        return session.get_observation(self.observation_indices[0]).view_index

    def view_indices(self, session: Session) -> list[int]:
        """Return the handles of the views observing this landmark, in order."""
        return [session.get_observation(i).view_index for i in self.observation_indices]

    def seen_by_at_least_n_views(self, session: Session, n: int) -> bool:
        return len(set(self.view_indices(session))) >= n

    def incorporate_observation(
        self,
        session: Session,
        observation_index: int,
        retriangulate: bool = True,
    ) -> bool:
        """Try to add an observation to this landmark.

        An empty landmark accepts any observation and adopts its descriptor.
        Otherwise the observation must pass the descriptor gate (only active
        when the session metric has a finite cutoff) and, if `retriangulate`
        is set, the point is re-solved from every supporting observation
        plus the candidate. The landmark and the observation are left
        untouched on rejection.

        Args:
            session: Session owning the landmark, its observations and views
            observation_index: Handle of the candidate observation
            retriangulate: Re-solve the position from all observations

        Returns:
            True if the observation was incorporated

        Raises:
            ValueError: If the observation already belongs to another landmark
        """
        obs = session.get_observation(observation_index)
        if obs.landmark_index is not None:
            if obs.landmark_index != self.index:
                raise ValueError(
                    f"Observation {observation_index} already belongs to "
                    f"landmark {obs.landmark_index}"
                )
            return True

        if not self.observation_indices:
            self.descriptor = obs.descriptor.copy()
            self.observation_indices.append(observation_index)
            obs.set_incorporated_landmark(self.index)
            return True

        if not passes_descriptor_gate(session.metric, self.descriptor, obs.descriptor):
            logger.debug(
                f"Landmark {self.index} rejected observation {observation_index}: "
                f"descriptor distance above {session.metric.max_distance:.3f}"
            )
            return False

        if retriangulate:
            supporting = [session.get_observation(i) for i in self.observation_indices]
            supporting.append(obs)
            pixels = np.array([o.pixel for o in supporting])
            cameras = [session.get_view(o.view_index).camera for o in supporting]

            point = triangulate(pixels, cameras)
            if point is None:
                logger.debug(
                    f"Landmark {self.index} rejected observation {observation_index}: "
                    f"triangulation failed"
                )
                return False
            self._position = point

        self.observation_indices.append(observation_index)
        obs.set_incorporated_landmark(self.index)
        return True
