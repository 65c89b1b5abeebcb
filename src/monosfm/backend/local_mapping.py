"""Local mapping with sliding window bundle adjustment.

LocalMapping runs bundle adjustment over the most recent views of a
session to refine their poses and the landmarks they observe. The oldest
views of the window are held fixed to pin down the gauge.

The sliding window approach bounds computational complexity while still
correcting drift in the local trajectory.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from .optimizer import BAResult, BundleAdjustmentOptions, ScipyBundleAdjustment

if TYPE_CHECKING:
    from ..map.landmark import Landmark
    from ..map.session import Session
    from ..map.view import View

logger = logging.getLogger(__name__)


@dataclass
class LocalMappingResult:
    """Result of local mapping operation."""

    success: bool
    ba_result: BAResult | None = None
    num_views_optimized: int = 0
    num_points_optimized: int = 0
    message: str = ""


class LocalMapping:
    """Runs windowed bundle adjustment and writes refined values back.

    On any optimizer failure the session is left exactly as it was.
    """

    def __init__(self, options: BundleAdjustmentOptions | None = None) -> None:
        self._options = options or BundleAdjustmentOptions()
        self._optimizer = ScipyBundleAdjustment(self._options)

    def run(self, session: Session, window: list[View]) -> LocalMappingResult:
        """Optimize the poses of `window` and the landmarks they share.

        Args:
            session: Session owning the views and landmarks
            window: Views to optimize, oldest first

        Returns:
            Result of local mapping operation
        """
        if len(window) < 2:
            return LocalMappingResult(success=False, message="Not enough views for BA")

        landmarks = self._get_window_landmarks(session, window)
        if not landmarks:
            return LocalMappingResult(
                success=False,
                message="No landmarks shared by the window",
                num_views_optimized=len(window),
            )

        ba_result = self._optimizer.optimize(window, landmarks, session)

        if ba_result.success:
            self._apply_corrections(session, ba_result)
            logger.debug(
                f"BA over {len(window)} views, {len(landmarks)} landmarks: "
                f"cost {ba_result.initial_cost:.3e} -> {ba_result.final_cost:.3e}"
            )
        else:
            logger.warning(
                f"Bundle adjustment failed, keeping prior estimates: {ba_result.message}"
            )

        return LocalMappingResult(
            success=ba_result.success,
            ba_result=ba_result,
            num_views_optimized=len(window),
            num_points_optimized=len(landmarks),
            message=ba_result.message,
        )

    def _get_window_landmarks(self, session: Session, window: list[View]) -> list[Landmark]:
        """Get all landmarks observed by window views.

        Only includes landmarks observed by at least 2 views in the window
        (triangulated with parallax).
        """
        observation_count: dict[int, int] = {}
        for view in window:
            for lm_index in set(view.observed_landmarks(session)):
                observation_count[lm_index] = observation_count.get(lm_index, 0) + 1

        return [
            session.get_landmark(lm_index)
            for lm_index, count in sorted(observation_count.items())
            if count >= 2
        ]

    def _apply_corrections(self, session: Session, ba_result: BAResult) -> None:
        """Apply BA corrections to views and landmarks."""
        for view_index, pose in ba_result.optimized_poses.items():
            session.get_view(view_index).set_pose(pose)

        for lm_index, position in ba_result.optimized_points.items():
            session.get_landmark(lm_index).set_position(position)

    @property
    def options(self) -> BundleAdjustmentOptions:
        return self._options
