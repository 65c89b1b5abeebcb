#!/usr/bin/env python3
"""Demo script for monocular visual odometry on a synthetic scene.

Random points are viewed by a camera circling the origin. Each frame's
features are the projections of the visible points, tagged with one
descriptor per point.

Usage:
    python examples/synthetic_vo_demo.py [config.yaml]
"""

import logging
import sys

import numpy as np

from monosfm import (
    SE3,
    Camera,
    CameraIntrinsics,
    Features,
    TrackingStatus,
    VisualOdometry,
    load_options,
)


def make_frames(num_points: int, num_frames: int, noise_px: float, seed: int = 0):
    """Yield (features, world-to-camera pose) pairs for a circular trajectory."""
    rng = np.random.default_rng(seed)
    intrinsics = CameraIntrinsics.from_vertical_fov(1920, 1080, np.deg2rad(90.0))
    points = rng.uniform(-2.0, 2.0, size=(num_points, 3))
    descriptors = rng.normal(size=(num_points, 64))
    descriptors /= np.linalg.norm(descriptors, axis=1, keepdims=True)

    for k in range(num_frames):
        theta = np.deg2rad(5.0 * k)
        center = np.array([8.0 * np.cos(theta), 8.0 * np.sin(theta), 1.0])
        pose = SE3.look_at(center, np.zeros(3))
        camera = Camera(intrinsics=intrinsics, extrinsics=pose)

        idx = rng.permutation(np.flatnonzero(camera.visible(points)))
        pixels = camera.project(points[idx]) + rng.normal(scale=noise_px, size=(len(idx), 2))
        yield intrinsics, Features(points=pixels, descriptors=descriptors[idx]), pose


def main() -> None:
    """Run the visual odometry demo."""
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    # Configuration
    num_points = 300
    num_frames = 40
    noise_px = 0.3
    options = load_options(sys.argv[1]) if len(sys.argv) > 1 else None

    vo = None
    baseline_pose = None
    first_pose = None
    scale = None
    errors = []

    print(
        f"{'Frame':>6} {'Status':^14} {'Match':>5} {'Inlr':>5} {'New':>5} {'Map':>6} | "
        f"{'Match':>6} {'Pose':>6} {'Map':>6} {'BA':>6} {'Total':>7}"
    )
    print("-" * 90)

    for i, (intrinsics, features, pose) in enumerate(make_frames(num_points, num_frames, noise_px)):
        if vo is None:
            vo = VisualOdometry(intrinsics, options)

        result = vo.update(features)
        t = result.timing
        print(
            f"{i:6d} {result.status.value:^14} {result.num_matches:5d} {result.num_inliers:5d} "
            f"{result.num_new_landmarks:5d} {vo.num_landmarks:6d} | "
            f"{t.matching_ms:5.1f}ms {t.pose_ms:5.1f}ms {t.map_update_ms:5.1f}ms "
            f"{t.ba_ms:5.1f}ms {t.total_ms:6.1f}ms"
        )

        if result.status != TrackingStatus.OK:
            # The frame just handed to a bootstrapping session is its baseline.
            baseline_pose = pose
            continue

        if first_pose is None:
            first_pose = baseline_pose
            scale = 1.0 / np.linalg.norm(first_pose.transform_point(pose.camera_center))

        # Ground truth expressed in the first view's frame, in baseline units.
        truth = scale * first_pose.transform_point(pose.camera_center)
        errors.append(float(np.linalg.norm(result.position - truth)))

    # Final statistics
    print()
    print("=" * 60)
    print("SUMMARY")
    print("=" * 60)
    print(f"Views:           {vo.num_views}")
    print(f"Landmarks:       {vo.num_landmarks}")
    if errors:
        print(f"Mean position error: {np.mean(errors):.4f} (baseline units)")
        print(f"Max position error:  {np.max(errors):.4f} (baseline units)")
    if scale is not None:
        print(f"Bootstrap baseline:  {1.0 / scale:.3f}")

    if vo.current_pose is not None:
        pos = vo.current_pose.camera_center
        print(f"Final position: [{pos[0]:.2f}, {pos[1]:.2f}, {pos[2]:.2f}]")


if __name__ == "__main__":
    main()
