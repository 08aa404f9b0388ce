#!/usr/bin/env python3
"""Demo script for IMU-aided frame-to-frame motion estimation.

Simulates a stereo rig yawing in front of a static point cloud while a
200 Hz IMU streams measurements. At every camera frame the IMU window is
preintegrated, its rotation seeds the pose optimizer, and the estimated
relative motion is compared to the ground truth.

Usage:
    uv run python examples/motion_demo.py
"""

import logging

import numpy as np

from stereo_vio import (
    SE3,
    CameraIntrinsics,
    IMUManager,
    IMUManagerParams,
    IMUMeasurement,
    MotionEstimator,
    MotionEstimatorConfig,
    StereoCamera,
    camera_rotation_prior,
)
from stereo_vio.frontend.pose import exp_so3

IMU_RATE_HZ = 200
CAMERA_RATE_HZ = 20
NUM_FRAMES = 20
YAW_RATE = 0.3  # rad/s
VELOCITY = np.array([0.5, 0.0, 0.0])  # m/s, world frame
PIXEL_NOISE = 0.5
OUTLIER_RATIO = 0.1


def camera_pose(t: float) -> SE3:
    """Ground truth T_world_camera at time t (body and camera frames coincide)."""
    return SE3(rotation=exp_so3(np.array([0.0, YAW_RATE * t, 0.0])), translation=VELOCITY * t)


def main() -> None:
    """Run the motion estimation demo."""
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")
    rng = np.random.default_rng(0)

    camera = StereoCamera(
        CameraIntrinsics(fx=415.876509, fy=415.876509, cx=376.0, cy=240.0),
        baseline=0.11,
        image_size=(752, 480),
    )
    imu = IMUManager(IMUManagerParams(allowed_misalignment_sec=0.01))
    estimator = MotionEstimator(camera, MotionEstimatorConfig(algorithm="levenberg_marquardt"))

    landmarks = np.column_stack(
        [rng.uniform(-4.0, 8.0, 200), rng.uniform(-1.5, 1.5, 200), rng.uniform(4.0, 12.0, 200)]
    )

    # Constant-velocity trajectory: the accelerometer only senses gravity.
    gyro = np.array([0.0, YAW_RATE, 0.0])

    imu_step_ns = 1_000_000_000 // IMU_RATE_HZ
    frame_step_ns = 1_000_000_000 // CAMERA_RATE_HZ
    T_body_camera = SE3.identity()

    print("Running IMU-aided motion estimation on synthetic data...")
    print("=" * 80)
    print(
        f"{'Frame':>6} {'IMU dt':>8} {'Inliers':>8} {'Iters':>6} | "
        f"{'Trans err (m)':>14} {'Rot err (deg)':>14}"
    )
    print("-" * 80)

    translation_errors: list[float] = []
    rotation_errors: list[float] = []
    imu_time_ns = 0

    for frame in range(1, NUM_FRAMES + 1):
        t_prev_ns = (frame - 1) * frame_step_ns
        t_curr_ns = frame * frame_step_ns

        while imu_time_ns <= t_curr_ns:
            accel = camera_pose(imu_time_ns * 1e-9).rotation.T @ -imu.gravity
            imu.push(IMUMeasurement(timestamp_ns=imu_time_ns, gyroscope=gyro, accelerometer=accel))
            imu_time_ns += imu_step_ns

        preintegration = imu.preintegrate(t_prev_ns, t_curr_ns)
        prior = (
            camera_rotation_prior(preintegration, T_body_camera) if preintegration.valid else None
        )

        T_w_0 = camera_pose(t_prev_ns * 1e-9)
        T_w_1 = camera_pose(t_curr_ns * 1e-9)
        points_0 = T_w_0.inverse().transform_points(landmarks)
        points_1 = T_w_1.inverse().transform_points(landmarks)
        visible = (points_0[:, 2] > 0.5) & (points_1[:, 2] > 0.5)

        observations = camera.project(points_1[visible])
        observations += rng.normal(0.0, PIXEL_NOISE, observations.shape)
        num_outliers = int(OUTLIER_RATIO * len(observations))
        observations[:num_outliers] += rng.uniform(-60.0, 60.0, (num_outliers, 2))

        result = estimator.estimate(
            points_0[visible], observations, sigmas=PIXEL_NOISE, rotation_prior=prior
        )
        if not result.success:
            print(f"{frame:>6} {'':>8} {'':>8} {'':>6} | failed: {result.message}")
            continue

        t_err, r_err = result.pose.distance_to(T_w_1.inverse().compose(T_w_0))
        translation_errors.append(t_err)
        rotation_errors.append(np.rad2deg(r_err))

        print(
            f"{frame:>6} {preintegration.delta_time:>8.3f} "
            f"{result.num_inliers:>4}/{len(observations):<3} {result.estimate.iterations:>6} | "
            f"{t_err:>14.4f} {np.rad2deg(r_err):>14.4f}"
        )

    print("=" * 80)
    if translation_errors:
        print(f"Mean translation error: {np.mean(translation_errors):.4f} m")
        print(f"Mean rotation error:    {np.mean(rotation_errors):.4f} deg")
    print(f"IMU measurements dropped: {imu.num_dropped}")


if __name__ == "__main__":
    main()
