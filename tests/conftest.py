"""Shared fixtures for stereo_vio tests."""

import numpy as np
import pytest

from stereo_vio.frontend.pose import SE3, exp_so3
from stereo_vio.frontend.stereo_camera import CameraIntrinsics, StereoCamera


@pytest.fixture
def stereo_camera() -> StereoCamera:
    """EuRoC-like rectified stereo camera with a 20 cm baseline."""
    intrinsics = CameraIntrinsics(fx=415.876509, fy=415.876509, cx=376.0, cy=240.0)
    return StereoCamera(intrinsics=intrinsics, baseline=0.2, image_size=(752, 480))


@pytest.fixture
def simulate():
    """Return a function that simulates 3D-2D correspondences.

    The returned function takes the world poses of the reference and target
    cameras (T_world_cam) and world points, and returns the points in the
    reference camera frame, their observations in the target camera, and
    the true T_target_reference.
    """

    def _simulate(
        camera: StereoCamera,
        T_w_0: SE3,
        T_w_1: SE3,
        points_world: np.ndarray,
        noise_sigma: float = 0.0,
        stereo: bool = False,
        seed: int = 0,
    ) -> tuple[np.ndarray, np.ndarray, SE3]:
        points_world = np.asarray(points_world, dtype=np.float64)
        points_0 = T_w_0.inverse().transform_points(points_world)
        points_1 = T_w_1.inverse().transform_points(points_world)

        if stereo:
            observations = camera.project_stereo(points_1)
        else:
            observations = camera.project(points_1)

        if noise_sigma > 0:
            rng = np.random.default_rng(seed)
            observations = observations + rng.normal(0.0, noise_sigma, observations.shape)

        T_1_0 = T_w_1.inverse().compose(T_w_0)
        return points_0, observations, T_1_0

    return _simulate


@pytest.fixture
def grid_points() -> np.ndarray:
    """Twelve well-spread points 2-6 m in front of the origin."""
    xs = np.array([-1.5, -0.5, 0.5, 1.5])
    ys = np.array([-0.8, 0.0, 0.8])
    points = []
    for i, x in enumerate(xs):
        for j, y in enumerate(ys):
            points.append([x, y, 2.0 + (i + 2 * j) % 5])
    return np.array(points, dtype=np.float64)


def pose_errors(estimated: SE3, expected: SE3) -> tuple[float, float]:
    """Translation (m) and rotation (rad) error between two transforms."""
    t_err = float(np.linalg.norm(estimated.translation - expected.translation))
    R_err = estimated.rotation.T @ expected.rotation
    r_err = SE3(rotation=R_err, translation=np.zeros(3)).rotation_angle()
    return t_err, r_err


@pytest.fixture
def errors():
    """Return the pose error function."""
    return pose_errors


def small_rotation(degrees: float, axis: tuple[float, float, float]) -> np.ndarray:
    """Rotation matrix of ``degrees`` about ``axis``."""
    axis_arr = np.asarray(axis, dtype=np.float64)
    return exp_so3(np.deg2rad(degrees) * axis_arr / np.linalg.norm(axis_arr))


@pytest.fixture
def rotation():
    """Return the axis-angle rotation helper."""
    return small_rotation
