"""Tests for MotionEstimator outlier rejection and IMU rotation priors."""

import numpy as np
import pytest

from stereo_vio.exceptions import ConfigurationError
from stereo_vio.frontend.pose import SE3, exp_so3
from stereo_vio.imu.preintegration import PreintegrationResult
from stereo_vio.vo.motion_estimator import (
    MotionEstimator,
    MotionEstimatorConfig,
    camera_rotation_prior,
)


@pytest.fixture
def scene_points() -> np.ndarray:
    rng = np.random.default_rng(11)
    return np.column_stack(
        [
            rng.uniform(-2.0, 2.0, 30),
            rng.uniform(-1.0, 1.0, 30),
            rng.uniform(3.0, 8.0, 30),
        ]
    )


@pytest.fixture
def target_pose(rotation) -> SE3:
    return SE3(rotation=rotation(2.0, (0, 1, 0)), translation=np.array([0.1, 0.0, 0.05]))


class TestMotionEstimatorConfig:
    """Tests for MotionEstimatorConfig validation."""

    def test_defaults_are_valid(self):
        MotionEstimatorConfig().validate()

    def test_unknown_algorithm(self):
        with pytest.raises(ConfigurationError, match="algorithm"):
            MotionEstimatorConfig(algorithm="dogleg").validate()

    def test_min_inliers_below_three(self):
        with pytest.raises(ConfigurationError, match="min_inliers"):
            MotionEstimatorConfig(min_inliers=2).validate()

    def test_estimator_validates_config(self, stereo_camera):
        with pytest.raises(ConfigurationError):
            MotionEstimator(stereo_camera, MotionEstimatorConfig(max_iters=0))


@pytest.mark.parametrize("algorithm", ["gauss_newton", "levenberg_marquardt"])
class TestMotionEstimator:
    """Tests for MotionEstimator.estimate."""

    def test_rejects_outliers(self, algorithm, stereo_camera, simulate, errors, scene_points, target_pose):
        points, observations, T_1_0 = simulate(
            stereo_camera, SE3.identity(), target_pose, scene_points, noise_sigma=0.3, seed=4
        )
        outliers = [3, 17]
        observations[outliers] += np.array([40.0, 0.0])

        config = MotionEstimatorConfig(algorithm=algorithm, max_outlier_iters=5)
        result = MotionEstimator(stereo_camera, config).estimate(points, observations)

        assert result.success
        assert result.message == ""
        assert not result.inliers[outliers].any()
        assert result.num_inliers == len(scene_points) - len(outliers)
        assert result.outlier_iterations >= 1
        assert result.reprojection_errors.shape == (len(scene_points),)

        t_err, r_err = errors(result.pose, T_1_0)
        assert t_err < 0.02
        assert r_err < np.deg2rad(0.5)

    def test_clean_data_keeps_every_point(self, algorithm, stereo_camera, simulate, scene_points, target_pose):
        points, observations, _ = simulate(
            stereo_camera, SE3.identity(), target_pose, scene_points, noise_sigma=0.3, seed=9
        )

        config = MotionEstimatorConfig(algorithm=algorithm)
        result = MotionEstimator(stereo_camera, config).estimate(points, observations)

        assert result.success
        assert result.inliers.all()
        assert result.outlier_iterations == 0

    def test_rejects_mismatched_sigmas(self, algorithm, stereo_camera, scene_points):
        observations = stereo_camera.project(scene_points)

        config = MotionEstimatorConfig(algorithm=algorithm)
        with pytest.raises(ValueError, match="Sigmas"):
            MotionEstimator(stereo_camera, config).estimate(
                scene_points, observations, sigmas=np.ones(len(scene_points) - 1)
            )

    def test_too_few_correspondences(self, algorithm, stereo_camera, scene_points):
        points = scene_points[:4]
        observations = stereo_camera.project(points)

        config = MotionEstimatorConfig(algorithm=algorithm)
        result = MotionEstimator(stereo_camera, config).estimate(points, observations)

        assert not result.success
        assert result.pose is None
        assert "Too few correspondences" in result.message

    def test_too_few_inliers(self, algorithm, stereo_camera, simulate, scene_points, target_pose):
        points, observations, _ = simulate(
            stereo_camera, SE3.identity(), target_pose, scene_points, noise_sigma=2.0, seed=6
        )

        config = MotionEstimatorConfig(algorithm=algorithm, reprojection_threshold_px=0.01)
        result = MotionEstimator(stereo_camera, config).estimate(points, observations)

        assert not result.success
        assert "Too few inliers" in result.message

    def test_degenerate_geometry(self, algorithm, stereo_camera, simulate, target_pose):
        t = np.linspace(-1.0, 1.0, 6)
        line = np.column_stack([t, 0.1 * t, np.full(6, 4.0)])
        points, observations, _ = simulate(stereo_camera, SE3.identity(), target_pose, line)

        config = MotionEstimatorConfig(algorithm=algorithm)
        result = MotionEstimator(stereo_camera, config).estimate(points, observations)

        assert not result.success
        assert result.message.startswith("Degenerate geometry")

    def test_rotation_prior_as_initial_guess(self, algorithm, stereo_camera, simulate, errors, scene_points, target_pose):
        points, observations, T_1_0 = simulate(
            stereo_camera, SE3.identity(), target_pose, scene_points, noise_sigma=0.3, seed=8
        )

        config = MotionEstimatorConfig(algorithm=algorithm)
        result = MotionEstimator(stereo_camera, config).estimate(
            points, observations, rotation_prior=T_1_0.rotation
        )

        assert result.success
        t_err, r_err = errors(result.pose, T_1_0)
        assert t_err < 0.02
        assert r_err < np.deg2rad(0.5)


class TestCameraRotationPrior:
    """Tests for camera_rotation_prior."""

    def test_identity_extrinsics(self):
        dR = exp_so3(np.array([0.0, 0.0, 0.1]))
        preintegration = PreintegrationResult(valid=True, delta_rotation=dR)

        prior = camera_rotation_prior(preintegration, SE3.identity())

        np.testing.assert_allclose(prior, exp_so3(np.array([0.0, 0.0, -0.1])), atol=1e-12)

    def test_rotated_extrinsics(self):
        dR = exp_so3(np.array([0.0, 0.0, 0.1]))
        preintegration = PreintegrationResult(valid=True, delta_rotation=dR)
        # Camera z axis along body z: the yaw stays a rotation about the camera z axis.
        R_bc = exp_so3(np.array([0.0, 0.0, np.pi / 2]))
        T_body_camera = SE3(rotation=R_bc, translation=np.array([0.1, 0.0, 0.0]))

        prior = camera_rotation_prior(preintegration, T_body_camera)

        np.testing.assert_allclose(prior, exp_so3(np.array([0.0, 0.0, -0.1])), atol=1e-12)

    def test_invalid_preintegration(self):
        with pytest.raises(ValueError, match="invalid"):
            camera_rotation_prior(PreintegrationResult.invalid(), SE3.identity())
