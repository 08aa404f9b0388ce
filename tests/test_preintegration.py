"""Tests for on-manifold IMU preintegration."""

import numpy as np
import pytest

from stereo_vio.exceptions import ConfigurationError
from stereo_vio.frontend.pose import SE3, exp_so3
from stereo_vio.imu.preintegration import (
    ImuBias,
    NavState,
    NoiseModel,
    PreintegratedMeasurements,
    PreintegrationResult,
)

GRAVITY = np.array([0.0, 0.0, -9.81])


@pytest.fixture
def noise() -> NoiseModel:
    return NoiseModel.from_sigmas(
        accel_noise_sigma=2.0e-3,
        gyro_noise_sigma=1.6968e-4,
        accel_bias_rw_sigma=3.0e-3,
        gyro_bias_rw_sigma=1.9393e-5,
    )


def _integrate_constant(
    pim: PreintegratedMeasurements, accel, gyro, steps: int = 20, dt: float = 0.005
) -> PreintegrationResult:
    for _ in range(steps):
        pim.integrate(np.asarray(accel, dtype=float), np.asarray(gyro, dtype=float), dt)
    return pim.to_result(from_time_ns=0, to_time_ns=int(steps * dt * 1e9))


class TestNoiseModel:
    """Tests for NoiseModel construction."""

    def test_from_sigmas_squares_densities(self, noise):
        np.testing.assert_allclose(noise.accel_covariance, np.eye(3) * 2.0e-3**2)
        np.testing.assert_allclose(noise.gyro_covariance, np.eye(3) * 1.6968e-4**2)

    def test_negative_sigma_rejected(self):
        with pytest.raises(ConfigurationError):
            NoiseModel.from_sigmas(
                accel_noise_sigma=-1.0,
                gyro_noise_sigma=1e-4,
                accel_bias_rw_sigma=1e-3,
                gyro_bias_rw_sigma=1e-5,
            )

    def test_asymmetric_covariance_rejected(self):
        bad = np.eye(3)
        bad[0, 1] = 0.5
        with pytest.raises(ConfigurationError, match="symmetric"):
            NoiseModel(
                accel_covariance=bad,
                gyro_covariance=np.eye(3),
                integration_covariance=np.eye(3),
                accel_bias_rw_covariance=np.eye(3),
                gyro_bias_rw_covariance=np.eye(3),
            )


class TestPreintegratedMeasurements:
    """Tests for the preintegration accumulator."""

    def test_starts_at_zero(self, noise):
        pim = PreintegratedMeasurements(noise)
        assert pim.is_zero
        assert pim.delta_time == 0.0

    def test_constant_rotation_rate(self, noise):
        pim = PreintegratedMeasurements(noise)
        result = _integrate_constant(pim, [0.0, 0.0, 0.0], [0.0, 0.0, 1.0])
        np.testing.assert_allclose(
            result.delta_rotation, exp_so3(np.array([0.0, 0.0, 0.1])), atol=1e-12
        )
        assert result.delta_time == pytest.approx(0.1)
        assert result.num_integrated == 20

    def test_constant_acceleration(self, noise):
        pim = PreintegratedMeasurements(noise)
        a = np.array([1.0, -0.5, 2.0])
        result = _integrate_constant(pim, a, [0.0, 0.0, 0.0])
        np.testing.assert_allclose(result.delta_rotation, np.eye(3), atol=1e-12)
        np.testing.assert_allclose(result.delta_velocity, a * 0.1, atol=1e-12)
        np.testing.assert_allclose(result.delta_position, 0.5 * a * 0.1**2, atol=1e-12)

    def test_bias_is_subtracted(self, noise):
        bias = ImuBias(accelerometer=np.zeros(3), gyroscope=np.array([0.0, 0.0, 1.0]))
        pim = PreintegratedMeasurements(noise, bias)
        result = _integrate_constant(pim, [0.0, 0.0, 0.0], [0.0, 0.0, 1.0])
        np.testing.assert_allclose(result.delta_rotation, np.eye(3), atol=1e-12)
        assert result.bias is bias

    def test_covariance_is_symmetric_psd_and_grows(self, noise):
        pim = PreintegratedMeasurements(noise)
        short = _integrate_constant(pim, [0.1, 0.2, 9.8], [0.1, -0.2, 0.3], steps=5)
        long = _integrate_constant(pim, [0.1, 0.2, 9.8], [0.1, -0.2, 0.3], steps=15)

        for result in (short, long):
            np.testing.assert_allclose(result.covariance, result.covariance.T, atol=1e-20)
            assert np.min(np.linalg.eigvalsh(result.covariance)) >= -1e-15
        assert np.trace(long.covariance) > np.trace(short.covariance)
        assert long.preintegration_covariance.shape == (9, 9)

    def test_result_is_independent_of_accumulator(self, noise):
        pim = PreintegratedMeasurements(noise)
        result = _integrate_constant(pim, [1.0, 0.0, 0.0], [0.0, 0.0, 0.0])
        snapshot = result.delta_velocity.copy()
        pim.integrate(np.array([1.0, 0.0, 0.0]), np.zeros(3), 0.005)
        np.testing.assert_array_equal(result.delta_velocity, snapshot)

    def test_reset_zeroes_and_replaces_bias(self, noise):
        pim = PreintegratedMeasurements(noise)
        _integrate_constant(pim, [1.0, 0.0, 0.0], [0.0, 0.0, 1.0])
        new_bias = ImuBias(accelerometer=np.array([0.1, 0.0, 0.0]))
        pim.reset(new_bias)
        assert pim.is_zero
        assert pim.bias is new_bias

    def test_non_positive_dt_rejected(self, noise):
        pim = PreintegratedMeasurements(noise)
        with pytest.raises(ValueError, match="positive"):
            pim.integrate(np.zeros(3), np.zeros(3), 0.0)


class TestPreintegrationResult:
    """Tests for bias correction and state prediction."""

    def test_invalid_result(self):
        result = PreintegrationResult.invalid()
        assert not result.valid
        assert result.from_time_ns is None
        assert result.to_time_ns is None

    def test_gyro_bias_correction_matches_reintegration(self, noise):
        result = _integrate_constant(
            PreintegratedMeasurements(noise), [0.0, 0.0, 0.0], [0.0, 0.0, 1.0]
        )
        new_bias = ImuBias(gyroscope=np.array([0.0, 0.0, 0.05]))
        expected = _integrate_constant(
            PreintegratedMeasurements(noise, new_bias), [0.0, 0.0, 0.0], [0.0, 0.0, 1.0]
        )

        dR, _, _ = result.bias_corrected_delta(new_bias)
        np.testing.assert_allclose(dR, expected.delta_rotation, atol=1e-9)

    def test_accel_bias_correction_matches_reintegration(self, noise):
        a = [0.5, 0.0, 9.81]
        result = _integrate_constant(PreintegratedMeasurements(noise), a, [0.0, 0.0, 0.0])
        new_bias = ImuBias(accelerometer=np.array([0.1, -0.2, 0.05]))
        expected = _integrate_constant(
            PreintegratedMeasurements(noise, new_bias), a, [0.0, 0.0, 0.0]
        )

        _, dv, dp = result.bias_corrected_delta(new_bias)
        np.testing.assert_allclose(dv, expected.delta_velocity, atol=1e-12)
        np.testing.assert_allclose(dp, expected.delta_position, atol=1e-12)

    def test_predict_hovering_stays_put(self, noise):
        result = _integrate_constant(
            PreintegratedMeasurements(noise), [0.0, 0.0, 9.81], [0.0, 0.0, 0.0]
        )
        start = NavState(pose=SE3(rotation=np.eye(3), translation=np.array([1.0, 2.0, 3.0])), velocity=np.zeros(3))
        predicted = result.predict(start, GRAVITY)
        np.testing.assert_allclose(predicted.pose.translation, [1.0, 2.0, 3.0], atol=1e-12)
        np.testing.assert_allclose(predicted.velocity, np.zeros(3), atol=1e-12)

    def test_predict_free_fall(self, noise):
        result = _integrate_constant(
            PreintegratedMeasurements(noise), [0.0, 0.0, 0.0], [0.0, 0.0, 0.0]
        )
        start = NavState(pose=SE3.identity(), velocity=np.array([1.0, 0.0, 0.0]))
        predicted = result.predict(start, GRAVITY)
        np.testing.assert_allclose(
            predicted.pose.translation, [0.1, 0.0, 0.5 * -9.81 * 0.1**2], atol=1e-12
        )
        np.testing.assert_allclose(predicted.velocity, [1.0, 0.0, -0.981], atol=1e-12)
