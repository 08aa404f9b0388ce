"""On-manifold IMU preintegration.

Summarizes a window of IMU measurements into one relative rotation, velocity
and position increment expressed in the body frame at the start of the window,
together with their covariance and first-order Jacobians w.r.t. the IMU bias
(Forster et al., "On-Manifold Preintegration for Real-Time Visual-Inertial
Odometry", TRO 2017).

The increments do not contain gravity. It is applied when predicting a
navigation state:

    R_j = R_i @ dR
    v_j = v_i + g * dt + R_i @ dv
    p_j = p_i + v_i * dt + 0.5 * g * dt² + R_i @ dp

The covariance is 15x15 over the error state [dθ, dv, dp, δb_a, δb_g].
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from ..exceptions import ConfigurationError
from ..frontend.pose import SE3, exp_so3, right_jacobian_so3, skew

# Slices into the 15-dim error state.
ROT = slice(0, 3)
VEL = slice(3, 6)
POS = slice(6, 9)
BIAS_ACC = slice(9, 12)
BIAS_GYRO = slice(12, 15)

DEFAULT_INTEGRATION_COVARIANCE = 1e-8


def _as_covariance(name: str, value: np.ndarray | float) -> np.ndarray:
    """Validate a 3x3 covariance, promoting scalars to isotropic matrices."""
    matrix = np.asarray(value, dtype=np.float64)
    if matrix.ndim == 0:
        matrix = float(matrix) * np.eye(3)
    if matrix.shape != (3, 3):
        raise ConfigurationError(f"{name} must be 3x3, got {matrix.shape}")
    if not np.all(np.isfinite(matrix)):
        raise ConfigurationError(f"{name} contains non-finite values")
    if not np.allclose(matrix, matrix.T, atol=1e-12):
        raise ConfigurationError(f"{name} is not symmetric")
    if np.min(np.linalg.eigvalsh(matrix)) < -1e-12:
        raise ConfigurationError(f"{name} is not positive semi-definite")
    matrix = matrix.copy()
    matrix.flags.writeable = False
    return matrix


@dataclass(frozen=True, eq=False)
class NoiseModel:
    """Continuous-time IMU noise covariances.

    Attributes:
        accel_covariance: Accelerometer white noise ((m/s²)²·s)
        gyro_covariance: Gyroscope white noise ((rad/s)²·s)
        integration_covariance: Position integration error (m²/s)
        accel_bias_rw_covariance: Accelerometer bias random walk
        gyro_bias_rw_covariance: Gyroscope bias random walk
    """

    accel_covariance: np.ndarray
    gyro_covariance: np.ndarray
    integration_covariance: np.ndarray
    accel_bias_rw_covariance: np.ndarray
    gyro_bias_rw_covariance: np.ndarray

    def __post_init__(self) -> None:
        """Validate every covariance.

        Raises:
            ConfigurationError: If a covariance is malformed
        """
        for name in (
            "accel_covariance",
            "gyro_covariance",
            "integration_covariance",
            "accel_bias_rw_covariance",
            "gyro_bias_rw_covariance",
        ):
            object.__setattr__(self, name, _as_covariance(name, getattr(self, name)))

    @classmethod
    def from_sigmas(
        cls,
        accel_noise_sigma: float,
        gyro_noise_sigma: float,
        accel_bias_rw_sigma: float,
        gyro_bias_rw_sigma: float,
        integration_covariance: float = DEFAULT_INTEGRATION_COVARIANCE,
    ) -> NoiseModel:
        """Build isotropic covariances (sigma² · I) from standard deviations.

        Raises:
            ConfigurationError: If any sigma is negative
        """
        sigmas = {
            "accel_noise_sigma": accel_noise_sigma,
            "gyro_noise_sigma": gyro_noise_sigma,
            "accel_bias_rw_sigma": accel_bias_rw_sigma,
            "gyro_bias_rw_sigma": gyro_bias_rw_sigma,
        }
        for name, sigma in sigmas.items():
            if not np.isfinite(sigma) or sigma < 0:
                raise ConfigurationError(f"{name} must be non-negative, got {sigma}")

        return cls(
            accel_covariance=np.eye(3) * accel_noise_sigma**2,
            gyro_covariance=np.eye(3) * gyro_noise_sigma**2,
            integration_covariance=np.eye(3) * integration_covariance,
            accel_bias_rw_covariance=np.eye(3) * accel_bias_rw_sigma**2,
            gyro_bias_rw_covariance=np.eye(3) * gyro_bias_rw_sigma**2,
        )


@dataclass(frozen=True, eq=False)
class ImuBias:
    """Accelerometer and gyroscope bias estimate.

    Attributes:
        accelerometer: Accelerometer bias (3,) in m/s²
        gyroscope: Gyroscope bias (3,) in rad/s
    """

    accelerometer: np.ndarray = field(default_factory=lambda: np.zeros(3))
    gyroscope: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self) -> None:
        """Ensure arrays have correct shape."""
        accel = np.array(self.accelerometer, dtype=np.float64).flatten()
        gyro = np.array(self.gyroscope, dtype=np.float64).flatten()
        if accel.shape != (3,) or gyro.shape != (3,):
            raise ValueError(
                f"Bias vectors must be (3,), got {accel.shape} and {gyro.shape}"
            )
        object.__setattr__(self, "accelerometer", accel)
        object.__setattr__(self, "gyroscope", gyro)


@dataclass
class NavState:
    """Navigation state of the IMU body.

    Attributes:
        pose: T_world_body
        velocity: Linear velocity in world frame (3,)
    """

    pose: SE3
    velocity: np.ndarray  # (3,) world frame

    def __post_init__(self) -> None:
        """Ensure velocity has correct shape."""
        self.velocity = np.asarray(self.velocity, dtype=np.float64).flatten()


@dataclass
class PreintegrationResult:
    """Output of one preintegration window.

    Attributes:
        valid: False if the window could not be integrated
        from_time_ns: Timestamp of the first IMU sample used (None if invalid)
        to_time_ns: Timestamp of the last IMU sample used (None if invalid)
        delta_rotation: Relative rotation dR (3x3)
        delta_velocity: Velocity increment dv in the start body frame (3,)
        delta_position: Position increment dp in the start body frame (3,)
        delta_time: Integrated duration in seconds
        covariance: 15x15 covariance over [dθ, dv, dp, δb_a, δb_g]
        bias: Bias in effect during integration
        num_integrated: Number of integration steps, synthetic ones included
        num_skipped: Number of samples skipped for non-positive time deltas
    """

    valid: bool
    from_time_ns: int | None = None
    to_time_ns: int | None = None
    delta_rotation: np.ndarray = field(default_factory=lambda: np.eye(3))
    delta_velocity: np.ndarray = field(default_factory=lambda: np.zeros(3))
    delta_position: np.ndarray = field(default_factory=lambda: np.zeros(3))
    delta_time: float = 0.0
    covariance: np.ndarray = field(default_factory=lambda: np.zeros((15, 15)))
    bias: ImuBias = field(default_factory=ImuBias)
    num_integrated: int = 0
    num_skipped: int = 0
    # Jacobians of the deltas w.r.t. the bias, for first-order correction.
    jacobian_rotation_gyro: np.ndarray = field(default_factory=lambda: np.zeros((3, 3)))
    jacobian_velocity_accel: np.ndarray = field(default_factory=lambda: np.zeros((3, 3)))
    jacobian_velocity_gyro: np.ndarray = field(default_factory=lambda: np.zeros((3, 3)))
    jacobian_position_accel: np.ndarray = field(default_factory=lambda: np.zeros((3, 3)))
    jacobian_position_gyro: np.ndarray = field(default_factory=lambda: np.zeros((3, 3)))

    @classmethod
    def invalid(cls) -> PreintegrationResult:
        """Result for a window that could not be integrated."""
        return cls(valid=False)

    @property
    def preintegration_covariance(self) -> np.ndarray:
        """9x9 covariance over [dθ, dv, dp]."""
        return self.covariance[:9, :9].copy()

    def bias_corrected_delta(
        self, bias: ImuBias
    ) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Correct the deltas to first order for a new bias estimate.

        Returns:
            Tuple of (dR, dv, dp)
        """
        d_ba = bias.accelerometer - self.bias.accelerometer
        d_bg = bias.gyroscope - self.bias.gyroscope

        dR = self.delta_rotation @ exp_so3(self.jacobian_rotation_gyro @ d_bg)
        dv = (
            self.delta_velocity
            + self.jacobian_velocity_accel @ d_ba
            + self.jacobian_velocity_gyro @ d_bg
        )
        dp = (
            self.delta_position
            + self.jacobian_position_accel @ d_ba
            + self.jacobian_position_gyro @ d_bg
        )
        return dR, dv, dp

    def predict(
        self,
        state: NavState,
        gravity: np.ndarray,
        bias: ImuBias | None = None,
    ) -> NavState:
        """Predict the navigation state at the end of the window.

        Args:
            state: State at the start of the window
            gravity: Gravity vector in world frame
            bias: Optional updated bias; deltas are corrected to first order

        Returns:
            Predicted state at the end of the window
        """
        if bias is None:
            dR, dv, dp = self.delta_rotation, self.delta_velocity, self.delta_position
        else:
            dR, dv, dp = self.bias_corrected_delta(bias)

        g = np.asarray(gravity, dtype=np.float64)
        dt = self.delta_time
        R_i = state.pose.rotation

        position = state.pose.translation + state.velocity * dt + 0.5 * g * dt**2 + R_i @ dp
        velocity = state.velocity + g * dt + R_i @ dv
        return NavState(pose=SE3(rotation=R_i @ dR, translation=position), velocity=velocity)


class PreintegratedMeasurements:
    """Mutable accumulator for preintegrated IMU measurements.

    Owned by a single IMUManager; callers receive PreintegrationResult
    copies, never the accumulator itself.
    """

    def __init__(self, noise: NoiseModel, bias: ImuBias | None = None) -> None:
        self._noise = noise
        self.reset(bias if bias is not None else ImuBias())

    def reset(self, bias: ImuBias | None = None) -> None:
        """Zero the accumulator, optionally replacing the bias."""
        if bias is not None:
            self._bias = bias
        self._delta_R = np.eye(3)
        self._delta_v = np.zeros(3)
        self._delta_p = np.zeros(3)
        self._delta_t = 0.0
        self._covariance = np.zeros((15, 15))
        self._J_R_bg = np.zeros((3, 3))
        self._J_v_ba = np.zeros((3, 3))
        self._J_v_bg = np.zeros((3, 3))
        self._J_p_ba = np.zeros((3, 3))
        self._J_p_bg = np.zeros((3, 3))
        self._num_integrated = 0

    def integrate(self, accelerometer: np.ndarray, gyroscope: np.ndarray, dt: float) -> None:
        """Integrate one measurement held constant over ``dt`` seconds.

        Raises:
            ValueError: If dt is not positive
        """
        if dt <= 0:
            raise ValueError(f"Integration step must be positive, got {dt}")

        a = np.asarray(accelerometer, dtype=np.float64) - self._bias.accelerometer
        w = np.asarray(gyroscope, dtype=np.float64) - self._bias.gyroscope

        R = self._delta_R
        dR_inc = exp_so3(w * dt)
        Jr = right_jacobian_so3(w * dt)
        R_a_skew = R @ skew(a)
        dt2 = dt * dt
        I3 = np.eye(3)

        # Error-state transition and noise Jacobians, evaluated at the old dR.
        A = np.eye(15)
        A[ROT, ROT] = dR_inc.T
        A[ROT, BIAS_GYRO] = -Jr * dt
        A[VEL, ROT] = -R_a_skew * dt
        A[VEL, BIAS_ACC] = -R * dt
        A[POS, ROT] = -0.5 * R_a_skew * dt2
        A[POS, VEL] = I3 * dt
        A[POS, BIAS_ACC] = -0.5 * R * dt2

        B = np.zeros((15, 3))
        B[VEL] = R * dt
        B[POS] = 0.5 * R * dt2

        C = np.zeros((15, 3))
        C[ROT] = Jr * dt

        noise = self._noise
        cov = (
            A @ self._covariance @ A.T
            + B @ (noise.accel_covariance / dt) @ B.T
            + C @ (noise.gyro_covariance / dt) @ C.T
        )
        cov[POS, POS] += noise.integration_covariance * dt
        cov[BIAS_ACC, BIAS_ACC] += noise.accel_bias_rw_covariance * dt
        cov[BIAS_GYRO, BIAS_GYRO] += noise.gyro_bias_rw_covariance * dt
        self._covariance = 0.5 * (cov + cov.T)

        # Bias Jacobians: position first, it depends on the old velocity terms.
        self._J_p_ba = self._J_p_ba + self._J_v_ba * dt - 0.5 * R * dt2
        self._J_p_bg = self._J_p_bg + self._J_v_bg * dt - 0.5 * R_a_skew @ self._J_R_bg * dt2
        self._J_v_ba = self._J_v_ba - R * dt
        self._J_v_bg = self._J_v_bg - R_a_skew @ self._J_R_bg * dt
        self._J_R_bg = dR_inc.T @ self._J_R_bg - Jr * dt

        self._delta_p = self._delta_p + self._delta_v * dt + 0.5 * (R @ a) * dt2
        self._delta_v = self._delta_v + (R @ a) * dt
        self._delta_R = R @ dR_inc
        self._delta_t += dt
        self._num_integrated += 1

    def to_result(
        self, from_time_ns: int, to_time_ns: int, num_skipped: int = 0
    ) -> PreintegrationResult:
        """Snapshot the accumulator into an independent result."""
        return PreintegrationResult(
            valid=True,
            from_time_ns=from_time_ns,
            to_time_ns=to_time_ns,
            delta_rotation=self._delta_R.copy(),
            delta_velocity=self._delta_v.copy(),
            delta_position=self._delta_p.copy(),
            delta_time=self._delta_t,
            covariance=self._covariance.copy(),
            bias=self._bias,
            num_integrated=self._num_integrated,
            num_skipped=num_skipped,
            jacobian_rotation_gyro=self._J_R_bg.copy(),
            jacobian_velocity_accel=self._J_v_ba.copy(),
            jacobian_velocity_gyro=self._J_v_bg.copy(),
            jacobian_position_accel=self._J_p_ba.copy(),
            jacobian_position_gyro=self._J_p_bg.copy(),
        )

    @property
    def bias(self) -> ImuBias:
        """Bias subtracted from every integrated measurement."""
        return self._bias

    @property
    def delta_time(self) -> float:
        """Integrated duration in seconds."""
        return self._delta_t

    @property
    def is_zero(self) -> bool:
        """True if nothing has been integrated since the last reset."""
        return self._num_integrated == 0
