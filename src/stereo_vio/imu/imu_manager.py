"""IMU measurement queue with windowed preintegration.

IMUManager receives IMU measurements from the sensor thread and, on request
from the estimation thread, preintegrates every buffered measurement between
two timestamps (typically two consecutive camera frames).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from ..exceptions import ConfigurationError
from .imu_buffer import IMUBuffer, IMUMeasurement
from .preintegration import (
    DEFAULT_INTEGRATION_COVARIANCE,
    ImuBias,
    NoiseModel,
    PreintegratedMeasurements,
    PreintegrationResult,
)

logger = logging.getLogger(__name__)


@dataclass
class IMUManagerParams:
    """Configuration for IMUManager.

    Noise sigmas are continuous-time densities as found in EuRoC
    imu0/sensor.yaml.
    """

    max_queue_size: int = 1000
    allowed_misalignment_sec: float = 0.05  # Max gap between a boundary and its nearest sample
    accel_noise_sigma: float = 2.0e-3  # m/s²/√Hz
    gyro_noise_sigma: float = 1.6968e-4  # rad/s/√Hz
    accel_bias_rw_sigma: float = 3.0e-3  # m/s³/√Hz
    gyro_bias_rw_sigma: float = 1.9393e-5  # rad/s²/√Hz
    integration_covariance: float = DEFAULT_INTEGRATION_COVARIANCE
    gravity: np.ndarray = field(
        default_factory=lambda: np.array([0.0, 0.0, -9.81], dtype=np.float64)
    )

    def validate(self) -> None:
        """Check parameter ranges.

        Raises:
            ConfigurationError: If any parameter is out of range
        """
        if self.max_queue_size <= 0:
            raise ConfigurationError(
                f"max_queue_size must be positive, got {self.max_queue_size}"
            )
        if not np.isfinite(self.allowed_misalignment_sec) or self.allowed_misalignment_sec < 0:
            raise ConfigurationError(
                "allowed_misalignment_sec must be non-negative, "
                f"got {self.allowed_misalignment_sec}"
            )
        gravity = np.asarray(self.gravity, dtype=np.float64).flatten()
        if gravity.shape != (3,) or not np.all(np.isfinite(gravity)):
            raise ConfigurationError(f"gravity must be a finite 3-vector, got {self.gravity}")

    def noise_model(self) -> NoiseModel:
        """Build the noise model described by these parameters."""
        return NoiseModel.from_sigmas(
            accel_noise_sigma=self.accel_noise_sigma,
            gyro_noise_sigma=self.gyro_noise_sigma,
            accel_bias_rw_sigma=self.accel_bias_rw_sigma,
            gyro_bias_rw_sigma=self.gyro_bias_rw_sigma,
            integration_covariance=self.integration_covariance,
        )


class IMUManager:
    """Buffers IMU measurements and preintegrates them between timestamps.

    Every call to preintegrate() consumes the measurements it integrates and
    leaves the internal accumulator zeroed, whether or not it succeeds. The
    bias used for integration only changes through reset_and_update_bias().

    Example:
        manager = IMUManager(IMUManagerParams())
        for m in measurements:
            manager.push(m)
        result = manager.preintegrate(prev_frame_ns, curr_frame_ns)
        if result.valid:
            backend.add_imu_factor(result)
    """

    def __init__(
        self,
        params: IMUManagerParams | None = None,
        noise: NoiseModel | None = None,
        bias: ImuBias | None = None,
    ) -> None:
        """Initialize IMU manager.

        Args:
            params: Queue, alignment and noise configuration
            noise: Explicit noise model, overriding the sigmas in params
            bias: Initial bias estimate (default: zero)

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        self._params = params or IMUManagerParams()
        self._params.validate()

        self._noise = noise if noise is not None else self._params.noise_model()
        self._gravity = np.asarray(self._params.gravity, dtype=np.float64).flatten()
        self._allowed_misalignment_ns = int(round(self._params.allowed_misalignment_sec * 1e9))

        self._queue = IMUBuffer(max_size=self._params.max_queue_size)
        self._pim = PreintegratedMeasurements(self._noise, bias)

    def push(self, measurement: IMUMeasurement) -> None:
        """Add a measurement from the sensor thread."""
        self._queue.push(measurement)

    def discard_before(self, timestamp_ns: int) -> int:
        """Drop measurements older than ``timestamp_ns``.

        Returns:
            Number of discarded measurements
        """
        return self._queue.discard_before(timestamp_ns)

    def reset_and_update_bias(self, bias: ImuBias) -> None:
        """Zero the accumulator and integrate with ``bias`` from now on."""
        self._pim.reset(bias)

    def preintegrate(
        self,
        from_time_ns: int | None = None,
        to_time_ns: int | None = None,
    ) -> PreintegrationResult:
        """Preintegrate buffered measurements between two timestamps.

        Measurements up to ``from_time_ns`` are consumed to find the start
        sample, and measurements before ``to_time_ns`` are integrated.
        Readings are held constant across the gaps between each boundary and
        its nearest sample. A boundary of None is unbounded and is never
        checked for misalignment.

        Args:
            from_time_ns: Start of the window in nanoseconds, or None
            to_time_ns: End of the window in nanoseconds, or None

        Returns:
            PreintegrationResult; ``valid`` is False if the buffer was empty
            or no sample lies within the allowed misalignment of a boundary
        """
        try:
            return self._preintegrate(from_time_ns, to_time_ns)
        finally:
            self._pim.reset()

    def _preintegrate(
        self, from_time_ns: int | None, to_time_ns: int | None
    ) -> PreintegrationResult:
        # The start sample is the last one at or before from_time.
        anchor = self._queue.pop_if(lambda m: True)
        if anchor is None:
            return PreintegrationResult.invalid()

        if from_time_ns is not None:
            while (
                measurement := self._queue.pop_if(lambda m: m.timestamp_ns <= from_time_ns)
            ) is not None:
                anchor = measurement

        if from_time_ns is not None:
            offset_from_ns = abs(anchor.timestamp_ns - from_time_ns)
            if offset_from_ns > self._allowed_misalignment_ns:
                logger.warning(
                    "No IMU measurement within %.3f s of window start (nearest is %.3f s away)",
                    self._params.allowed_misalignment_sec,
                    offset_from_ns * 1e-9,
                )
                return PreintegrationResult.invalid()

            # Readings held constant from from_time to the first sample.
            if anchor.timestamp_ns > from_time_ns:
                self._pim.integrate(
                    anchor.accelerometer,
                    anchor.gyroscope,
                    (anchor.timestamp_ns - from_time_ns) * 1e-9,
                )

        last = anchor
        last_time_ns = anchor.timestamp_ns
        if from_time_ns is not None:
            last_time_ns = max(last_time_ns, from_time_ns)
        num_skipped = 0

        while True:
            if to_time_ns is None:
                measurement = self._queue.pop_if(lambda m: True)
            else:
                measurement = self._queue.pop_if(lambda m: m.timestamp_ns < to_time_ns)
            if measurement is None:
                break

            dt_ns = measurement.timestamp_ns - last_time_ns
            if dt_ns > 0:
                self._pim.integrate(
                    measurement.accelerometer, measurement.gyroscope, dt_ns * 1e-9
                )
                last_time_ns = measurement.timestamp_ns
                last = measurement
            else:
                num_skipped += 1
                logger.warning(
                    "Skipping IMU measurement at %d ns: non-positive time step of %d ns",
                    measurement.timestamp_ns,
                    dt_ns,
                )

        if to_time_ns is not None:
            offset_to_ns = abs(last.timestamp_ns - to_time_ns)
            if offset_to_ns > self._allowed_misalignment_ns:
                logger.warning(
                    "No IMU measurement within %.3f s of window end (nearest is %.3f s away)",
                    self._params.allowed_misalignment_sec,
                    offset_to_ns * 1e-9,
                )
                return PreintegrationResult.invalid()

            # Readings held constant from the last sample to to_time.
            if to_time_ns > last_time_ns:
                self._pim.integrate(
                    last.accelerometer,
                    last.gyroscope,
                    (to_time_ns - last_time_ns) * 1e-9,
                )

        return self._pim.to_result(
            from_time_ns=anchor.timestamp_ns,
            to_time_ns=last.timestamp_ns,
            num_skipped=num_skipped,
        )

    @property
    def params(self) -> IMUManagerParams:
        """Return the manager configuration."""
        return self._params

    @property
    def noise(self) -> NoiseModel:
        """Return the IMU noise model."""
        return self._noise

    @property
    def bias(self) -> ImuBias:
        """Return the bias currently used for integration."""
        return self._pim.bias

    @property
    def gravity(self) -> np.ndarray:
        """Return gravity vector in world frame."""
        return self._gravity.copy()

    @property
    def num_buffered(self) -> int:
        """Number of measurements waiting in the queue."""
        return len(self._queue)

    @property
    def num_dropped(self) -> int:
        """Number of measurements evicted because the queue was full."""
        return self._queue.num_dropped

    @property
    def accumulator_is_zero(self) -> bool:
        """True if the internal accumulator holds no integrated data."""
        return self._pim.is_zero
