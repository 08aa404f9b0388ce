"""IMU buffering and preintegration."""

from .imu_buffer import IMUBuffer, IMUMeasurement
from .imu_manager import IMUManager, IMUManagerParams
from .preintegration import (
    ImuBias,
    NavState,
    NoiseModel,
    PreintegratedMeasurements,
    PreintegrationResult,
)

__all__ = [
    # Buffer
    "IMUBuffer",
    "IMUMeasurement",
    # Preintegration
    "IMUManager",
    "IMUManagerParams",
    "ImuBias",
    "NavState",
    "NoiseModel",
    "PreintegratedMeasurements",
    "PreintegrationResult",
]
