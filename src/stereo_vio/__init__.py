"""Stereo visual-inertial motion estimation kernel."""

__version__ = "0.1.0"

# Re-export main classes for convenient imports
from .exceptions import (
    ConfigurationError,
    DegenerateGeometryError,
    EmptyBufferError,
    StereoVIOError,
)
from .frontend import SE3, CameraIntrinsics, StereoCamera
from .imu import (
    IMUBuffer,
    IMUManager,
    IMUManagerParams,
    IMUMeasurement,
    ImuBias,
    NavState,
    NoiseModel,
    PreintegrationResult,
)
from .vo import (
    MotionEstimate,
    MotionEstimator,
    MotionEstimatorConfig,
    PoseEstimate,
    camera_rotation_prior,
    compute_reprojection_errors,
    optimize_pose_gauss_newton,
    optimize_pose_levenberg_marquardt,
)
from .config import load_imu_params, load_motion_estimator_config, load_stereo_camera

__all__ = [
    "__version__",
    # Errors
    "StereoVIOError",
    "ConfigurationError",
    "DegenerateGeometryError",
    "EmptyBufferError",
    # Geometry
    "SE3",
    "StereoCamera",
    "CameraIntrinsics",
    # IMU
    "IMUBuffer",
    "IMUMeasurement",
    "IMUManager",
    "IMUManagerParams",
    "ImuBias",
    "NavState",
    "NoiseModel",
    "PreintegrationResult",
    # Pose optimization
    "PoseEstimate",
    "optimize_pose_gauss_newton",
    "optimize_pose_levenberg_marquardt",
    "compute_reprojection_errors",
    "MotionEstimator",
    "MotionEstimatorConfig",
    "MotionEstimate",
    "camera_rotation_prior",
    # Configuration
    "load_imu_params",
    "load_motion_estimator_config",
    "load_stereo_camera",
]
