"""Relative pose optimization from stereo correspondences."""

from .motion_estimator import (
    MotionEstimate,
    MotionEstimator,
    MotionEstimatorConfig,
    camera_rotation_prior,
)
from .optimization import (
    PoseEstimate,
    compute_reprojection_errors,
    optimize_pose_gauss_newton,
    optimize_pose_levenberg_marquardt,
)

__all__ = [
    # Optimization
    "PoseEstimate",
    "optimize_pose_gauss_newton",
    "optimize_pose_levenberg_marquardt",
    "compute_reprojection_errors",
    # Motion estimation
    "MotionEstimator",
    "MotionEstimatorConfig",
    "MotionEstimate",
    "camera_rotation_prior",
]
