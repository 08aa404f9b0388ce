"""Geometry shared by the IMU and visual components.

- SE3: Rigid body transformation and SO(3)/SE(3) Lie group helpers
- StereoCamera: Rectified stereo projection model
"""

from .pose import SE3, exp_so3, log_so3, right_jacobian_so3, skew
from .stereo_camera import CameraIntrinsics, StereoCamera

__all__ = [
    # Pose
    "SE3",
    "exp_so3",
    "log_so3",
    "right_jacobian_so3",
    "skew",
    # Camera
    "StereoCamera",
    "CameraIntrinsics",
]
