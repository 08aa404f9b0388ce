"""Rectified stereo camera projection model."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import numpy as np
import yaml

from ..exceptions import ConfigurationError


@dataclass(frozen=True)
class CameraIntrinsics:
    """Camera intrinsic parameters (pinhole model)."""

    fx: float  # Focal length x (pixels)
    fy: float  # Focal length y (pixels)
    cx: float  # Principal point x (pixels)
    cy: float  # Principal point y (pixels)


class StereoCamera:
    """Rectified stereo pair sharing one set of pinhole intrinsics.

    The right camera is the left camera translated by ``baseline`` meters
    along +x, so a point (X, Y, Z) in the left camera frame projects to

        u_left  = fx * X / Z + cx
        v       = fy * Y / Z + cy
        u_right = fx * (X - baseline) / Z + cx

    All points are expressed in the left camera frame.
    """

    def __init__(
        self,
        intrinsics: CameraIntrinsics,
        baseline: float,
        image_size: tuple[int, int] | None = None,
    ) -> None:
        """Initialize stereo camera.

        Args:
            intrinsics: Rectified left camera intrinsics
            baseline: Distance between the camera centers in meters
            image_size: Optional (width, height) in pixels

        Raises:
            ConfigurationError: If focal lengths or baseline are not positive
        """
        if intrinsics.fx <= 0 or intrinsics.fy <= 0:
            raise ConfigurationError(
                f"Focal lengths must be positive, got fx={intrinsics.fx}, fy={intrinsics.fy}"
            )
        if baseline <= 0:
            raise ConfigurationError(f"Baseline must be positive, got {baseline}")

        self._intrinsics = intrinsics
        self._baseline = float(baseline)
        self._image_size = image_size

    @classmethod
    def from_euroc_yaml(
        cls, cam0_yaml_path: str | Path, cam1_yaml_path: str | Path
    ) -> StereoCamera:
        """Create a stereo camera from EuRoC sensor.yaml files.

        Intrinsics are taken from cam0; the baseline is the distance between
        the two camera centers given by their T_BS extrinsics.

        Args:
            cam0_yaml_path: Path to left camera sensor.yaml
            cam1_yaml_path: Path to right camera sensor.yaml

        Raises:
            FileNotFoundError: If calibration files don't exist
            ConfigurationError: If calibration data is invalid
        """
        intrinsics, T_BS_left, resolution = cls._load_calibration(cam0_yaml_path)
        _, T_BS_right, _ = cls._load_calibration(cam1_yaml_path)

        # T_cam1_cam0 = inv(T_BS_cam1) @ T_BS_cam0
        T_cam1_cam0 = np.linalg.inv(T_BS_right) @ T_BS_left
        baseline = float(np.linalg.norm(T_cam1_cam0[:3, 3]))

        return cls(intrinsics=intrinsics, baseline=baseline, image_size=resolution)

    @staticmethod
    def _load_calibration(
        yaml_path: str | Path,
    ) -> tuple[CameraIntrinsics, np.ndarray, tuple[int, int] | None]:
        """Parse EuRoC sensor.yaml calibration file.

        Returns:
            Tuple of (intrinsics, T_BS, resolution) where T_BS is a 4x4 transform
        """
        path = Path(yaml_path)
        if not path.exists():
            raise FileNotFoundError(f"Calibration file not found: {yaml_path}")

        with open(path, "r") as f:
            try:
                data = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Could not parse {yaml_path}: {e}") from e

        if not isinstance(data, dict):
            raise ConfigurationError(f"Expected a mapping in {yaml_path}")

        # Parse intrinsics [fu, fv, cu, cv]
        intrinsics_list = data.get("intrinsics")
        if intrinsics_list is None or len(intrinsics_list) != 4:
            raise ConfigurationError(f"Invalid intrinsics in {yaml_path}")

        intrinsics = CameraIntrinsics(
            fx=float(intrinsics_list[0]),
            fy=float(intrinsics_list[1]),
            cx=float(intrinsics_list[2]),
            cy=float(intrinsics_list[3]),
        )

        T_BS_data = (data.get("T_BS") or {}).get("data")
        if T_BS_data is None or len(T_BS_data) != 16:
            raise ConfigurationError(f"Invalid T_BS transform in {yaml_path}")
        T_BS = np.array(T_BS_data, dtype=np.float64).reshape(4, 4)

        resolution = data.get("resolution")
        image_size = (int(resolution[0]), int(resolution[1])) if resolution else None

        return intrinsics, T_BS, image_size

    def project(self, points: np.ndarray) -> np.ndarray:
        """Project Nx3 left-camera points into the left image.

        Returns:
            Nx2 array of (u, v) pixel coordinates
        """
        points = np.atleast_2d(np.asarray(points, dtype=np.float64))
        k = self._intrinsics
        inv_z = 1.0 / points[:, 2]
        u = k.fx * points[:, 0] * inv_z + k.cx
        v = k.fy * points[:, 1] * inv_z + k.cy
        return np.stack([u, v], axis=1)

    def project_stereo(self, points: np.ndarray) -> np.ndarray:
        """Project Nx3 left-camera points into both rectified images.

        Returns:
            Nx3 array of (u_left, v, u_right) pixel coordinates
        """
        points = np.atleast_2d(np.asarray(points, dtype=np.float64))
        uv = self.project(points)
        u_right = uv[:, 0] - self._intrinsics.fx * self._baseline / points[:, 2]
        return np.column_stack([uv, u_right])

    def projection_jacobian(self, points: np.ndarray, stereo: bool = False) -> np.ndarray:
        """Jacobian of the projection w.r.t. the 3D point.

        Args:
            points: Nx3 points in the left camera frame
            stereo: If True, differentiate (u_left, v, u_right), else (u, v)

        Returns:
            (N, 2, 3) or (N, 3, 3) array of Jacobians
        """
        points = np.atleast_2d(np.asarray(points, dtype=np.float64))
        k = self._intrinsics
        X, Y, Z = points[:, 0], points[:, 1], points[:, 2]
        inv_z = 1.0 / Z
        inv_z2 = inv_z * inv_z

        rows = 3 if stereo else 2
        J = np.zeros((len(points), rows, 3), dtype=np.float64)
        J[:, 0, 0] = k.fx * inv_z
        J[:, 0, 2] = -k.fx * X * inv_z2
        J[:, 1, 1] = k.fy * inv_z
        J[:, 1, 2] = -k.fy * Y * inv_z2
        if stereo:
            J[:, 2, 0] = k.fx * inv_z
            J[:, 2, 2] = -k.fx * (X - self._baseline) * inv_z2
        return J

    def triangulate(self, observations: np.ndarray) -> np.ndarray:
        """Triangulate rectified stereo observations from their disparity.

        Args:
            observations: Nx3 array of (u_left, v, u_right)

        Returns:
            Nx3 array of 3D points in the left camera frame (NaN where the
            disparity is not positive)
        """
        observations = np.atleast_2d(np.asarray(observations, dtype=np.float64))
        k = self._intrinsics
        disparity = observations[:, 0] - observations[:, 2]

        points = np.full((len(observations), 3), np.nan, dtype=np.float64)
        valid = disparity > 0
        Z = k.fx * self._baseline / disparity[valid]
        points[valid, 0] = (observations[valid, 0] - k.cx) * Z / k.fx
        points[valid, 1] = (observations[valid, 1] - k.cy) * Z / k.fy
        points[valid, 2] = Z
        return points

    @property
    def intrinsics(self) -> CameraIntrinsics:
        """Return the rectified left camera intrinsics."""
        return self._intrinsics

    @property
    def baseline_meters(self) -> float:
        """Return baseline distance between cameras in meters."""
        return self._baseline

    @property
    def image_size(self) -> tuple[int, int] | None:
        """Return image size as (width, height), if known."""
        return self._image_size

    def __repr__(self) -> str:
        """Return string representation."""
        k = self._intrinsics
        return (
            f"StereoCamera(fx={k.fx:.2f}, fy={k.fy:.2f}, cx={k.cx:.2f}, "
            f"cy={k.cy:.2f}, baseline={self._baseline:.3f})"
        )
