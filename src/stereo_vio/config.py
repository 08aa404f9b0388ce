"""Configuration loading from YAML files.

IMU noise parameters follow the EuRoC imu0/sensor.yaml layout:

    gyroscope_noise_density: 1.6968e-04     # rad/s/√Hz
    gyroscope_random_walk: 1.9393e-05       # rad/s²/√Hz
    accelerometer_noise_density: 2.0e-3     # m/s²/√Hz
    accelerometer_random_walk: 3.0e-3       # m/s³/√Hz

and may additionally set ``max_queue_size``, ``allowed_misalignment_sec``,
``integration_covariance`` and ``gravity``.
"""

from __future__ import annotations

from dataclasses import fields
from pathlib import Path
from typing import Any

import numpy as np
import yaml

from .exceptions import ConfigurationError
from .frontend.stereo_camera import StereoCamera
from .imu.imu_manager import IMUManagerParams
from .vo.motion_estimator import MotionEstimatorConfig

# EuRoC sensor.yaml key -> IMUManagerParams field
_EUROC_IMU_KEYS = {
    "accelerometer_noise_density": "accel_noise_sigma",
    "gyroscope_noise_density": "gyro_noise_sigma",
    "accelerometer_random_walk": "accel_bias_rw_sigma",
    "gyroscope_random_walk": "gyro_bias_rw_sigma",
}


def _load_mapping(path: str | Path) -> dict[str, Any]:
    """Read a YAML file that must contain a mapping."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path, "r") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Could not parse {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigurationError(f"Expected a mapping in {path}, got {type(data).__name__}")
    return data


def load_imu_params(path: str | Path) -> IMUManagerParams:
    """Load IMUManagerParams from an EuRoC-style IMU sensor.yaml.

    Keys that are absent keep their IMUManagerParams defaults; unrelated
    keys (sensor_type, T_BS, rate_hz, ...) are ignored.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ConfigurationError: If a value is malformed or out of range
    """
    data = _load_mapping(path)
    kwargs: dict[str, Any] = {}

    try:
        for yaml_key, param in _EUROC_IMU_KEYS.items():
            if yaml_key in data:
                kwargs[param] = float(data[yaml_key])
        if "max_queue_size" in data:
            kwargs["max_queue_size"] = int(data["max_queue_size"])
        if "allowed_misalignment_sec" in data:
            kwargs["allowed_misalignment_sec"] = float(data["allowed_misalignment_sec"])
        if "integration_covariance" in data:
            kwargs["integration_covariance"] = float(data["integration_covariance"])
        if "gravity" in data:
            kwargs["gravity"] = np.asarray(data["gravity"], dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid IMU parameter in {path}: {e}") from e

    params = IMUManagerParams(**kwargs)
    params.validate()
    # Catch negative sigmas here rather than when the manager is built.
    params.noise_model()
    return params


def load_motion_estimator_config(path: str | Path) -> MotionEstimatorConfig:
    """Load MotionEstimatorConfig from a YAML mapping of its fields.

    Raises:
        FileNotFoundError: If the file doesn't exist
        ConfigurationError: If a key is unknown or a value is out of range
    """
    data = _load_mapping(path)
    known = {f.name for f in fields(MotionEstimatorConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ConfigurationError(f"Unknown motion estimator keys in {path}: {unknown}")

    config = MotionEstimatorConfig(**data)
    try:
        config.validate()
    except TypeError as e:
        raise ConfigurationError(f"Invalid motion estimator value in {path}: {e}") from e
    return config


def load_stereo_camera(cam0_yaml_path: str | Path, cam1_yaml_path: str | Path) -> StereoCamera:
    """Load a rectified stereo camera from EuRoC camera sensor.yaml files."""
    return StereoCamera.from_euroc_yaml(cam0_yaml_path, cam1_yaml_path)
