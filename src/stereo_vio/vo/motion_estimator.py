"""Frame-to-frame motion estimation with iterative outlier rejection."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from ..exceptions import ConfigurationError, DegenerateGeometryError
from ..frontend.pose import SE3
from ..frontend.stereo_camera import StereoCamera
from ..imu.preintegration import PreintegrationResult
from .optimization import (
    PoseEstimate,
    compute_reprojection_errors,
    optimize_pose_gauss_newton,
    optimize_pose_levenberg_marquardt,
)

logger = logging.getLogger(__name__)

ALGORITHMS = ("gauss_newton", "levenberg_marquardt")


@dataclass
class MotionEstimatorConfig:
    """Configuration for MotionEstimator."""

    algorithm: str = "levenberg_marquardt"  # or "gauss_newton"
    max_iters: int = 20
    min_error: float = 1e-7
    min_error_delta: float = 1e-9
    max_outlier_iters: int = 3  # Re-optimizations after dropping outliers
    reprojection_threshold_px: float = 3.0  # Inlier threshold in pixels
    min_inliers: int = 6

    def validate(self) -> None:
        """Check parameter ranges.

        Raises:
            ConfigurationError: If any parameter is out of range
        """
        if self.algorithm not in ALGORITHMS:
            raise ConfigurationError(
                f"algorithm must be one of {ALGORITHMS}, got {self.algorithm!r}"
            )
        if self.max_iters <= 0:
            raise ConfigurationError(f"max_iters must be positive, got {self.max_iters}")
        if self.min_error < 0 or self.min_error_delta < 0:
            raise ConfigurationError("min_error and min_error_delta must be non-negative")
        if self.max_outlier_iters < 0:
            raise ConfigurationError(
                f"max_outlier_iters must be non-negative, got {self.max_outlier_iters}"
            )
        if self.reprojection_threshold_px <= 0:
            raise ConfigurationError(
                "reprojection_threshold_px must be positive, "
                f"got {self.reprojection_threshold_px}"
            )
        if self.min_inliers < 3:
            raise ConfigurationError(f"min_inliers must be at least 3, got {self.min_inliers}")


@dataclass
class MotionEstimate:
    """Result of motion estimation between two frames.

    Attributes:
        success: True if a pose was estimated from enough inliers
        estimate: Optimized pose and covariance (None if failed)
        inliers: Boolean mask over the input correspondences
        num_inliers: Number of inlier correspondences
        outlier_iterations: Number of re-optimizations after dropping outliers
        message: Reason for failure, empty on success
    """

    success: bool
    estimate: PoseEstimate | None
    inliers: np.ndarray  # (N,) bool
    num_inliers: int
    outlier_iterations: int = 0
    message: str = ""
    reprojection_errors: np.ndarray = field(default_factory=lambda: np.zeros(0))

    @property
    def pose(self) -> SE3 | None:
        """Return T_target_reference, or None if failed."""
        return self.estimate.pose if self.estimate is not None else None


def camera_rotation_prior(
    preintegration: PreintegrationResult, T_body_camera: SE3
) -> np.ndarray:
    """Rotate a preintegrated body rotation into a camera-to-camera rotation.

    The preintegrated dR is R_body0_body1; the returned rotation is
    R_cam1_cam0, matching the T_target_reference convention of the optimizer.

    Args:
        preintegration: Valid preintegration result between the two frames
        T_body_camera: Camera extrinsics (maps camera points into the body frame)

    Returns:
        3x3 rotation matrix
    """
    if not preintegration.valid:
        raise ValueError("Cannot build a rotation prior from an invalid preintegration")
    R_bc = T_body_camera.rotation
    return R_bc.T @ preintegration.delta_rotation.T @ R_bc


class MotionEstimator:
    """Estimates relative camera motion from 3D-2D stereo correspondences.

    Runs the configured optimizer, drops correspondences whose reprojection
    error exceeds the threshold, and re-optimizes on the inliers until the
    inlier set stops changing.

    Failures (too few inliers, degenerate geometry) are reported in the
    returned MotionEstimate rather than raised.
    """

    def __init__(
        self,
        camera: StereoCamera,
        config: MotionEstimatorConfig | None = None,
    ) -> None:
        """Initialize motion estimator.

        Args:
            camera: Stereo camera model used for projection
            config: Optimizer and outlier rejection configuration

        Raises:
            ConfigurationError: If the configuration is invalid
        """
        self._camera = camera
        self._config = config or MotionEstimatorConfig()
        self._config.validate()

    def estimate(
        self,
        points: np.ndarray,
        observations: np.ndarray,
        sigmas: np.ndarray | float = 1.0,
        initial_pose: SE3 | None = None,
        rotation_prior: np.ndarray | None = None,
    ) -> MotionEstimate:
        """Estimate T_target_reference from correspondences.

        Args:
            points: Nx3 points in the reference camera frame
            observations: Nx2 or Nx3 pixel observations in the target camera
            sigmas: Pixel noise, scalar, per observation (N,) or per axis
            initial_pose: Initial guess; takes precedence over rotation_prior
            rotation_prior: Optional 3x3 rotation used as the initial guess
                with zero translation (e.g. from camera_rotation_prior)

        Returns:
            MotionEstimate with the refined pose and inlier mask

        Raises:
            ValueError: If sigmas do not match the number of correspondences
        """
        points = np.atleast_2d(np.asarray(points, dtype=np.float64))
        observations = np.atleast_2d(np.asarray(observations, dtype=np.float64))
        n_points = len(points)

        sigmas = np.asarray(sigmas, dtype=np.float64)
        if sigmas.ndim == 0:
            sigmas = np.full(n_points, float(sigmas))
        elif sigmas.shape not in ((n_points,), (n_points, observations.shape[1])):
            raise ValueError(
                f"Sigmas must be scalar, ({n_points},) or "
                f"({n_points}, {observations.shape[1]}), got {sigmas.shape}"
            )

        if initial_pose is not None:
            pose = initial_pose
        elif rotation_prior is not None:
            pose = SE3(rotation=rotation_prior, translation=np.zeros(3))
        else:
            pose = SE3.identity()

        if n_points < self._config.min_inliers:
            return self._failure(
                np.zeros(n_points, dtype=bool), f"Too few correspondences: {n_points}", 0
            )

        inliers = np.ones(n_points, dtype=bool)

        estimate: PoseEstimate | None = None
        errors = np.zeros(n_points)
        outlier_iters = 0

        while True:
            try:
                estimate = self._optimize(
                    points[inliers], observations[inliers], sigmas[inliers], pose
                )
            except DegenerateGeometryError as e:
                return self._failure(inliers, f"Degenerate geometry: {e}", outlier_iters)

            pose = estimate.pose
            errors = compute_reprojection_errors(points, observations, self._camera, pose)
            new_inliers = errors < self._config.reprojection_threshold_px
            num_inliers = int(np.count_nonzero(new_inliers))

            if num_inliers < self._config.min_inliers:
                return self._failure(
                    new_inliers, f"Too few inliers: {num_inliers}", outlier_iters
                )

            if np.array_equal(new_inliers, inliers) or outlier_iters >= self._config.max_outlier_iters:
                inliers = new_inliers
                break

            logger.debug(
                "Outlier pass %d: %d -> %d inliers",
                outlier_iters + 1,
                int(np.count_nonzero(inliers)),
                num_inliers,
            )
            inliers = new_inliers
            outlier_iters += 1

        return MotionEstimate(
            success=True,
            estimate=estimate,
            inliers=inliers,
            num_inliers=int(np.count_nonzero(inliers)),
            outlier_iterations=outlier_iters,
            reprojection_errors=errors,
        )

    def _optimize(
        self,
        points: np.ndarray,
        observations: np.ndarray,
        sigmas: np.ndarray,
        initial_pose: SE3,
    ) -> PoseEstimate:
        optimize = (
            optimize_pose_gauss_newton
            if self._config.algorithm == "gauss_newton"
            else optimize_pose_levenberg_marquardt
        )
        return optimize(
            points,
            observations,
            sigmas,
            self._camera,
            initial_pose=initial_pose,
            max_iters=self._config.max_iters,
            min_error=self._config.min_error,
            min_error_delta=self._config.min_error_delta,
        )

    @staticmethod
    def _failure(inliers: np.ndarray, message: str, outlier_iters: int) -> MotionEstimate:
        logger.warning("Motion estimation failed: %s", message)
        return MotionEstimate(
            success=False,
            estimate=None,
            inliers=inliers,
            num_inliers=int(np.count_nonzero(inliers)),
            outlier_iterations=outlier_iters,
            message=message,
        )

    @property
    def config(self) -> MotionEstimatorConfig:
        """Return the estimator configuration."""
        return self._config

    @property
    def camera(self) -> StereoCamera:
        """Return the stereo camera model."""
        return self._camera
