"""Relative pose optimization from 3D-2D stereo correspondences.

Given points P_i expressed in a reference camera frame and their observations
z_i in a target camera, find T_target_reference minimizing

    E(T) = sum_i || (z_i - project(T @ P_i)) / sigma_i ||²

Observations are either left-image pixels (u, v) or rectified stereo
triplets (u_left, v, u_right). The pose is updated on the left,
T <- Exp(xi) @ T, with xi = [v, w] (translation first), and the returned
6x6 covariance uses that same tangent ordering.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np
from scipy.linalg import LinAlgError, cho_factor, cho_solve

from ..exceptions import DegenerateGeometryError
from ..frontend.pose import SE3
from ..frontend.stereo_camera import StereoCamera

logger = logging.getLogger(__name__)

MIN_DEPTH = 1e-6  # Points closer than this to the image plane are ignored
MIN_POINTS = 3
DEFAULT_MAX_CONDITION_NUMBER = 1e12


@dataclass
class PoseEstimate:
    """Result of relative pose optimization.

    Attributes:
        pose: Optimized T_target_reference
        covariance: 6x6 covariance of the pose, tangent order [v, w]
        iterations: Number of iterations performed
        error: Final total weighted squared error
        converged: False if max_iters was reached before an error threshold
        error_history: Total error after every accepted update, initial
            error first
    """

    pose: SE3
    covariance: np.ndarray
    iterations: int
    error: float
    converged: bool
    error_history: list[float] = field(default_factory=list)

    @property
    def translation_sigma(self) -> np.ndarray:
        """Standard deviation of the translation components."""
        return np.sqrt(np.clip(np.diag(self.covariance)[:3], 0.0, None))

    @property
    def rotation_sigma(self) -> np.ndarray:
        """Standard deviation of the rotation components (rad)."""
        return np.sqrt(np.clip(np.diag(self.covariance)[3:], 0.0, None))


@dataclass
class _Linearization:
    """Residuals and Jacobian of the reprojection error at one pose."""

    jacobian: np.ndarray  # (M, 6)
    residuals: np.ndarray  # (M,)
    error: float
    num_points: int

    @property
    def hessian(self) -> np.ndarray:
        return self.jacobian.T @ self.jacobian

    @property
    def gradient(self) -> np.ndarray:
        return self.jacobian.T @ self.residuals


def _prepare_inputs(
    points: np.ndarray,
    observations: np.ndarray,
    sigmas: np.ndarray | float,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Validate shapes and return (points, observations, inverse sigmas)."""
    points = np.atleast_2d(np.asarray(points, dtype=np.float64))
    observations = np.atleast_2d(np.asarray(observations, dtype=np.float64))

    if points.ndim != 2 or points.shape[1] != 3:
        raise ValueError(f"Points must be Nx3, got {points.shape}")
    if observations.ndim != 2 or observations.shape[1] not in (2, 3):
        raise ValueError(f"Observations must be Nx2 or Nx3, got {observations.shape}")
    if len(points) != len(observations):
        raise ValueError(
            f"Got {len(points)} points but {len(observations)} observations"
        )

    n, dim = observations.shape
    sigmas = np.asarray(sigmas, dtype=np.float64)
    if sigmas.ndim == 0:
        sigmas = np.full((n, dim), float(sigmas))
    elif sigmas.shape == (n,):
        sigmas = np.repeat(sigmas[:, None], dim, axis=1)
    elif sigmas.shape != (n, dim):
        raise ValueError(
            f"Sigmas must be scalar, ({n},) or ({n}, {dim}), got {sigmas.shape}"
        )
    if np.any(sigmas <= 0) or not np.all(np.isfinite(sigmas)):
        raise ValueError("Sigmas must be positive and finite")

    return points, observations, 1.0 / sigmas


def _batch_skew(v: np.ndarray) -> np.ndarray:
    """Stack of skew-symmetric matrices for an Nx3 array."""
    S = np.zeros((len(v), 3, 3), dtype=np.float64)
    S[:, 0, 1] = -v[:, 2]
    S[:, 0, 2] = v[:, 1]
    S[:, 1, 0] = v[:, 2]
    S[:, 1, 2] = -v[:, 0]
    S[:, 2, 0] = -v[:, 1]
    S[:, 2, 1] = v[:, 0]
    return S


def _predict(camera: StereoCamera, points_target: np.ndarray, stereo: bool) -> np.ndarray:
    if stereo:
        return camera.project_stereo(points_target)
    return camera.project(points_target)


def _linearize(
    points: np.ndarray,
    observations: np.ndarray,
    inv_sigmas: np.ndarray,
    camera: StereoCamera,
    pose: SE3,
) -> _Linearization:
    """Weighted residuals and their Jacobian w.r.t. a left pose increment.

    Points that land behind the target camera are left out.
    """
    stereo = observations.shape[1] == 3
    points_target = pose.transform_points(points)
    in_front = points_target[:, 2] > MIN_DEPTH
    P = points_target[in_front]

    residuals = (observations[in_front] - _predict(camera, P, stereo)) * inv_sigmas[in_front]

    # d(T @ p)/d(xi) = [I, -[T @ p]x] for T <- Exp(xi) @ T
    d_point = np.zeros((len(P), 3, 6), dtype=np.float64)
    d_point[:, :, :3] = np.eye(3)
    d_point[:, :, 3:] = -_batch_skew(P)

    d_proj = camera.projection_jacobian(P, stereo=stereo)
    jacobian = -inv_sigmas[in_front][:, :, None] * (d_proj @ d_point)

    residuals = residuals.reshape(-1)
    return _Linearization(
        jacobian=jacobian.reshape(-1, 6),
        residuals=residuals,
        error=float(residuals @ residuals),
        num_points=int(np.count_nonzero(in_front)),
    )


def _check_conditioning(H: np.ndarray, max_condition_number: float) -> None:
    """Raise if the information matrix cannot be reliably inverted."""
    eigenvalues = np.linalg.eigvalsh(H)
    if eigenvalues[-1] <= 0 or eigenvalues[0] <= eigenvalues[-1] / max_condition_number:
        raise DegenerateGeometryError(
            "Information matrix is singular or ill-conditioned "
            f"(eigenvalues {eigenvalues[0]:.3e} .. {eigenvalues[-1]:.3e})"
        )


def _solve(H: np.ndarray, b: np.ndarray) -> np.ndarray:
    """Solve H x = b for symmetric positive definite H."""
    try:
        factor = cho_factor(H)
    except LinAlgError as e:
        raise DegenerateGeometryError(f"Normal equations are not positive definite: {e}") from e
    return cho_solve(factor, b)


def _covariance(H: np.ndarray, max_condition_number: float) -> np.ndarray:
    """Invert the information matrix into a symmetric covariance."""
    _check_conditioning(H, max_condition_number)
    covariance = _solve(H, np.eye(6))
    return 0.5 * (covariance + covariance.T)


def _initial_linearization(
    points: np.ndarray,
    observations: np.ndarray,
    inv_sigmas: np.ndarray,
    camera: StereoCamera,
    pose: SE3,
) -> _Linearization:
    if len(points) < MIN_POINTS:
        raise DegenerateGeometryError(
            f"At least {MIN_POINTS} correspondences are required, got {len(points)}"
        )
    lin = _linearize(points, observations, inv_sigmas, camera, pose)
    if lin.num_points < MIN_POINTS:
        raise DegenerateGeometryError(
            f"Only {lin.num_points} points lie in front of the camera at the initial pose"
        )
    return lin


def compute_reprojection_errors(
    points: np.ndarray,
    observations: np.ndarray,
    camera: StereoCamera,
    pose: SE3,
) -> np.ndarray:
    """Per-correspondence reprojection error norm in pixels.

    Points behind the target camera get an infinite error.

    Returns:
        (N,) array of errors
    """
    points, observations, _ = _prepare_inputs(points, observations, 1.0)
    stereo = observations.shape[1] == 3

    points_target = pose.transform_points(points)
    errors = np.full(len(points), np.inf)
    in_front = points_target[:, 2] > MIN_DEPTH
    predicted = _predict(camera, points_target[in_front], stereo)
    errors[in_front] = np.linalg.norm(observations[in_front] - predicted, axis=1)
    return errors


def optimize_pose_gauss_newton(
    points: np.ndarray,
    observations: np.ndarray,
    sigmas: np.ndarray | float,
    camera: StereoCamera,
    initial_pose: SE3 | None = None,
    max_iters: int = 20,
    min_error: float = 1e-7,
    min_error_delta: float = 1e-9,
    max_condition_number: float = DEFAULT_MAX_CONDITION_NUMBER,
) -> PoseEstimate:
    """Refine a relative pose with Gauss-Newton.

    Iterates until ``max_iters`` iterations have run, the total weighted
    squared error drops below ``min_error``, or it changes by less than
    ``min_error_delta`` between iterations.

    Args:
        points: Nx3 points in the reference camera frame
        observations: Nx2 (u, v) or Nx3 (u_left, v, u_right) pixels in the
            target camera
        sigmas: Pixel noise, scalar, per observation (N,) or per axis
        camera: Stereo camera model of the target camera
        initial_pose: Initial guess of T_target_reference (default: identity)
        max_iters: Maximum number of iterations
        min_error: Stop once the error is below this
        min_error_delta: Stop once the error changes by less than this
        max_condition_number: Largest acceptable condition number of the
            information matrix

    Returns:
        PoseEstimate with the refined pose and its covariance

    Raises:
        DegenerateGeometryError: If fewer than 3 usable points are given or
            the information matrix is singular
    """
    points, observations, inv_sigmas = _prepare_inputs(points, observations, sigmas)
    pose = initial_pose if initial_pose is not None else SE3.identity()

    lin = _initial_linearization(points, observations, inv_sigmas, camera, pose)
    history = [lin.error]
    iters = 0
    converged = lin.error < min_error

    while not converged and iters < max_iters:
        H = lin.hessian
        _check_conditioning(H, max_condition_number)
        delta = _solve(H, -lin.gradient)

        pose = pose.retract(delta)
        iters += 1

        prev_error = lin.error
        lin = _linearize(points, observations, inv_sigmas, camera, pose)
        if lin.num_points < MIN_POINTS:
            raise DegenerateGeometryError(
                f"Only {lin.num_points} points remain in front of the camera"
            )
        history.append(lin.error)

        logger.debug(
            "GN iter %d: error %.6e -> %.6e, |step| %.3e",
            iters,
            prev_error,
            lin.error,
            np.linalg.norm(delta),
        )
        converged = lin.error < min_error or abs(prev_error - lin.error) < min_error_delta

    return PoseEstimate(
        pose=pose,
        covariance=_covariance(lin.hessian, max_condition_number),
        iterations=iters,
        error=lin.error,
        converged=converged,
        error_history=history,
    )


def optimize_pose_levenberg_marquardt(
    points: np.ndarray,
    observations: np.ndarray,
    sigmas: np.ndarray | float,
    camera: StereoCamera,
    initial_pose: SE3 | None = None,
    max_iters: int = 20,
    min_error: float = 1e-7,
    min_error_delta: float = 1e-9,
    max_condition_number: float = DEFAULT_MAX_CONDITION_NUMBER,
    initial_damping: float = 1e-4,
    damping_factor: float = 10.0,
) -> PoseEstimate:
    """Refine a relative pose with Levenberg-Marquardt.

    Solves (H + lambda * I) xi = -g. A step that lowers the total error is
    applied and lambda shrinks by ``damping_factor``; otherwise the pose is
    kept and lambda grows by the same factor. Rejected steps count as
    iterations. Termination rules match optimize_pose_gauss_newton().

    Args:
        points: Nx3 points in the reference camera frame
        observations: Nx2 or Nx3 pixel observations in the target camera
        sigmas: Pixel noise, scalar, per observation (N,) or per axis
        camera: Stereo camera model of the target camera
        initial_pose: Initial guess of T_target_reference (default: identity)
        max_iters: Maximum number of iterations, rejected steps included
        min_error: Stop once the error is below this
        min_error_delta: Stop once an accepted step changes the error by
            less than this
        max_condition_number: Largest acceptable condition number of the
            final information matrix
        initial_damping: lambda_0 relative to the largest diagonal entry of H
        damping_factor: Multiplier applied to lambda after each step

    Returns:
        PoseEstimate with the refined pose and its covariance

    Raises:
        DegenerateGeometryError: If fewer than 3 usable points are given or
            the final information matrix is singular
    """
    if initial_damping <= 0 or damping_factor <= 1:
        raise ValueError(
            "initial_damping must be positive and damping_factor greater than 1, "
            f"got {initial_damping} and {damping_factor}"
        )

    points, observations, inv_sigmas = _prepare_inputs(points, observations, sigmas)
    pose = initial_pose if initial_pose is not None else SE3.identity()

    lin = _initial_linearization(points, observations, inv_sigmas, camera, pose)
    history = [lin.error]
    H, g = lin.hessian, lin.gradient
    damping = initial_damping * max(float(np.max(np.diag(H))), 1e-12)

    iters = 0
    converged = lin.error < min_error

    while not converged and iters < max_iters:
        iters += 1
        try:
            delta = _solve(H + damping * np.eye(6), -g)
        except DegenerateGeometryError:
            damping *= damping_factor
            continue

        candidate = pose.retract(delta)
        candidate_lin = _linearize(points, observations, inv_sigmas, camera, candidate)

        if candidate_lin.num_points == lin.num_points and candidate_lin.error < lin.error:
            prev_error = lin.error
            pose, lin = candidate, candidate_lin
            H, g = lin.hessian, lin.gradient
            history.append(lin.error)
            damping = max(damping / damping_factor, 1e-12)

            logger.debug(
                "LM iter %d: accepted, error %.6e -> %.6e, lambda %.3e",
                iters,
                prev_error,
                lin.error,
                damping,
            )
            converged = lin.error < min_error or prev_error - lin.error < min_error_delta
        else:
            damping *= damping_factor
            logger.debug(
                "LM iter %d: rejected, error %.6e -> %.6e, lambda %.3e",
                iters,
                lin.error,
                candidate_lin.error,
                damping,
            )

    return PoseEstimate(
        pose=pose,
        covariance=_covariance(H, max_condition_number),
        iterations=iters,
        error=lin.error,
        converged=converged,
        error_history=history,
    )
