"""SE(3) pose representation and SO(3)/SE(3) Lie group helpers."""

from __future__ import annotations

from dataclasses import dataclass

import cv2
import numpy as np

# Below this angle (rad) closed-form expressions switch to Taylor expansions.
_SMALL_ANGLE = 1e-10


def skew(v: np.ndarray) -> np.ndarray:
    """Create skew-symmetric matrix from vector.

    Args:
        v: 3D vector

    Returns:
        3x3 skew-symmetric matrix [v]×
    """
    return np.array(
        [
            [0.0, -v[2], v[1]],
            [v[2], 0.0, -v[0]],
            [-v[1], v[0], 0.0],
        ],
        dtype=np.float64,
    )


def exp_so3(omega: np.ndarray) -> np.ndarray:
    """Exponential map from so(3) to SO(3) (Rodrigues formula).

    Args:
        omega: Axis-angle vector (3,), e.g. angular velocity * dt

    Returns:
        3x3 rotation matrix
    """
    omega = np.asarray(omega, dtype=np.float64).flatten()
    theta = np.linalg.norm(omega)
    if theta < _SMALL_ANGLE:
        # First-order approximation for small angles: R ≈ I + [omega]×
        return np.eye(3) + skew(omega)

    K = skew(omega / theta)

    # R = I + sin(θ)K + (1 - cos(θ))K²
    return np.eye(3) + np.sin(theta) * K + (1 - np.cos(theta)) * (K @ K)


def log_so3(R: np.ndarray) -> np.ndarray:
    """Logarithm map from SO(3) to an axis-angle vector.

    Args:
        R: 3x3 rotation matrix

    Returns:
        Axis-angle vector (3,) with norm in [0, pi]
    """
    rvec, _ = cv2.Rodrigues(np.asarray(R, dtype=np.float64))
    return rvec.flatten()


def right_jacobian_so3(omega: np.ndarray) -> np.ndarray:
    """Right Jacobian of SO(3).

    Relates a small increment of the axis-angle vector to the resulting
    right-multiplied rotation increment: Exp(ω + δω) ≈ Exp(ω) Exp(Jr(ω) δω).

    Args:
        omega: Axis-angle vector (3,)

    Returns:
        3x3 right Jacobian
    """
    omega = np.asarray(omega, dtype=np.float64).flatten()
    theta = np.linalg.norm(omega)
    W = skew(omega)
    if theta < 1e-5:
        return np.eye(3) - 0.5 * W + (W @ W) / 6.0

    theta2 = theta * theta
    return (
        np.eye(3)
        - (1.0 - np.cos(theta)) / theta2 * W
        + (theta - np.sin(theta)) / (theta2 * theta) * (W @ W)
    )


def _left_jacobian_so3(omega: np.ndarray) -> np.ndarray:
    """Left Jacobian of SO(3), the V matrix of the SE(3) exponential."""
    return right_jacobian_so3(-np.asarray(omega, dtype=np.float64))


@dataclass
class SE3:
    """Rigid body transformation (rotation + translation) in SE(3).

    Applies the transformation p_b = R @ p_a + t, mapping points expressed
    in frame A into frame B (T_b_a).

    The tangent space is ordered as [translation, rotation]:
    xi = (vx, vy, vz, wx, wy, wz).

    Attributes:
        rotation: 3x3 orthonormal rotation matrix (det = +1)
        translation: 3D translation vector
    """

    rotation: np.ndarray  # 3x3 rotation matrix
    translation: np.ndarray  # (3,) translation vector

    def __post_init__(self) -> None:
        """Validate and normalize inputs."""
        self.rotation = np.asarray(self.rotation, dtype=np.float64)
        self.translation = np.asarray(self.translation, dtype=np.float64).flatten()

        if self.rotation.shape != (3, 3):
            raise ValueError(f"Rotation must be 3x3, got {self.rotation.shape}")
        if self.translation.shape != (3,):
            raise ValueError(
                f"Translation must be (3,), got {self.translation.shape}"
            )

    @classmethod
    def identity(cls) -> SE3:
        """Create identity transformation (no rotation, no translation)."""
        return cls(rotation=np.eye(3), translation=np.zeros(3))

    @classmethod
    def from_matrix(cls, T: np.ndarray) -> SE3:
        """Create SE3 from 4x4 homogeneous transformation matrix.

        Args:
            T: 4x4 transformation matrix of the form:
               [[R  t]
                [0  1]]

        Returns:
            SE3 transformation
        """
        T = np.asarray(T)
        if T.shape != (4, 4):
            raise ValueError(f"Transform must be 4x4, got {T.shape}")

        return cls(rotation=T[:3, :3], translation=T[:3, 3])

    @classmethod
    def from_rvec_tvec(cls, rvec: np.ndarray, tvec: np.ndarray) -> SE3:
        """Create SE3 from OpenCV Rodrigues vector and translation.

        Args:
            rvec: 3D Rodrigues rotation vector (axis * angle)
            tvec: 3D translation vector

        Returns:
            SE3 transformation
        """
        R, _ = cv2.Rodrigues(np.asarray(rvec, dtype=np.float64).flatten())
        return cls(rotation=R, translation=np.asarray(tvec).flatten())

    @classmethod
    def exp(cls, xi: np.ndarray) -> SE3:
        """Exponential map from se(3) to SE(3).

        Args:
            xi: Tangent vector (6,) ordered [vx, vy, vz, wx, wy, wz]

        Returns:
            SE3 transformation
        """
        xi = np.asarray(xi, dtype=np.float64).flatten()
        if xi.shape != (6,):
            raise ValueError(f"Tangent vector must be (6,), got {xi.shape}")

        v, omega = xi[:3], xi[3:]
        return cls(rotation=exp_so3(omega), translation=_left_jacobian_so3(omega) @ v)

    def log(self) -> np.ndarray:
        """Logarithm map from SE(3) to se(3).

        Returns:
            Tangent vector (6,) ordered [vx, vy, vz, wx, wy, wz]
        """
        omega = log_so3(self.rotation)
        v = np.linalg.solve(_left_jacobian_so3(omega), self.translation)
        return np.concatenate([v, omega])

    def to_matrix(self) -> np.ndarray:
        """Convert to 4x4 homogeneous transformation matrix."""
        T = np.eye(4, dtype=np.float64)
        T[:3, :3] = self.rotation
        T[:3, 3] = self.translation
        return T

    def to_rvec_tvec(self) -> tuple[np.ndarray, np.ndarray]:
        """Convert to OpenCV Rodrigues vector and translation."""
        return log_so3(self.rotation), self.translation.copy()

    def inverse(self) -> SE3:
        """Compute the inverse transformation T^{-1}.

        For T = [R, t], the inverse is [R^T, -R^T @ t].
        """
        R_inv = self.rotation.T
        return SE3(rotation=R_inv, translation=-R_inv @ self.translation)

    def compose(self, other: SE3) -> SE3:
        """Compose with another transformation: self @ other.

        Example:
            T_c_b.compose(T_b_a) gives T_c_a

        Args:
            other: SE3 transformation applied first

        Returns:
            Composed SE3 transformation (self @ other)
        """
        R = self.rotation @ other.rotation
        t = self.rotation @ other.translation + self.translation
        return SE3(rotation=R, translation=t)

    def retract(self, xi: np.ndarray) -> SE3:
        """Apply a left-multiplied tangent-space increment: Exp(xi) @ self."""
        return SE3.exp(xi).compose(self)

    def transform_points(self, points: np.ndarray) -> np.ndarray:
        """Transform points: p_b = R @ p_a + t.

        Args:
            points: Nx3 array of 3D points in the source frame

        Returns:
            Nx3 array of 3D points in the destination frame
        """
        points = np.asarray(points, dtype=np.float64)
        if points.ndim == 1:
            points = points.reshape(1, 3)

        if points.shape[1] != 3:
            raise ValueError(f"Points must be Nx3, got {points.shape}")

        return (self.rotation @ points.T).T + self.translation

    def transform_point(self, point: np.ndarray) -> np.ndarray:
        """Transform a single 3D point."""
        point = np.asarray(point, dtype=np.float64).flatten()
        return self.rotation @ point + self.translation

    def rotation_angle(self) -> float:
        """Return the rotation angle (rad) of this transform."""
        return float(np.linalg.norm(log_so3(self.rotation)))

    def distance_to(self, other: SE3) -> tuple[float, float]:
        """Translation (m) and rotation (rad) distance between two poses."""
        delta = self.inverse().compose(other)
        return float(np.linalg.norm(delta.translation)), delta.rotation_angle()

    def __repr__(self) -> str:
        """Return string representation."""
        pos = self.translation
        return f"SE3(translation=[{pos[0]:.3f}, {pos[1]:.3f}, {pos[2]:.3f}])"

    def __matmul__(self, other: SE3) -> SE3:
        """Matrix multiplication operator for composition: T1 @ T2."""
        return self.compose(other)
