"""Exception types raised by stereo_vio."""


class StereoVIOError(Exception):
    """Base class for all stereo_vio errors."""


class ConfigurationError(StereoVIOError, ValueError):
    """Raised when a component is constructed with invalid parameters."""


class EmptyBufferError(StereoVIOError, IndexError):
    """Raised when reading from an empty IMU buffer."""


class DegenerateGeometryError(StereoVIOError):
    """Raised when correspondences cannot constrain a 6-DoF pose.

    Typical causes are fewer than three points, colinear points, or points
    behind the camera, all of which leave the information matrix singular.
    """
