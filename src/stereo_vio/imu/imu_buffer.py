"""Bounded, thread-safe queue of IMU measurements.

The buffer is written by a sensor ingestion thread and drained by the
estimation thread. When full, pushing evicts the oldest measurement so memory
stays bounded under sustained backlog.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable

import numpy as np

from ..exceptions import ConfigurationError, EmptyBufferError

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class IMUMeasurement:
    """Single IMU measurement at a given timestamp.

    Attributes:
        timestamp_ns: Measurement timestamp in nanoseconds
        gyroscope: Angular velocity (wx, wy, wz) in rad/s
        accelerometer: Linear acceleration (ax, ay, az) in m/s²
    """

    timestamp_ns: int
    gyroscope: np.ndarray  # (3,) rad/s
    accelerometer: np.ndarray  # (3,) m/s²

    def __post_init__(self) -> None:
        """Ensure arrays have correct shape and cannot be modified."""
        gyro = np.array(self.gyroscope, dtype=np.float64).flatten()
        accel = np.array(self.accelerometer, dtype=np.float64).flatten()
        if gyro.shape != (3,) or accel.shape != (3,):
            raise ValueError(
                f"IMU readings must be 3-vectors, got gyroscope {gyro.shape} "
                f"and accelerometer {accel.shape}"
            )
        gyro.flags.writeable = False
        accel.flags.writeable = False
        object.__setattr__(self, "timestamp_ns", int(self.timestamp_ns))
        object.__setattr__(self, "gyroscope", gyro)
        object.__setattr__(self, "accelerometer", accel)

    @property
    def timestamp_sec(self) -> float:
        """Timestamp in seconds."""
        return self.timestamp_ns * 1e-9


class IMUBuffer:
    """Time-ordered FIFO of IMU measurements with drop-oldest eviction.

    Measurements are expected to arrive with non-decreasing timestamps; the
    buffer does not reorder them.
    """

    def __init__(self, max_size: int = 1000) -> None:
        """Initialize IMU buffer.

        Args:
            max_size: Maximum number of retained measurements

        Raises:
            ConfigurationError: If max_size is not positive
        """
        if max_size <= 0:
            raise ConfigurationError(f"IMU buffer size must be positive, got {max_size}")

        self._queue: deque[IMUMeasurement] = deque(maxlen=max_size)
        self._lock = threading.Lock()
        self._num_dropped = 0

    def push(self, measurement: IMUMeasurement) -> None:
        """Append a measurement, evicting the oldest one if full."""
        with self._lock:
            if len(self._queue) == self._queue.maxlen:
                self._num_dropped += 1
                logger.debug(
                    "IMU buffer full, dropping measurement at %d ns",
                    self._queue[0].timestamp_ns,
                )
            self._queue.append(measurement)

    def peek_front(self) -> IMUMeasurement:
        """Return the oldest measurement without removing it.

        Raises:
            EmptyBufferError: If the buffer is empty
        """
        with self._lock:
            if not self._queue:
                raise EmptyBufferError("peek from an empty IMU buffer")
            return self._queue[0]

    def pop(self) -> IMUMeasurement:
        """Remove and return the oldest measurement.

        Raises:
            EmptyBufferError: If the buffer is empty
        """
        with self._lock:
            if not self._queue:
                raise EmptyBufferError("pop from an empty IMU buffer")
            return self._queue.popleft()

    def pop_if(
        self, predicate: Callable[[IMUMeasurement], bool]
    ) -> IMUMeasurement | None:
        """Pop the oldest measurement only if it satisfies ``predicate``.

        The check and the removal happen under one lock acquisition.

        Returns:
            The popped measurement, or None if empty or the predicate failed
        """
        with self._lock:
            if self._queue and predicate(self._queue[0]):
                return self._queue.popleft()
            return None

    def empty(self) -> bool:
        """Return True if no measurements remain."""
        with self._lock:
            return not self._queue

    def discard_before(self, timestamp_ns: int) -> int:
        """Drop every measurement older than ``timestamp_ns``.

        Returns:
            Number of discarded measurements
        """
        count = 0
        with self._lock:
            while self._queue and self._queue[0].timestamp_ns < timestamp_ns:
                self._queue.popleft()
                count += 1
        return count

    def clear(self) -> None:
        """Remove all measurements."""
        with self._lock:
            self._queue.clear()

    @property
    def capacity(self) -> int:
        """Maximum number of retained measurements."""
        return self._queue.maxlen

    @property
    def num_dropped(self) -> int:
        """Number of measurements evicted because the buffer was full."""
        with self._lock:
            return self._num_dropped

    def __len__(self) -> int:
        """Number of buffered measurements."""
        with self._lock:
            return len(self._queue)
