"""Thread-safe fixed-size sample history for charting."""

import logging
import threading
from collections import deque
from typing import List, Tuple

from psu_lib import protocol

logger = logging.getLogger(__name__)


class RingBuffer:
    """Thread-safe fixed-size FIFO of float samples.

    The buffer starts full of fill values and stays full: every append
    evicts the oldest sample, so its length always equals maxlen.
    """

    def __init__(self, maxlen: int = protocol.HISTORY_CAPACITY, fill: float = 0.0) -> None:
        """Initialize ring buffer.

        Args:
            maxlen: Number of samples held. Defaults to 100.
            fill: Initial value of every slot.
        """
        if maxlen <= 0:
            raise ValueError(f"maxlen must be positive, got {maxlen}")

        self._buffer: deque[float] = deque([fill] * maxlen, maxlen=maxlen)
        self._lock = threading.Lock()
        self._maxlen = maxlen
        self._fill = fill

    def append(self, value: float) -> None:
        """Append a sample, evicting the oldest."""
        with self._lock:
            self._buffer.append(value)

    def snapshot(self) -> List[float]:
        """Copy of the samples, oldest to newest."""
        with self._lock:
            return list(self._buffer)

    def clear(self) -> None:
        """Reset every slot to the fill value."""
        with self._lock:
            self._buffer.extend([self._fill] * self._maxlen)

    def __len__(self) -> int:
        with self._lock:
            return len(self._buffer)

    @property
    def maxlen(self) -> int:
        """Maximum capacity of buffer."""
        return self._maxlen


class ChannelHistory:
    """Paired voltage/current histories advanced together.

    Both channels are pushed under one lock so a reader never sees one
    channel a sample ahead of the other.
    """

    def __init__(self, capacity: int = protocol.HISTORY_CAPACITY) -> None:
        self._lock = threading.Lock()
        self._voltage = RingBuffer(maxlen=capacity)
        self._current = RingBuffer(maxlen=capacity)

    def push(self, voltage: float, current: float) -> None:
        """Append one sample to each channel."""
        with self._lock:
            self._voltage.append(voltage)
            self._current.append(current)
        logger.debug(f"History push: {voltage}, {current}")

    def snapshot(self) -> Tuple[List[float], List[float]]:
        """Copy of (voltage, current) samples, oldest to newest."""
        with self._lock:
            return self._voltage.snapshot(), self._current.snapshot()

    def clear(self) -> None:
        with self._lock:
            self._voltage.clear()
            self._current.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._voltage)

    @property
    def capacity(self) -> int:
        return self._voltage.maxlen
