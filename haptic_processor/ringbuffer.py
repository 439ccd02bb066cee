"""
Bounded drop-oldest frame queue.

Producers (audio capture threads) push frames without ever blocking; when
the queue is full the oldest frame is evicted so the consumer always sees
the freshest audio. Output is perceptual, so losing stale frames is
preferable to falling behind.

Usage:
    queue = FrameQueue(capacity=64)

    # Producer thread
    queue.push(frame)

    # Consumer thread
    frame = queue.pop()
    if frame is not None:
        ...
"""

import threading
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

from haptic_processor.frames import Frame

DEFAULT_CAPACITY = 64


@dataclass
class BufferStats:
    """Statistics for queue operations."""
    writes: int = 0
    reads: int = 0
    overruns: int = 0      # Frames evicted to make room for newer ones
    underruns: int = 0     # Pop attempts on an empty queue
    capacity: int = 0
    current_fill: int = 0

    def reset(self):
        """Reset all counters."""
        self.writes = 0
        self.reads = 0
        self.overruns = 0
        self.underruns = 0


class FrameQueue:
    """
    Fixed-capacity frame queue with drop-oldest overflow.

    Safe for any number of producers and one consumer. All access goes
    through a single lock; each critical section is a couple of deque
    operations so producers never wait on frame processing.

    Attributes:
        capacity: Maximum number of frames held at once
    """

    def __init__(self, capacity: int = DEFAULT_CAPACITY):
        """
        Initialize the queue.

        Args:
            capacity: Number of frames the queue can hold (must be positive)
        """
        if capacity <= 0:
            raise ValueError(f"Queue capacity must be positive, got: {capacity}")

        self.capacity = capacity
        self._frames: Deque[Frame] = deque()
        self._lock = threading.Lock()
        self._stats = BufferStats(capacity=capacity)

    def push(self, frame: Frame) -> bool:
        """
        Insert a frame, evicting the oldest one if the queue is full.

        Non-blocking. No backpressure is signalled to the producer.

        Returns:
            True if the frame was stored without evicting anything
        """
        with self._lock:
            evicted = False
            if len(self._frames) >= self.capacity:
                self._frames.popleft()
                self._stats.overruns += 1
                evicted = True
            self._frames.append(frame)
            self._stats.writes += 1
            return not evicted

    def pop(self) -> Optional[Frame]:
        """
        Remove and return the oldest queued frame.

        Non-blocking. Returns None if the queue is empty.
        """
        with self._lock:
            if not self._frames:
                self._stats.underruns += 1
                return None
            self._stats.reads += 1
            return self._frames.popleft()

    def peek(self) -> Optional[Frame]:
        """Return the next frame without removing it."""
        with self._lock:
            return self._frames[0] if self._frames else None

    def clear(self):
        """Drop every queued frame."""
        with self._lock:
            self._frames.clear()

    @property
    def available(self) -> int:
        """Number of frames waiting to be read."""
        with self._lock:
            return len(self._frames)

    @property
    def is_empty(self) -> bool:
        return self.available == 0

    @property
    def is_full(self) -> bool:
        return self.available >= self.capacity

    @property
    def stats(self) -> BufferStats:
        """Get queue statistics."""
        with self._lock:
            self._stats.current_fill = len(self._frames)
            return self._stats

    def reset_stats(self):
        """Reset statistics counters."""
        with self._lock:
            self._stats.reset()

    def __len__(self) -> int:
        return self.available
