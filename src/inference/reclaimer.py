"""
Per-cycle buffer accounting.

Every numeric buffer created while preprocessing, running or decoding a
frame is registered with the cycle's BufferArena. Leaving the cycle scope
releases them all, on success and on error alike, so the live count after a
cycle always matches the count before it.
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, List, Sequence

import numpy as np


class BufferArena:
    """Buffers owned by a single pipeline cycle."""

    def __init__(self, reclaimer: "ResourceReclaimer", name: str = "cycle"):
        self._reclaimer = reclaimer
        self._buffers: List[np.ndarray] = []
        self._released = False
        self.name = name

    def __len__(self) -> int:
        return len(self._buffers)

    @property
    def released(self) -> bool:
        return self._released

    def track(self, array: np.ndarray) -> np.ndarray:
        """Register an existing array with this arena and return it."""
        if self._released:
            raise RuntimeError(f"Arena '{self.name}' already released")
        self._buffers.append(array)
        self._reclaimer._acquire(1)
        return array

    def track_all(self, arrays: Sequence[np.ndarray]) -> List[np.ndarray]:
        return [self.track(a) for a in arrays]

    def ones(self, shape, dtype=np.float32) -> np.ndarray:
        return self.track(np.ones(shape, dtype=dtype))

    def zeros(self, shape, dtype=np.float32) -> np.ndarray:
        return self.track(np.zeros(shape, dtype=dtype))

    def release(self) -> int:
        """Drop every tracked buffer. Safe to call more than once."""
        if self._released:
            return 0
        count = len(self._buffers)
        self._buffers.clear()
        self._released = True
        self._reclaimer._release(count)
        return count


class ResourceReclaimer:
    """
    Hands out one BufferArena per cycle and keeps the process-wide live count.

    Cycle bodies may run on worker threads, so the counter is lock-protected.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._live = 0
        self._cycles = 0
        self._released_total = 0

    @property
    def live_buffers(self) -> int:
        with self._lock:
            return self._live

    @property
    def cycles(self) -> int:
        with self._lock:
            return self._cycles

    @property
    def released_total(self) -> int:
        with self._lock:
            return self._released_total

    @contextmanager
    def cycle(self, name: str = "cycle") -> Iterator[BufferArena]:
        arena = BufferArena(self, name=name)
        try:
            yield arena
        finally:
            released = arena.release()
            with self._lock:
                self._cycles += 1
            logging.debug(f"[RECLAIM] {name}: released {released} buffers, live={self.live_buffers}")

    def _acquire(self, n: int) -> None:
        with self._lock:
            self._live += n

    def _release(self, n: int) -> None:
        with self._lock:
            self._live -= n
            self._released_total += n
