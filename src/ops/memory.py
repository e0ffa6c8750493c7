"""
Memory monitoring for long-running detection loops.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

import psutil

from inference.reclaimer import ResourceReclaimer

DEFAULT_WARN_MB = 1000.0


class MemoryMonitor:
    """Periodically logs process RSS and the live numeric buffer count."""

    def __init__(
        self,
        reclaimer: Optional[ResourceReclaimer] = None,
        interval: float = 30.0,
        warn_mb: float = DEFAULT_WARN_MB,
    ):
        self.reclaimer = reclaimer
        self.interval = interval
        self.warn_mb = warn_mb
        self.last_check = 0.0
        self._baseline_buffers: Optional[int] = None

    def rss_mb(self) -> float:
        return psutil.Process().memory_info().rss / 1024 / 1024

    def check(self, force: bool = False) -> bool:
        """Log memory state if the interval elapsed. Returns True when it logged."""
        now = time.time()
        if not force and now - self.last_check < self.interval:
            return False
        self.last_check = now

        try:
            memory_mb = self.rss_mb()
        except psutil.Error as e:
            logging.debug(f"Could not check memory usage: {e}")
            return False

        live = self.reclaimer.live_buffers if self.reclaimer is not None else 0
        if self._baseline_buffers is None:
            self._baseline_buffers = live
        logging.info(f"Memory state: rss={memory_mb:.1f} MB live_buffers={live}")

        if memory_mb > self.warn_mb:
            logging.warning(f"High memory usage: {memory_mb:.1f} MB")
        if live > self._baseline_buffers:
            logging.warning(f"Live buffer count grew from {self._baseline_buffers} to {live}")
        return True
