"""
FrameData model for frames handed to the detection pipeline.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np


@dataclass(frozen=True)
class FrameData:
    """
    A raw visual frame owned by the caller.

    The pipeline only reads `frame`; it never writes into it.

    Attributes:
        frame: Pixel data as a numpy array (BGR, uint8).
        width: Frame width in pixels.
        height: Frame height in pixels.
        timestamp: Unix timestamp when the frame was produced.
        frame_index: Sequential frame number since the source opened.
        source: Identifier for the image/camera/video source.
    """
    frame: np.ndarray
    width: int
    height: int
    timestamp: float
    frame_index: int = 0
    source: Optional[str] = None

    @classmethod
    def from_numpy(
        cls,
        frame: np.ndarray,
        timestamp: Optional[float] = None,
        frame_index: int = 0,
        source: Optional[str] = None,
    ) -> "FrameData":
        """Create FrameData from a numpy array."""
        h, w = frame.shape[:2]
        return cls(
            frame=frame,
            width=w,
            height=h,
            timestamp=time.time() if timestamp is None else timestamp,
            frame_index=frame_index,
            source=source,
        )

    @property
    def size(self) -> Tuple[int, int]:
        """Return (width, height)."""
        return (self.width, self.height)
