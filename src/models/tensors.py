"""
Per-cycle numeric buffers passed between preprocess, inference and decode.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Tuple

import numpy as np


@dataclass(frozen=True)
class PreprocessedTensor:
    """
    Letterboxed, normalized network input plus what is needed to undo it.

    Attributes:
        data: float32 array shaped exactly like the network input.
        scale: Uniform resize factor applied to the frame.
        pad_x: Left padding in network pixels.
        pad_y: Top padding in network pixels.
        frame_width: Width of the source frame.
        frame_height: Height of the source frame.
    """
    data: np.ndarray
    scale: float
    pad_x: float
    pad_y: float
    frame_width: int
    frame_height: int

    @property
    def shape(self) -> Tuple[int, ...]:
        return tuple(self.data.shape)

    @property
    def inversion(self) -> "LetterboxInversion":
        return LetterboxInversion(
            scale=self.scale,
            pad_x=self.pad_x,
            pad_y=self.pad_y,
            frame_width=self.frame_width,
            frame_height=self.frame_height,
        )


@dataclass(frozen=True)
class LetterboxInversion:
    """Maps network-space coordinates back to original-frame pixels."""
    scale: float
    pad_x: float = 0.0
    pad_y: float = 0.0
    frame_width: int = 0
    frame_height: int = 0


@dataclass(frozen=True)
class RawOutputTensor:
    """
    Network output normalised to one row per anchor.

    Row layout: [cx, cy, w, h, score_0, ..., score_{C-1}] in network pixels.
    """
    data: np.ndarray

    @property
    def num_anchors(self) -> int:
        return int(self.data.shape[0])

    @property
    def num_classes(self) -> int:
        return int(self.data.shape[1]) - 4
