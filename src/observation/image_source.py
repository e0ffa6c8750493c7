"""
Still-image observation source: one frame, then exhausted.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np

from models.frame import FrameData
from .base import ObservationSource, ObservationConfig


@dataclass
class ImageSourceConfig(ObservationConfig):
    path: str = ""


class ImageSource(ObservationSource):
    """Reads an image file (or wraps an in-memory array) as a single frame."""

    streaming = False

    def __init__(self, config: ImageSourceConfig, image: Optional[np.ndarray] = None):
        super().__init__(config)
        self._path = config.path
        self._image = image
        self._served = False

    def open(self) -> None:
        if self._image is None:
            if not os.path.exists(self._path):
                raise RuntimeError(f"Image not found: {self._path}")
            self._image = cv2.imread(self._path, cv2.IMREAD_COLOR)
            if self._image is None:
                raise RuntimeError(f"Could not decode image: {self._path}")
            logging.info(f"ImageSource opened: {self._path} ({self._image.shape[1]}x{self._image.shape[0]})")
        self._served = False
        self._frame_index = 0
        self._is_open = True

    def read(self) -> Optional[FrameData]:
        if not self._is_open or self._served:
            return None
        self._served = True
        self._frame_index = 1
        return FrameData.from_numpy(self._image, frame_index=1, source=self.source_id)

    def close(self) -> None:
        self._is_open = False
