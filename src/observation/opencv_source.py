"""
OpenCV-based observation source.

Supports:
- Webcams (device_id as int, e.g., 0)
- Network streams (device_id as URL)
- Video files (device_id as file path)
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union
from urllib.parse import urlparse

import cv2
import numpy as np

from models.config import SourceConfig
from models.frame import FrameData
from .base import ObservationSource, ObservationConfig


def mask_credentials(device_id: Union[int, str]) -> str:
    """Hide user:password in stream URLs before logging them."""
    text = str(device_id)
    parsed = urlparse(text)
    if parsed.password:
        return text.replace(f"{parsed.username}:{parsed.password}@", "***@")
    return text


@dataclass
class OpenCVSourceConfig(ObservationConfig):
    """
    Configuration for OpenCV capture sources.

    Attributes:
        device_id: Camera index (int), stream URL (str), or file path (str).
        buffer_size: Capture buffer size, kept small for live feeds.
        max_retries: Attempts when opening the device.
        max_read_failures: Consecutive failed reads a live source may
            reconnect from before it is treated as finished.
        swap_rb: Swap R/B channels for sources that deliver RGB.
        rotate: Rotation in degrees (0, 90, 180, 270).
        flip_horizontal: Mirror horizontally (typical for front cameras).
        flip_vertical: Flip vertically.
    """
    device_id: Union[int, str] = 0
    buffer_size: int = 1
    max_retries: int = 3
    max_read_failures: int = 3
    swap_rb: bool = False
    rotate: int = 0
    flip_horizontal: bool = False
    flip_vertical: bool = False

    @classmethod
    def from_source_config(cls, cfg: SourceConfig, source_id: str = "camera") -> "OpenCVSourceConfig":
        return cls(
            source_id=source_id,
            resolution=tuple(cfg.resolution) if cfg.resolution else None,
            fps=cfg.fps,
            device_id=cfg.device_id,
            swap_rb=cfg.swap_rb,
            rotate=cfg.rotate,
            flip_horizontal=cfg.flip_horizontal,
            flip_vertical=cfg.flip_vertical,
        )


class OpenCVSource(ObservationSource):
    """
    Camera or video file source backed by cv2.VideoCapture.
    Live sources reconnect after failed reads.

    Example:
        with OpenCVSource(OpenCVSourceConfig(device_id="clip.mp4")) as source:
            for frame_data in source:
                ...
    """

    def __init__(self, config: OpenCVSourceConfig):
        super().__init__(config)
        self._opencv_config = config
        self._cap: Optional[cv2.VideoCapture] = None
        self._consecutive_failures = 0

    @property
    def device_id(self) -> Union[int, str]:
        return self._opencv_config.device_id

    @property
    def is_file(self) -> bool:
        return isinstance(self.device_id, str) and os.path.exists(self.device_id)

    def open(self) -> None:
        if self._is_open:
            return

        self._connect(self._opencv_config.max_retries)
        self._is_open = True
        self._frame_index = 0
        self._consecutive_failures = 0
        logging.info(
            f"OpenCVSource opened: source_id={self.source_id}, device={mask_credentials(self.device_id)}, "
            f"info={self.get_video_info()}"
        )

    def _connect(self, attempts: int) -> None:
        for attempt in range(1, attempts + 1):
            self._cap = cv2.VideoCapture(self.device_id)
            if self._cap.isOpened():
                break
            self._cap.release()
            self._cap = None
            if attempt < attempts:
                wait_time = min(2 ** attempt, 10)
                logging.warning(
                    f"Failed to open {mask_credentials(self.device_id)} "
                    f"(attempt {attempt}/{attempts}), retrying in {wait_time}s"
                )
                time.sleep(wait_time)
        else:
            raise RuntimeError(
                f"Failed to open {mask_credentials(self.device_id)} after {attempts} attempts"
            )

        if isinstance(self.device_id, int):
            self._configure_camera()

    def _configure_camera(self) -> None:
        cfg = self._opencv_config
        if cfg.resolution:
            w, h = cfg.resolution
            self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, w)
            self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, h)
        if cfg.fps:
            self._cap.set(cv2.CAP_PROP_FPS, cfg.fps)
        self._cap.set(cv2.CAP_PROP_BUFFERSIZE, cfg.buffer_size)
        logging.info(
            f"Camera settings - Resolution: ({self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)}x"
            f"{self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT)}), FPS: {self._cap.get(cv2.CAP_PROP_FPS)}"
        )

    def read(self) -> Optional[FrameData]:
        """
        Read the next frame.

        Returns None at the end of a video file, or once a live source has
        failed more than `max_read_failures` reads in a row.

        Raises:
            RuntimeError: A live source failed a read and could not be
                reconnected this time; the next read tries again.
        """
        if not self._is_open:
            return None

        ret, frame = self._cap.read() if self._cap is not None else (False, None)
        if not ret or frame is None:
            if self.is_file:
                logging.info("End of video file reached")
                return None
            frame = self._reconnect()
            if frame is None:
                return None
        self._consecutive_failures = 0

        frame = self._apply_transforms(frame)
        self._frame_index += 1
        return FrameData.from_numpy(frame, frame_index=self._frame_index, source=self.source_id)

    def _reconnect(self) -> Optional[np.ndarray]:
        """Reopen a live source after a failed read and try once more."""
        self._consecutive_failures += 1
        limit = self._opencv_config.max_read_failures
        device = mask_credentials(self.device_id)
        if self._consecutive_failures > limit:
            logging.error(f"Too many consecutive read failures from {device}")
            return None

        logging.warning(
            f"Failed to read frame from {device} (failures: {self._consecutive_failures}/{limit}), "
            f"reinitializing..."
        )
        if self._cap is not None:
            self._cap.release()
            self._cap = None
        self._connect(1)

        ret, frame = self._cap.read()
        if not ret or frame is None:
            raise RuntimeError(f"No frame from {device} after reinitializing")
        return frame

    def _apply_transforms(self, frame: np.ndarray) -> np.ndarray:
        """Apply configured transforms (rotate, flip, swap_rb)."""
        cfg = self._opencv_config

        if cfg.rotate == 90:
            frame = cv2.rotate(frame, cv2.ROTATE_90_CLOCKWISE)
        elif cfg.rotate == 180:
            frame = cv2.rotate(frame, cv2.ROTATE_180)
        elif cfg.rotate == 270:
            frame = cv2.rotate(frame, cv2.ROTATE_90_COUNTERCLOCKWISE)

        if cfg.flip_horizontal or cfg.flip_vertical:
            if cfg.flip_horizontal and cfg.flip_vertical:
                flip_code = -1
            elif cfg.flip_horizontal:
                flip_code = 1
            else:
                flip_code = 0
            frame = cv2.flip(frame, flip_code)

        if cfg.swap_rb:
            frame = frame[..., ::-1].copy()

        return frame

    def close(self) -> None:
        if self._cap is not None:
            self._cap.release()
            self._cap = None
        if self._is_open:
            logging.info(f"OpenCVSource closed: source_id={self.source_id}")
        self._is_open = False

    def get_video_info(self) -> Dict[str, Any]:
        if self._cap is None or not self._cap.isOpened():
            return {}
        return {
            "width": int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH)),
            "height": int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT)),
            "fps": self._cap.get(cv2.CAP_PROP_FPS),
            "frame_count": int(self._cap.get(cv2.CAP_PROP_FRAME_COUNT)) if self.is_file else None,
        }
