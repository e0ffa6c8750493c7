"""
ObservationSource interface for the input-source collaborator.

A source supplies FrameData and owns its lifecycle (open/read/close). The
detection loop reacts to that lifecycle: opening a streaming source starts
the loop, closing it or running out of frames stops it. Still-image sources
produce a single frame and get exactly one pipeline cycle.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Optional

from models.frame import FrameData


@dataclass
class ObservationConfig:
    """
    Base configuration for observation sources.

    Attributes:
        source_id: Identifier for this source (e.g., "camera", "clip.mp4").
        resolution: Requested (width, height). None = source default.
        fps: Requested frames per second. None = source default.
        metadata: Additional source-specific configuration.
    """
    source_id: str = "default"
    resolution: Optional[tuple[int, int]] = None
    fps: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class ObservationSource(ABC):
    """
    Abstract base class for frame sources.

    Lifecycle:
        1. Create instance with config
        2. open()
        3. read() until it returns None
        4. close()

    Also usable as a context manager and as an iterator over frames.
    """

    streaming: bool = True

    def __init__(self, config: ObservationConfig):
        self._config = config
        self._is_open = False
        self._frame_index = 0

    @property
    def source_id(self) -> str:
        return self._config.source_id

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def frame_index(self) -> int:
        """Number of frames read since open."""
        return self._frame_index

    @abstractmethod
    def open(self) -> None:
        """
        Open the source. Must be called before read().

        Raises:
            RuntimeError: If the source cannot be opened.
        """

    @abstractmethod
    def read(self) -> Optional[FrameData]:
        """Next frame, or None when the source is exhausted or failing."""

    @abstractmethod
    def close(self) -> None:
        """Release the source. Safe to call multiple times."""

    def __enter__(self) -> "ObservationSource":
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def __iter__(self) -> Iterator[FrameData]:
        if not self._is_open:
            raise RuntimeError("Source must be open before iterating")

        while True:
            frame_data = self.read()
            if frame_data is None:
                break
            yield frame_data
