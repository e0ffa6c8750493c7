"""
Observation layer: where frames come from.

Each source implements the ObservationSource interface and returns FrameData
objects; the detection loop never touches cv2 capture objects directly.
"""

from .base import ObservationSource, ObservationConfig
from .image_source import ImageSource, ImageSourceConfig
from .opencv_source import OpenCVSource, OpenCVSourceConfig

__all__ = [
    "ObservationSource",
    "ObservationConfig",
    "ImageSource",
    "ImageSourceConfig",
    "OpenCVSource",
    "OpenCVSourceConfig",
]
