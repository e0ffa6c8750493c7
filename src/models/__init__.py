"""
Typed models for the object detection core.

Frames, tensors, detections and shared runtime state are plain dataclasses so
they can be passed explicitly through the pipeline instead of living in
module-level globals.
"""

from .frame import FrameData
from .detection import BoundingBox, Detection, RenderInstruction
from .tensors import LetterboxInversion, PreprocessedTensor, RawOutputTensor
from .state import BackendKind, BackendState, LoadProgress, ModelHandle
from .config import (
    Config,
    BackendConfig,
    ModelConfig,
    DetectionConfig,
    LoopConfig,
    SourceConfig,
)

__all__ = [
    # Frame
    "FrameData",
    # Detection
    "BoundingBox",
    "Detection",
    "RenderInstruction",
    # Tensors
    "LetterboxInversion",
    "PreprocessedTensor",
    "RawOutputTensor",
    # State
    "BackendKind",
    "BackendState",
    "LoadProgress",
    "ModelHandle",
    # Config
    "Config",
    "BackendConfig",
    "ModelConfig",
    "DetectionConfig",
    "LoopConfig",
    "SourceConfig",
]
