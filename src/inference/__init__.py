"""
Inference core: backend negotiation, model loading, preprocessing, forward
pass, decoding and per-cycle buffer reclamation.
"""

from .backend import BackendNegotiator
from .decoder import box_iou, classwise_nms, decode, nms
from .errors import (
    BackendUnavailableError,
    DetectionError,
    InferenceError,
    LoopEscalationError,
    ModelLoadError,
    ShapeMismatchError,
)
from .executor import InferenceExecutor
from .loader import ModelLoader, ProgressTracker
from .preprocess import letterbox, preprocess
from .reclaimer import BufferArena, ResourceReclaimer

__all__ = [
    "BackendNegotiator",
    "ModelLoader",
    "ProgressTracker",
    "InferenceExecutor",
    "ResourceReclaimer",
    "BufferArena",
    "preprocess",
    "letterbox",
    "decode",
    "nms",
    "classwise_nms",
    "box_iou",
    "DetectionError",
    "BackendUnavailableError",
    "ModelLoadError",
    "ShapeMismatchError",
    "InferenceError",
    "LoopEscalationError",
]
