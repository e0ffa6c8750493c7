"""
Pipeline module for the detection core.

The pipeline orchestrates the per-frame flow:
- DetectionPipeline runs one preprocess -> inference -> decode cycle
- DetectionLoopController schedules cycles for streaming sources
- Renderers receive the resulting RenderInstruction
"""

from .cycle import CycleResult, DetectionPipeline
from .loop import DetectionLoopController, FrameClock, IntervalClock, LoopState, LoopStats
from .render import LogRenderer, OverlayRenderer, Renderer, composite

__all__ = [
    "CycleResult",
    "DetectionPipeline",
    "DetectionLoopController",
    "FrameClock",
    "IntervalClock",
    "LoopState",
    "LoopStats",
    "LogRenderer",
    "OverlayRenderer",
    "Renderer",
    "composite",
]
