"""
One detection cycle: preprocess -> inference -> decode, inside a buffer arena.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import List, Optional

from inference.decoder import decode
from inference.executor import InferenceExecutor
from inference.preprocess import preprocess
from inference.reclaimer import ResourceReclaimer
from models.config import DetectionConfig
from models.detection import Detection, RenderInstruction
from models.frame import FrameData
from models.state import ModelHandle


@dataclass
class CycleResult:
    """Outcome of one successful cycle."""
    frame: FrameData
    detections: List[Detection]
    instruction: RenderInstruction
    duration_ms: float


class DetectionPipeline:
    """
    Runs single cycles against a shared, read-only ModelHandle.

    Each call allocates its own buffers, so several sources may drive cycles
    against the same model. Buffers are released when the call returns or
    raises.
    """

    def __init__(
        self,
        model: ModelHandle,
        config: Optional[DetectionConfig] = None,
        reclaimer: Optional[ResourceReclaimer] = None,
        executor: Optional[InferenceExecutor] = None,
    ):
        self.model = model
        self.config = config or DetectionConfig()
        self.reclaimer = reclaimer or ResourceReclaimer()
        self.executor = executor or InferenceExecutor()

    def run_cycle(self, frame: FrameData) -> CycleResult:
        cfg = self.config
        t0 = time.perf_counter()

        with self.reclaimer.cycle(f"frame-{frame.frame_index}") as arena:
            tensor = preprocess(
                frame,
                self.model.input_shape,
                layout=self.model.layout,
                fill_value=cfg.fill_value,
                arena=arena,
            )
            raw = self.executor.run(self.model, tensor, arena=arena)
            detections = decode(
                raw,
                cfg.conf_threshold,
                cfg.iou_threshold,
                tensor.inversion,
                max_detections=cfg.max_detections,
                clip=cfg.clip_boxes,
                class_names=self.model.class_names,
            )

        return CycleResult(
            frame=frame,
            detections=detections,
            instruction=RenderInstruction(
                detections=tuple(detections),
                canvas_width=frame.width,
                canvas_height=frame.height,
            ),
            duration_ms=(time.perf_counter() - t0) * 1000,
        )
