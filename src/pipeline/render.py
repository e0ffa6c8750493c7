"""
Rendering collaborators.

The core hands over a RenderInstruction (detections + canvas size) and never
draws itself. OverlayRenderer draws boxes and labels on a transparent layer
the size of the canvas, which the shell composites over the frame.
"""

from __future__ import annotations

import logging
from typing import Optional, Protocol, Tuple

import cv2
import numpy as np

from models.detection import RenderInstruction

# Ultralytics palette, converted to BGR on use
PALETTE_HEX = (
    "FF3838", "FF9D97", "FF701F", "FFB21D", "CFD231", "48F90A", "92CC17", "3DDB86", "1A9334", "00D4BB",
    "2C99A8", "00C2FF", "344593", "6473FF", "0018EC", "8438FF", "520085", "CB38FF", "FF95C8", "FF37C7",
)


def class_color(class_id: int) -> Tuple[int, int, int]:
    h = PALETTE_HEX[class_id % len(PALETTE_HEX)]
    r, g, b = int(h[0:2], 16), int(h[2:4], 16), int(h[4:6], 16)
    return (b, g, r)


class Renderer(Protocol):
    def render(self, instruction: RenderInstruction) -> None:
        ...


class LogRenderer(Renderer):
    """Writes a one-line summary of each instruction to the log."""

    def render(self, instruction: RenderInstruction) -> None:
        summary = ", ".join(f"{d.label} {d.confidence:.2f}" for d in instruction.detections)
        logging.info(f"{len(instruction.detections)} detections: {summary or '-'}")
        for det in instruction.detections:
            logging.debug(f"  {det.to_dict()}")


class OverlayRenderer(Renderer):
    """Draws each instruction onto a fresh BGRA layer kept in `layer`."""

    def __init__(self, line_width: Optional[int] = None, font_scale: float = 0.5):
        self.line_width = line_width
        self.font_scale = font_scale
        self.layer: Optional[np.ndarray] = None

    def render(self, instruction: RenderInstruction) -> None:
        w, h = instruction.canvas_size
        layer = np.zeros((h, w, 4), dtype=np.uint8)
        thickness = self.line_width or max(2, int(round(min(w, h) / 320)))
        font = cv2.FONT_HERSHEY_SIMPLEX

        for det in instruction.detections:
            x1, y1, x2, y2 = det.box.as_int_tuple()
            color = class_color(det.class_id) + (255,)
            cv2.rectangle(layer, (x1, y1), (x2, y2), color, thickness)

            label = f"{det.label} {det.confidence * 100:.1f}%"
            (tw, th), _ = cv2.getTextSize(label, font, self.font_scale, 1)
            top = y1 - th - 6 if y1 - th - 6 >= 0 else y1
            cv2.rectangle(layer, (x1, top), (x1 + tw + 4, top + th + 6), color, -1)
            cv2.putText(layer, label, (x1 + 2, top + th + 2), font, self.font_scale, (255, 255, 255, 255), 1)

        self.layer = layer


def composite(frame: np.ndarray, layer: Optional[np.ndarray]) -> np.ndarray:
    """Blend a BGRA overlay onto a copy of a BGR frame."""
    if layer is None or layer.shape[:2] != frame.shape[:2]:
        return frame.copy()
    alpha = layer[..., 3:4].astype(np.float32) / 255.0
    blended = frame.astype(np.float32) * (1.0 - alpha) + layer[..., :3].astype(np.float32) * alpha
    return blended.astype(np.uint8)
