"""
Frame preprocessing: letterbox, normalise and lay out a frame as network input.
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple, Union

import cv2
import numpy as np

from models.frame import FrameData
from models.tensors import PreprocessedTensor
from .errors import ShapeMismatchError
from .reclaimer import BufferArena

DEFAULT_FILL_VALUE = 114


def target_hw(target_shape: Sequence[int], layout: str = "NCHW") -> Tuple[int, int, int]:
    """Return (height, width, channels) of a batch-first input shape."""
    if len(target_shape) != 4:
        raise ShapeMismatchError(f"Expected a 4-d input shape, got {tuple(target_shape)}")
    if layout == "NCHW":
        _, c, h, w = target_shape
    elif layout == "NHWC":
        _, h, w, c = target_shape
    else:
        raise ValueError(f"Unknown layout: {layout}")
    return int(h), int(w), int(c)


def letterbox(
    image: np.ndarray,
    new_hw: Tuple[int, int],
    fill_value: int = DEFAULT_FILL_VALUE,
) -> Tuple[np.ndarray, float, int, int]:
    """
    Resize keeping aspect ratio and center inside a canvas of `new_hw`.

    Returns the padded image, the scale factor and the (left, top) padding.
    """
    h, w = image.shape[:2]
    target_h, target_w = new_hw
    scale = min(target_w / w, target_h / h)
    new_w = min(target_w, max(1, int(round(w * scale))))
    new_h = min(target_h, max(1, int(round(h * scale))))

    if (new_w, new_h) != (w, h):
        image = cv2.resize(image, (new_w, new_h), interpolation=cv2.INTER_LINEAR)

    pad_x = (target_w - new_w) // 2
    pad_y = (target_h - new_h) // 2
    canvas = cv2.copyMakeBorder(
        image,
        pad_y,
        target_h - new_h - pad_y,
        pad_x,
        target_w - new_w - pad_x,
        cv2.BORDER_CONSTANT,
        value=(fill_value, fill_value, fill_value),
    )
    return canvas, scale, pad_x, pad_y


def _as_bgr(image: np.ndarray) -> np.ndarray:
    if image is None or not isinstance(image, np.ndarray):
        raise ShapeMismatchError("Frame is not a numpy array")
    if image.size == 0 or image.ndim not in (2, 3):
        raise ShapeMismatchError(f"Unusable frame shape {getattr(image, 'shape', None)}")

    if image.dtype != np.uint8:
        image = np.clip(image, 0, 255).astype(np.uint8)

    if image.ndim == 2 or image.shape[2] == 1:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    if image.shape[2] == 4:
        return cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)
    if image.shape[2] != 3:
        raise ShapeMismatchError(f"Unsupported channel count {image.shape[2]}")
    return image


def preprocess(
    frame: Union[FrameData, np.ndarray],
    target_shape: Sequence[int],
    layout: str = "NCHW",
    fill_value: int = DEFAULT_FILL_VALUE,
    swap_rb: bool = True,
    arena: Optional[BufferArena] = None,
) -> PreprocessedTensor:
    """
    Turn a BGR frame into a network input tensor.

    Args:
        frame: FrameData or raw BGR array. Never modified.
        target_shape: Batch-first network input shape (batch must be 1).
        layout: "NCHW" or "NHWC".
        fill_value: Padding value for the letterbox border.
        swap_rb: Convert BGR to RGB, which is what YOLO exports expect.
        arena: Cycle arena that takes ownership of the output buffer.

    Raises:
        ShapeMismatchError: For empty or malformed frames, or a target shape
            this preprocessor cannot produce.
    """
    image = frame.frame if isinstance(frame, FrameData) else frame
    image = _as_bgr(image)

    target_shape = tuple(int(d) for d in target_shape)
    target_h, target_w, channels = target_hw(target_shape, layout)
    if target_shape[0] != 1:
        raise ShapeMismatchError(f"Only batch size 1 is supported, got {target_shape[0]}")
    if channels != 3:
        raise ShapeMismatchError(f"Network expects {channels} channels, frames have 3")

    frame_h, frame_w = image.shape[:2]
    canvas, scale, pad_x, pad_y = letterbox(image, (target_h, target_w), fill_value)
    if swap_rb:
        canvas = cv2.cvtColor(canvas, cv2.COLOR_BGR2RGB)

    data = canvas.astype(np.float32) / 255.0
    if layout == "NCHW":
        data = data.transpose(2, 0, 1)
    data = np.ascontiguousarray(data[None, ...])

    if data.shape != target_shape:
        raise ShapeMismatchError(f"Preprocessed shape {data.shape} != network input {target_shape}")

    if arena is not None:
        arena.track(data)

    return PreprocessedTensor(
        data=data,
        scale=scale,
        pad_x=float(pad_x),
        pad_y=float(pad_y),
        frame_width=frame_w,
        frame_height=frame_h,
    )
