"""
Single forward pass of a loaded network.
"""

from __future__ import annotations

from typing import Optional, Union

import numpy as np

from models.state import ModelHandle
from models.tensors import PreprocessedTensor, RawOutputTensor
from .errors import InferenceError, ShapeMismatchError
from .reclaimer import BufferArena


def normalize_output(output: np.ndarray, num_classes: Optional[int] = None) -> np.ndarray:
    """
    Bring a YOLO detection head to (num_anchors, 4 + num_classes).

    Accepts (1, N, C), (1, C, N), (N, C) and (C, N). When the class count is
    known and one axis equals 4 + num_classes, that axis is the channel axis;
    otherwise the longer axis is taken as the anchor axis, which holds for
    real exports (e.g. 84 x 8400).
    """
    arr = np.asarray(output)
    if arr.ndim == 3:
        if arr.shape[0] != 1:
            raise ShapeMismatchError(f"Expected batch size 1 in output, got {arr.shape}")
        arr = arr[0]
    if arr.ndim != 2:
        raise ShapeMismatchError(f"Unexpected output rank: {np.asarray(output).shape}")

    # class_names may only cover some of the classes, so the count decides
    # only when one axis actually matches it
    width = 4 + num_classes if num_classes else None
    if width is not None and width in arr.shape:
        if arr.shape[1] != width:
            arr = arr.T
    elif arr.shape[0] < arr.shape[1]:
        arr = arr.T

    if arr.shape[1] < 5:
        raise ShapeMismatchError(f"Output rows need 4 box values and at least one score, got {arr.shape}")
    return np.ascontiguousarray(arr, dtype=np.float32)


class InferenceExecutor:
    """Runs one forward pass per call. Batch size 1, no retries."""

    def run(
        self,
        model: ModelHandle,
        tensor: Union[PreprocessedTensor, np.ndarray],
        arena: Optional[BufferArena] = None,
    ) -> RawOutputTensor:
        data = tensor.data if isinstance(tensor, PreprocessedTensor) else tensor
        if tuple(data.shape) != tuple(model.input_shape):
            raise ShapeMismatchError(
                f"Input tensor shape {tuple(data.shape)} != network input {tuple(model.input_shape)}"
            )

        output_names = list(model.output_names[:1]) or None
        try:
            outputs = model.session.run(output_names, {model.input_name: data})
        except Exception as e:
            raise InferenceError(f"Forward pass failed: {e}") from e

        if not outputs:
            raise ShapeMismatchError("Network returned no outputs")
        if arena is not None:
            arena.track_all([np.asarray(o) for o in outputs])

        raw = normalize_output(outputs[0], num_classes=len(model.class_names) or None)
        if arena is not None:
            arena.track(raw)
        return RawOutputTensor(raw)
