"""
Decode raw YOLO output into detections in original-frame coordinates.

Steps: best class per anchor, confidence filter (inclusive), center/size to
corners, per-class greedy NMS (suppress when IoU is strictly greater than the
threshold), then undo the letterbox.
"""

from __future__ import annotations

from typing import List, Mapping, Optional, Union

import numpy as np

from models.detection import Detection
from models.tensors import LetterboxInversion, RawOutputTensor
from .errors import ShapeMismatchError


def cxcywh_to_xyxy(boxes: np.ndarray) -> np.ndarray:
    out = np.empty_like(boxes, dtype=np.float32)
    out[:, 0] = boxes[:, 0] - boxes[:, 2] / 2
    out[:, 1] = boxes[:, 1] - boxes[:, 3] / 2
    out[:, 2] = boxes[:, 0] + boxes[:, 2] / 2
    out[:, 3] = boxes[:, 1] + boxes[:, 3] / 2
    return out


def box_iou(box: np.ndarray, boxes: np.ndarray) -> np.ndarray:
    """IoU of one xyxy box against N xyxy boxes."""
    x1 = np.maximum(box[0], boxes[:, 0])
    y1 = np.maximum(box[1], boxes[:, 1])
    x2 = np.minimum(box[2], boxes[:, 2])
    y2 = np.minimum(box[3], boxes[:, 3])
    inter = np.clip(x2 - x1, 0, None) * np.clip(y2 - y1, 0, None)

    area = max(box[2] - box[0], 0) * max(box[3] - box[1], 0)
    areas = np.clip(boxes[:, 2] - boxes[:, 0], 0, None) * np.clip(boxes[:, 3] - boxes[:, 1], 0, None)
    union = area + areas - inter
    return np.where(union > 0, inter / np.maximum(union, 1e-12), 0.0)


def nms(boxes: np.ndarray, scores: np.ndarray, iou_threshold: float) -> np.ndarray:
    """
    Greedy NMS over a single class.

    Returns kept indices ordered by descending score.
    """
    order = np.argsort(-scores, kind="stable")
    keep: List[int] = []
    while order.size > 0:
        best = int(order[0])
        keep.append(best)
        rest = order[1:]
        if rest.size == 0:
            break
        ious = box_iou(boxes[best], boxes[rest])
        order = rest[ious <= iou_threshold]
    return np.array(keep, dtype=np.int64)


def classwise_nms(
    boxes: np.ndarray,
    scores: np.ndarray,
    class_ids: np.ndarray,
    iou_threshold: float,
) -> np.ndarray:
    """NMS run independently per class. Kept indices by descending score."""
    keep: List[int] = []
    for cls in np.unique(class_ids):
        idx = np.flatnonzero(class_ids == cls)
        keep.extend(idx[nms(boxes[idx], scores[idx], iou_threshold)].tolist())
    if not keep:
        return np.zeros(0, dtype=np.int64)
    kept = np.array(keep, dtype=np.int64)
    return kept[np.argsort(-scores[kept], kind="stable")]


def invert_boxes(boxes: np.ndarray, inversion: LetterboxInversion, clip: bool = True) -> np.ndarray:
    """Map xyxy boxes from network pixels back to original-frame pixels."""
    out = boxes.astype(np.float64, copy=True)
    out[:, [0, 2]] = (out[:, [0, 2]] - inversion.pad_x) / inversion.scale
    out[:, [1, 3]] = (out[:, [1, 3]] - inversion.pad_y) / inversion.scale
    if clip and inversion.frame_width > 0 and inversion.frame_height > 0:
        out[:, [0, 2]] = np.clip(out[:, [0, 2]], 0, inversion.frame_width)
        out[:, [1, 3]] = np.clip(out[:, [1, 3]], 0, inversion.frame_height)
    return out


def decode(
    raw: Union[RawOutputTensor, np.ndarray],
    confidence_threshold: float,
    iou_threshold: float,
    inversion: LetterboxInversion,
    max_detections: Optional[int] = None,
    clip: bool = True,
    class_names: Optional[Mapping[int, str]] = None,
) -> List[Detection]:
    """
    Convert one cycle's raw output into detections.

    Args:
        raw: Rows of [cx, cy, w, h, class scores...] in network pixels.
        confidence_threshold: Minimum winning class score, inclusive.
        iou_threshold: Same-class boxes overlapping an accepted box by more
            than this are suppressed.
        inversion: Scale and padding recorded by the preprocessor.
        max_detections: Keep at most this many after NMS (None = no limit).
        clip: Clamp boxes to the original frame.
        class_names: Optional id to label mapping.

    Returns:
        Detections sorted by descending confidence. Empty when nothing passes.
    """
    data = raw.data if isinstance(raw, RawOutputTensor) else np.asarray(raw)
    if data.ndim != 2 or data.shape[1] < 5:
        raise ShapeMismatchError(f"Decoder expects (anchors, 4 + classes), got {data.shape}")
    if data.shape[0] == 0:
        return []

    class_scores = data[:, 4:]
    class_ids = np.argmax(class_scores, axis=1)
    scores = class_scores[np.arange(class_scores.shape[0]), class_ids]

    mask = scores >= confidence_threshold
    if not np.any(mask):
        return []

    boxes = cxcywh_to_xyxy(data[mask, :4])
    scores = scores[mask]
    class_ids = class_ids[mask]

    keep = classwise_nms(boxes, scores, class_ids, iou_threshold)
    if max_detections is not None and max_detections > 0:
        keep = keep[:max_detections]

    boxes = invert_boxes(boxes[keep], inversion, clip=clip)
    names = class_names or {}

    detections: List[Detection] = []
    for (x1, y1, x2, y2), score, cls in zip(boxes, scores[keep], class_ids[keep]):
        class_id = int(cls)
        detections.append(
            Detection.from_xyxy(
                float(x1), float(y1), float(x2), float(y2),
                confidence=float(score),
                class_id=class_id,
                class_name=names.get(class_id),
            )
        )
    return detections
