"""Greedy non-maximum suppression over XYXY boxes."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import ArrayLike

DEFAULT_IOU_THRESHOLD: float = 0.4


def iou(box_a: ArrayLike, box_b: ArrayLike) -> float:
    """Overlap ratio of two XYXY boxes, inclusive pixel-area convention."""
    a = np.asarray(box_a, dtype=np.float64)
    b = np.asarray(box_b, dtype=np.float64)
    w = max(0.0, min(a[2], b[2]) - max(a[0], b[0]) + 1)
    h = max(0.0, min(a[3], b[3]) - max(a[1], b[1]) + 1)
    inter = w * h
    area_a = (a[2] - a[0] + 1) * (a[3] - a[1] + 1)
    area_b = (b[2] - b[0] + 1) * (b[3] - b[1] + 1)
    return float(inter / (area_a + area_b - inter))


def suppress(
    boxes: ArrayLike,
    scores: ArrayLike,
    iou_threshold: float = DEFAULT_IOU_THRESHOLD,
) -> list[int]:
    """Return indices of boxes kept by greedy NMS.

    Boxes are visited by descending score; equal scores keep their original
    order. A box is dropped when its overlap with an already kept box exceeds
    ``iou_threshold``.

    Args:
        boxes: (N, 4) XYXY boxes.
        scores: (N,) confidence scores.
        iou_threshold: Overlap above which the lower-ranked box is suppressed.

    Returns:
        Original indices of kept boxes, highest score first.
    """
    dets = np.asarray(boxes, dtype=np.float64).reshape(-1, 4)
    conf = np.asarray(scores, dtype=np.float64).reshape(-1)
    if dets.shape[0] != conf.shape[0]:
        raise ValueError(f"Got {dets.shape[0]} boxes but {conf.shape[0]} scores")
    if dets.shape[0] == 0:
        return []

    x1, y1, x2, y2 = dets[:, 0], dets[:, 1], dets[:, 2], dets[:, 3]
    areas = (x2 - x1 + 1) * (y2 - y1 + 1)
    order = np.argsort(-conf, kind="stable")

    keep: list[int] = []
    while order.size > 0:
        i = int(order[0])
        keep.append(i)
        rest = order[1:]

        xx1 = np.maximum(x1[i], x1[rest])
        yy1 = np.maximum(y1[i], y1[rest])
        xx2 = np.minimum(x2[i], x2[rest])
        yy2 = np.minimum(y2[i], y2[rest])

        w = np.maximum(0.0, xx2 - xx1 + 1)
        h = np.maximum(0.0, yy2 - yy1 + 1)
        inter = w * h
        ovr = inter / (areas[i] + areas[rest] - inter)

        order = rest[ovr <= iou_threshold]

    return keep
