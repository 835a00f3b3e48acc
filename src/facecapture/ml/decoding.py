"""Decode distance-encoded box and landmark predictions.

Distances are expected to be pre-scaled by the stride. Clamp shapes are given
as ``(height, width)``; x coordinates are clamped to ``[0, width]`` and y
coordinates to ``[0, height]``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import ArrayLike, NDArray


def decode_boxes(
    anchors: ArrayLike,
    distances: ArrayLike,
    clamp_shape: tuple[int, int] | None = None,
) -> NDArray[np.float32]:
    """Convert ``(left, top, right, bottom)`` distances into XYXY boxes.

    Args:
        anchors: (N, 2) anchor centers.
        distances: N*4 distances, flat or shaped (N, 4).
        clamp_shape: Optional (height, width) to clamp coordinates to.

    Returns:
        (N, 4) float32 array of ``[x1, y1, x2, y2]``.
    """
    points = np.asarray(anchors, dtype=np.float32).reshape(-1, 2)
    dist = np.asarray(distances, dtype=np.float32).reshape(-1)
    if dist.size != points.shape[0] * 4:
        raise ValueError(f"Expected {points.shape[0] * 4} box distances, got {dist.size}")
    dist = dist.reshape(-1, 4)

    x1 = points[:, 0] - dist[:, 0]
    y1 = points[:, 1] - dist[:, 1]
    x2 = points[:, 0] + dist[:, 2]
    y2 = points[:, 1] + dist[:, 3]

    if clamp_shape is not None:
        height, width = clamp_shape
        x1 = np.clip(x1, 0, width)
        y1 = np.clip(y1, 0, height)
        x2 = np.clip(x2, 0, width)
        y2 = np.clip(y2, 0, height)

    return np.stack((x1, y1, x2, y2), axis=-1).astype(np.float32, copy=False)


def decode_landmarks(
    anchors: ArrayLike,
    distances: ArrayLike,
    clamp_shape: tuple[int, int] | None = None,
) -> NDArray[np.float32]:
    """Convert per-anchor ``(dx, dy)`` offsets into absolute landmark points.

    The number of points per anchor is inferred as
    ``distances.size / (N * 2)``.

    Returns:
        (N, K, 2) float32 array of landmark coordinates.
    """
    points = np.asarray(anchors, dtype=np.float32).reshape(-1, 2)
    dist = np.asarray(distances, dtype=np.float32).reshape(-1)
    num_anchors = points.shape[0]
    if num_anchors == 0:
        return np.empty((0, 0, 2), dtype=np.float32)
    if dist.size % (num_anchors * 2) != 0:
        raise ValueError(f"Landmark distances ({dist.size}) do not divide evenly across {num_anchors} anchors")

    num_points = dist.size // (num_anchors * 2)
    offsets = dist.reshape(num_anchors, num_points, 2)
    landmarks = points[:, np.newaxis, :] + offsets

    if clamp_shape is not None:
        height, width = clamp_shape
        landmarks[..., 0] = np.clip(landmarks[..., 0], 0, width)
        landmarks[..., 1] = np.clip(landmarks[..., 1], 0, height)

    return landmarks.astype(np.float32, copy=False)
