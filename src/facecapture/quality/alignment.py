"""Roll alignment: level the eye line, then crop the face region."""

from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING

import cv2
import numpy as np

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import ArrayLike, NDArray

logger = logging.getLogger(__name__)

DEFAULT_PADDING = 2


def leveling_matrix(
    landmarks: NDArray[np.float64],
    image_width: int,
    image_height: int,
) -> tuple[NDArray[np.float64], int, int]:
    """Affine matrix that rotates an image about the eye center to level the eyes.

    The matrix already includes the translation onto an enlarged canvas that
    holds every rotated image corner, so the same matrix maps pixels and
    points alike.

    Returns:
        Tuple of (2x3 matrix, canvas width, canvas height).
    """
    left_eye, right_eye = landmarks[0], landmarks[1]
    roll = math.atan2(right_eye[1] - left_eye[1], right_eye[0] - left_eye[0])
    center = (float(left_eye[0] + right_eye[0]) / 2, float(left_eye[1] + right_eye[1]) / 2)

    # OpenCV's positive angle turns the image opposite to the eye-line slope.
    matrix = cv2.getRotationMatrix2D(center, math.degrees(roll), 1.0)

    corners = np.array(
        [[0, 0], [image_width, 0], [0, image_height], [image_width, image_height]],
        dtype=np.float64,
    )
    rotated = transform_points(matrix, corners)
    min_x, min_y = rotated.min(axis=0)
    max_x, max_y = rotated.max(axis=0)

    matrix[0, 2] -= min_x
    matrix[1, 2] -= min_y
    return matrix, math.ceil(max_x - min_x), math.ceil(max_y - min_y)


def transform_points(matrix: NDArray[np.float64], points: ArrayLike) -> NDArray[np.float64]:
    """Apply a 2x3 affine matrix to (N, 2) points."""
    pts = np.asarray(points, dtype=np.float64).reshape(-1, 2)
    return pts @ matrix[:, :2].T + matrix[:, 2]


def align_face(
    image: NDArray[np.uint8],
    landmarks: ArrayLike,
    box: Sequence[float],
    padding: int = DEFAULT_PADDING,
) -> NDArray[np.uint8] | None:
    """Rotate ``image`` so the eyes are level and crop the face box.

    Args:
        image: HxW or HxWxC source image.
        landmarks: Five (x, y) points: left eye, right eye, nose, left and
            right mouth corners, in source pixels.
        box: Face box ``(x1, y1, x2, y2)`` in source pixels.
        padding: Pixels added on every side of the rotated box.

    Returns:
        The cropped face as a new array, or ``None`` when the landmarks are
        not five finite points or the rotated region is empty.
    """
    points = np.asarray(landmarks, dtype=np.float64).reshape(-1, 2)
    if len(points) != 5:
        logger.debug("Invalid landmark count for alignment: %d", len(points))
        return None
    if not np.isfinite(points).all():
        logger.debug("Non-finite landmarks, skipping alignment")
        return None
    if image.size == 0:
        return None

    height, width = image.shape[:2]
    matrix, canvas_w, canvas_h = leveling_matrix(points, width, height)
    if canvas_w <= 0 or canvas_h <= 0:
        logger.debug("Degenerate rotated canvas %dx%d", canvas_w, canvas_h)
        return None

    x1, y1, x2, y2 = (float(v) for v in box)
    box_corners = transform_points(matrix, [[x1, y1], [x2, y1], [x1, y2], [x2, y2]])
    min_bx = max(0, math.floor(box_corners[:, 0].min()) - padding)
    max_bx = min(canvas_w, math.ceil(box_corners[:, 0].max()) + padding)
    min_by = max(0, math.floor(box_corners[:, 1].min()) - padding)
    max_by = min(canvas_h, math.ceil(box_corners[:, 1].max()) + padding)

    if max_bx <= min_bx or max_by <= min_by:
        logger.debug("Invalid bounding box dimensions after rotation")
        return None

    rotated = cv2.warpAffine(
        image,
        matrix,
        (canvas_w, canvas_h),
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=0,
    )
    return np.ascontiguousarray(rotated[min_by:max_by, min_bx:max_bx])
