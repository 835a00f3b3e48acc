"""Per-face quality analysis combining sharpness and landmark geometry."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING

import numpy as np

from facecapture.quality.geometry import geometry_score
from facecapture.quality.sharpness import laplacian_variance

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import ArrayLike, NDArray


@dataclass(frozen=True)
class FaceAnalysis:
    """Quality signals for one aligned face crop.

    ``overall_score`` is the ranking key and equals ``quality_score``; blur
    and size are reported and gated on separately.
    """

    blur_score: float
    quality_score: float
    size_ratio: float
    width: int
    height: int
    overall_score: float

    def to_dict(self) -> dict[str, float]:
        return asdict(self)


def analyze_face(
    aligned: NDArray[np.uint8] | None,
    landmarks: ArrayLike,
    box: Sequence[float],
) -> FaceAnalysis | None:
    """Score an aligned crop.

    Args:
        aligned: Crop returned by :func:`~facecapture.quality.alignment.align_face`.
        landmarks: The five landmarks in source (not aligned) coordinates.
        box: Pre-alignment face box as ``(x, y, w, h)``.

    Returns:
        The analysis, or ``None`` for an empty crop or a landmark set that is
        not five points.
    """
    if aligned is None or aligned.ndim < 2 or aligned.shape[0] == 0 or aligned.shape[1] == 0:
        return None
    points = np.asarray(landmarks, dtype=np.float64).reshape(-1, 2)
    if len(points) != 5:
        return None

    crop_h, crop_w = aligned.shape[:2]
    quality = geometry_score(points)
    face_area = float(box[2]) * float(box[3])

    return FaceAnalysis(
        blur_score=laplacian_variance(aligned),
        quality_score=quality,
        size_ratio=face_area / (crop_w * crop_h),
        width=crop_w,
        height=crop_h,
        overall_score=quality,
    )
