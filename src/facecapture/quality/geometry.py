"""Landmark-geometry score for ranking frontal, symmetric faces.

The score is a weighted sum of seven terms, each close to 1 for a frontal,
level, symmetric face. It is a ranking heuristic, not a probability: a
perfect face approaches 11 (the sum of the weights).
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import ArrayLike

GEOMETRY_SENTINEL: float = -10.0
"""Returned for landmark sets that cannot be scored; never wins a ranking."""

# eye_level, mouth_level, nose_center, mouth_center, vertical, eye_symmetry, mouth_symmetry
GEOMETRY_WEIGHTS: tuple[int, ...] = (2, 1, 1, 2, 2, 2, 1)


def _dist(a: np.ndarray, b: np.ndarray) -> float:
    return math.hypot(float(a[0] - b[0]), float(a[1] - b[1]))


def geometry_terms(landmarks: ArrayLike) -> tuple[float, ...] | None:
    """Compute the seven unweighted sub-scores, or ``None`` if unscorable.

    Raises:
        ValueError: If ``landmarks`` is not exactly five (x, y) points.
    """
    points = np.asarray(landmarks, dtype=np.float64).reshape(-1, 2)
    if len(points) != 5:
        raise ValueError(f"Expected 5 landmarks, got {len(points)}")
    if (points < 0).any():
        return None

    left_eye, right_eye, nose, left_mouth, right_mouth = points
    eye_center = (left_eye + right_eye) / 2
    mouth_center = (left_mouth + right_mouth) / 2

    eye_dist = _dist(left_eye, right_eye)
    mouth_dist = _dist(left_mouth, right_mouth)
    if eye_dist == 0 or mouth_dist == 0:
        return None

    eye_mouth_dist = _dist(eye_center, mouth_center)
    vertical = (mouth_center[1] - eye_center[1]) / eye_mouth_dist if eye_mouth_dist > 0 else 0.0

    eye_asym = abs(_dist(left_eye, nose) - _dist(right_eye, nose))
    mouth_asym = abs(_dist(left_mouth, nose) - _dist(right_mouth, nose))

    return (
        math.exp(-abs(left_eye[1] - right_eye[1]) / eye_dist),
        math.exp(-abs(left_mouth[1] - right_mouth[1]) / mouth_dist),
        math.exp(-abs(nose[0] - eye_center[0]) / eye_dist),
        math.exp(-abs(mouth_center[0] - nose[0]) / mouth_dist),
        float(vertical),
        math.exp(-eye_asym / eye_dist),
        math.exp(-mouth_asym / mouth_dist),
    )


def geometry_score(landmarks: ArrayLike) -> float:
    """Weighted geometry score; :data:`GEOMETRY_SENTINEL` for unscorable sets.

    Negative coordinates (an upstream clamping failure) and zero eye or mouth
    width are unscorable.
    """
    terms = geometry_terms(landmarks)
    if terms is None:
        return GEOMETRY_SENTINEL
    return float(sum(w * t for w, t in zip(GEOMETRY_WEIGHTS, terms, strict=True)))
