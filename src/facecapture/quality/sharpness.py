"""Focus measure: variance of the Laplacian over a face crop."""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114], dtype=np.float64)


def to_luma(image: NDArray[np.uint8]) -> NDArray[np.float64]:
    """Convert an RGB (or RGBA) image to float luma; 2-D input passes through."""
    if image.ndim == 2:
        return image.astype(np.float64)
    return image[..., :3].astype(np.float64) @ LUMA_WEIGHTS


def laplacian_variance(image: NDArray[np.uint8]) -> float:
    """Population variance of the 4-neighbour Laplacian over interior pixels.

    Higher values indicate a sharper image. Uniform or blurred regions
    respond weakly everywhere, so the variance collapses toward zero.
    The 1-pixel border is excluded; images under 3x3 score 0.
    """
    if image.ndim < 2 or image.shape[0] < 3 or image.shape[1] < 3:
        return 0.0

    gray = to_luma(image)
    center = gray[1:-1, 1:-1]
    lap = gray[:-2, 1:-1] + gray[2:, 1:-1] + gray[1:-1, :-2] + gray[1:-1, 2:] - 4 * center
    return float(lap.var())
