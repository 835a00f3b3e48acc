"""Anchor center generation for distance-encoded detection heads.

Each detector owns one :class:`AnchorGrid`. Anchor layouts depend only on the
stride and the feature-map size, and the detector input size never changes at
runtime, so the cache holds one entry per stride and is never invalidated.
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, NamedTuple

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray


class AnchorKey(NamedTuple):
    """Cache key identifying one anchor layout."""

    stride: int
    grid_height: int
    grid_width: int


class AnchorGrid:
    """Per-detector cache of anchor centers in input-tensor pixel coordinates."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cache: dict[AnchorKey, NDArray[np.float32]] = {}

    def get_anchors(
        self,
        stride: int,
        input_height: int,
        input_width: int,
        anchors_per_cell: int = 1,
    ) -> NDArray[np.float32]:
        """Return the (N, 2) array of anchor centers for a feature map.

        Centers are enumerated row-major as ``(x * stride, y * stride)``. With
        ``anchors_per_cell > 1`` each center is repeated consecutively, so
        prediction ``i`` belongs to center ``i // anchors_per_cell``.

        The cache key does not include ``anchors_per_cell``: a detector uses a
        single anchor count for all of its strides.

        Raises:
            ValueError: If the stride or anchor count is invalid, or the layout
                is already cached with a different ``anchors_per_cell``.
        """
        if stride <= 0:
            raise ValueError(f"stride must be positive, got {stride}")
        if anchors_per_cell < 1:
            raise ValueError(f"anchors_per_cell must be >= 1, got {anchors_per_cell}")

        key = AnchorKey(stride, input_height // stride, input_width // stride)
        cached = self._cache.get(key)
        if cached is None:
            centers = _build_centers(key, anchors_per_cell)
            with self._lock:
                # Another thread may have inserted the same layout meanwhile.
                cached = self._cache.setdefault(key, centers)

        cells = key.grid_height * key.grid_width
        if len(cached) != cells * anchors_per_cell:
            raise ValueError(
                f"Anchors for {key} are cached with {len(cached) // cells} per cell, "
                f"requested {anchors_per_cell}"
            )
        return cached

    def __len__(self) -> int:
        return len(self._cache)

    def keys(self) -> list[AnchorKey]:
        """Return the cached layout keys."""
        with self._lock:
            return list(self._cache.keys())


def _build_centers(key: AnchorKey, anchors_per_cell: int) -> NDArray[np.float32]:
    grid_y, grid_x = np.mgrid[: key.grid_height, : key.grid_width]
    centers = np.stack((grid_x, grid_y), axis=-1).reshape(-1, 2).astype(np.float32)
    centers *= float(key.stride)
    if anchors_per_cell > 1:
        centers = np.repeat(centers, anchors_per_cell, axis=0)
    centers.setflags(write=False)
    return centers
