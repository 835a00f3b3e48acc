"""Shared synthetic faces and frames."""

from __future__ import annotations

from types import SimpleNamespace
from typing import TYPE_CHECKING
from unittest.mock import MagicMock

import numpy as np
import pytest

from facecapture.ml.face_detector import Detection

if TYPE_CHECKING:
    from numpy.typing import NDArray

# Level eyes, centered nose, level mouth: every geometry term is exactly 1.
FRONTAL_LANDMARKS = np.array(
    [[75.0, 90.0], [125.0, 90.0], [100.0, 110.0], [80.0, 130.0], [120.0, 130.0]],
    dtype=np.float32,
)


def make_detection(
    bbox: tuple[float, float, float, float] = (50.0, 50.0, 100.0, 100.0),
    landmarks: NDArray[np.float32] | None = FRONTAL_LANDMARKS,
    score: float = 0.9,
) -> Detection:
    if landmarks is None:
        return Detection(bbox=np.array(bbox, dtype=np.float32), score=score)
    return Detection(bbox=np.array(bbox, dtype=np.float32), score=score, landmarks=np.asarray(landmarks))


def make_session(num_outputs: int, input_name: str = "input.1") -> MagicMock:
    """Stand-in for an onnxruntime InferenceSession."""
    session = MagicMock()
    session.get_inputs.return_value = [SimpleNamespace(name=input_name)]
    session.get_outputs.return_value = [SimpleNamespace(name=f"out{i}") for i in range(num_outputs)]
    return session


@pytest.fixture()
def sharp_frame() -> NDArray[np.uint8]:
    """200x200 RGB noise frame: far above any sensible blur floor."""
    rng = np.random.default_rng(7)
    return rng.integers(0, 256, size=(200, 200, 3), dtype=np.uint8)


@pytest.fixture()
def flat_frame() -> NDArray[np.uint8]:
    """200x200 uniform gray frame: zero sharpness."""
    return np.full((200, 200, 3), 128, dtype=np.uint8)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
