"""Image preprocessing for the face detector.

Handles decoding uploaded bytes into RGB arrays, aspect-preserving letterbox
resize into the fixed detector input, and construction of the detector input
tensor.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import cv2
import numpy as np

from facecapture.exceptions import InvalidImageError

if TYPE_CHECKING:
    from numpy.typing import NDArray

DETECTION_INPUT_SIZE: tuple[int, int] = (640, 640)
"""Detector input as (height, width)."""

INPUT_MEAN: float = 127.5
INPUT_STD: float = 128.0


def decode_image(image_bytes: bytes, max_pixels: int | None = None) -> NDArray[np.uint8]:
    """Decode raw image bytes into an RGB uint8 numpy array.

    Args:
        image_bytes: Raw file bytes (any format OpenCV can read).
        max_pixels: Optional upper bound on width * height.

    Returns:
        HxWx3 RGB uint8 numpy array.

    Raises:
        InvalidImageError: If the image cannot be decoded or exceeds size limits.
    """
    if not image_bytes:
        raise InvalidImageError("Empty image data")

    buffer = np.frombuffer(image_bytes, dtype=np.uint8)
    decoded = cv2.imdecode(buffer, cv2.IMREAD_COLOR)
    if decoded is None:
        raise InvalidImageError("Unable to decode image data")

    height, width = decoded.shape[:2]
    if max_pixels is not None and height * width > max_pixels:
        raise InvalidImageError(f"Image too large: {width}x{height} exceeds {max_pixels} pixels")

    return cv2.cvtColor(decoded, cv2.COLOR_BGR2RGB)


def encode_png(image: NDArray[np.uint8]) -> bytes:
    """Encode an RGB uint8 array as PNG bytes."""
    ok, encoded = cv2.imencode(".png", cv2.cvtColor(image, cv2.COLOR_RGB2BGR))
    if not ok:
        raise InvalidImageError("Unable to encode image as PNG")
    return encoded.tobytes()


def letterbox(
    image: NDArray[np.uint8],
    input_size: tuple[int, int] = DETECTION_INPUT_SIZE,
) -> tuple[NDArray[np.uint8], float]:
    """Resize an image into the detector input, preserving aspect ratio.

    The resized image is placed at the top-left of a black canvas, so mapping
    detector coordinates back to the source only needs a division by the
    returned scale.

    Returns:
        Tuple of (canvas of shape ``input_size + (3,)``, det_scale).
    """
    input_h, input_w = input_size
    orig_h, orig_w = image.shape[:2]

    im_ratio = orig_h / orig_w
    model_ratio = input_h / input_w
    if im_ratio > model_ratio:
        new_h = input_h
        new_w = max(1, round(new_h / im_ratio))
    else:
        new_w = input_w
        new_h = max(1, round(new_w * im_ratio))
    det_scale = new_h / orig_h

    resized = cv2.resize(image, (new_w, new_h))
    canvas = np.zeros((input_h, input_w, 3), dtype=np.uint8)
    canvas[:new_h, :new_w, :] = resized
    return canvas, det_scale


def to_detection_tensor(canvas: NDArray[np.uint8]) -> NDArray[np.float32]:
    """Build the (1, 3, H, W) detector input from an RGB canvas.

    Channels are reordered to blue-green-red to match the detector's training
    convention and normalized as ``(pixel - 127.5) / 128``.
    """
    bgr = canvas[:, :, ::-1].astype(np.float32)
    normalized = (bgr - INPUT_MEAN) / INPUT_STD
    return np.ascontiguousarray(np.transpose(normalized, (2, 0, 1))[np.newaxis, ...])
