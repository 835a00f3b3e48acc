"""Tests for image decoding, letterboxing and tensor construction."""

from __future__ import annotations

import cv2
import numpy as np
import pytest

from facecapture.exceptions import InvalidImageError
from facecapture.ml.preprocessing import decode_image, encode_png, letterbox, to_detection_tensor


def _png_bytes(rgb: np.ndarray) -> bytes:
    ok, buf = cv2.imencode(".png", cv2.cvtColor(rgb, cv2.COLOR_RGB2BGR))
    assert ok
    return buf.tobytes()


class TestDecodeImage:
    def test_png_decodes_to_rgb(self) -> None:
        rgb = np.zeros((4, 6, 3), dtype=np.uint8)
        rgb[..., 0] = 200
        decoded = decode_image(_png_bytes(rgb))
        assert decoded.shape == (4, 6, 3)
        np.testing.assert_array_equal(decoded, rgb)

    def test_empty_bytes(self) -> None:
        with pytest.raises(InvalidImageError, match="Empty"):
            decode_image(b"")

    def test_garbage_bytes(self) -> None:
        with pytest.raises(InvalidImageError, match="decode"):
            decode_image(b"not an image at all")

    def test_pixel_limit(self) -> None:
        data = _png_bytes(np.zeros((10, 10, 3), dtype=np.uint8))
        with pytest.raises(InvalidImageError, match="too large"):
            decode_image(data, max_pixels=99)
        assert decode_image(data, max_pixels=100).shape == (10, 10, 3)

    def test_invalid_image_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            decode_image(b"")


class TestEncodePng:
    def test_encodes_decodable_png(self) -> None:
        rgb = np.random.default_rng(1).integers(0, 256, size=(8, 8, 3), dtype=np.uint8)
        data = encode_png(rgb)
        assert data.startswith(b"\x89PNG")
        np.testing.assert_array_equal(decode_image(data), rgb)


class TestLetterbox:
    def test_wide_frame_fills_width(self) -> None:
        canvas, det_scale = letterbox(np.full((240, 320, 3), 50, dtype=np.uint8))
        assert canvas.shape == (640, 640, 3)
        assert det_scale == pytest.approx(2.0)
        assert (canvas[:480] == 50).all()
        assert (canvas[480:] == 0).all()

    def test_tall_frame_fills_height(self) -> None:
        canvas, det_scale = letterbox(np.full((400, 200, 3), 50, dtype=np.uint8))
        assert det_scale == pytest.approx(1.6)
        assert (canvas[:, :320] == 50).all()
        assert (canvas[:, 320:] == 0).all()

    def test_custom_input_size(self) -> None:
        canvas, det_scale = letterbox(np.zeros((100, 100, 3), dtype=np.uint8), (320, 320))
        assert canvas.shape == (320, 320, 3)
        assert det_scale == pytest.approx(3.2)


class TestDetectionTensor:
    def test_layout_and_normalization(self) -> None:
        canvas = np.zeros((4, 4, 3), dtype=np.uint8)
        canvas[..., 0] = 255  # red
        tensor = to_detection_tensor(canvas)

        assert tensor.shape == (1, 3, 4, 4)
        assert tensor.dtype == np.float32
        assert tensor.flags["C_CONTIGUOUS"]
        # Blue first, red last.
        assert tensor[0, 0, 0, 0] == pytest.approx(-127.5 / 128)
        assert tensor[0, 2, 0, 0] == pytest.approx(127.5 / 128)
