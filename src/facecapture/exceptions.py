"""Exception hierarchy for FaceCapture."""

from __future__ import annotations


class FaceCaptureError(Exception):
    """Base exception for the face capture pipeline."""


class InvalidImageError(FaceCaptureError, ValueError):
    """Raised when input image bytes cannot be decoded or exceed size limits."""


class UnsupportedModelError(FaceCaptureError):
    """Raised when a detection model exposes an output layout we cannot decode."""


class InferenceFailedError(FaceCaptureError):
    """Raised when the inference session fails to run on a frame."""
