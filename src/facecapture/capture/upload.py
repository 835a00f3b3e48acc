"""HTTP upload of the best face of a cycle."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import httpx

from facecapture.exceptions import InvalidImageError
from facecapture.ml.preprocessing import encode_png

if TYPE_CHECKING:
    from facecapture.capture.cycle import BestFaceRecord
    from facecapture.config import Settings

logger = logging.getLogger(__name__)

DEFAULT_MAX_BYTES = 10 * 1024 * 1024


@dataclass(frozen=True)
class UploadMetadata:
    """Scalar fields posted alongside the image."""

    score: float
    processed_count: int
    blur_score: float
    quality_score: float
    timestamp: str

    def form_fields(self) -> dict[str, str]:
        return {
            "score": str(self.score),
            "timestamp": self.timestamp,
            "processed_faces": str(self.processed_count),
            "blur_score": f"{self.blur_score:.1f}",
            "quality_score": f"{self.quality_score:.2f}",
        }


@dataclass(frozen=True)
class UploadResult:
    success: bool
    response: str | None = None
    error: str | None = None


def build_metadata(
    record: BestFaceRecord,
    processed_count: int,
    sent_at: datetime | None = None,
) -> UploadMetadata:
    """Collect the form fields for ``record``, stamped with the send time."""
    sent_at = sent_at or datetime.now(UTC)
    return UploadMetadata(
        score=record.analysis.overall_score,
        processed_count=processed_count,
        blur_score=record.analysis.blur_score,
        quality_score=record.analysis.quality_score,
        timestamp=sent_at.strftime("%Y-%m-%dT%H-%M-%S"),
    )


class UploadClient:
    """Posts a best-face crop as multipart form data.

    Failures are reported through :class:`UploadResult`, never raised, so a
    flaky server cannot stop the capture loop.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 30.0,
        max_bytes: int = DEFAULT_MAX_BYTES,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.timeout = timeout
        self.max_bytes = max_bytes
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: Settings) -> UploadClient | None:
        if not settings.upload_url:
            return None
        return cls(settings.upload_url, timeout=settings.upload_timeout, max_bytes=settings.max_upload_bytes)

    async def send_best_face(self, record: BestFaceRecord, processed_count: int) -> UploadResult:
        metadata = build_metadata(record, processed_count)
        try:
            image_bytes = encode_png(record.crop)
        except InvalidImageError as exc:
            return self._failed(str(exc))

        if not image_bytes:
            return self._failed("Empty image")
        if len(image_bytes) > self.max_bytes:
            return self._failed(f"Image too large (>{self.max_bytes // (1024 * 1024)}MB)")

        filename = f"best_face_{metadata.timestamp}.png"
        logger.info("Sending %s to %s", filename, self.url)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.url,
                    files={"image": (filename, image_bytes, "image/png")},
                    data=metadata.form_fields(),
                )
        except httpx.TimeoutException:
            return self._failed(f"Request timeout ({self.timeout:g}s)")
        except httpx.HTTPError as exc:
            return self._failed(str(exc) or exc.__class__.__name__)

        if response.is_success:
            logger.info("Server response received (%d)", response.status_code)
            return UploadResult(success=True, response=response.text)
        return self._failed(f"Server error {response.status_code}: {response.text}")

    @staticmethod
    def _failed(error: str) -> UploadResult:
        logger.warning("Upload failed: %s", error)
        return UploadResult(success=False, error=error)
