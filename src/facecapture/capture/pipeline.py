"""Per-frame face capture: detect, align, score, keep the best.

One pass runs at a time. Frames offered while a pass is in flight, or sooner
than ``detection_interval`` after the previous pass, are skipped.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import TYPE_CHECKING

import cv2

from facecapture.capture.cycle import BestFaceTracker, CaptureCycle
from facecapture.exceptions import InferenceFailedError
from facecapture.quality.alignment import DEFAULT_PADDING, align_face
from facecapture.quality.analyzer import analyze_face

if TYPE_CHECKING:
    from collections.abc import AsyncIterable, Callable

    import numpy as np
    from numpy.typing import NDArray

    from facecapture.capture.upload import UploadClient, UploadResult
    from facecapture.config import Settings
    from facecapture.ml.face_detector import Detection, FaceDetector
    from facecapture.quality.analyzer import FaceAnalysis

logger = logging.getLogger(__name__)


def score_detection(
    frame: NDArray[np.uint8],
    detection: Detection,
    padding: int = DEFAULT_PADDING,
) -> tuple[NDArray[np.uint8], FaceAnalysis] | None:
    """Align and score one detection; ``None`` if the face must be skipped.

    A failure while aligning or scoring skips this face only, so callers can
    keep going with the remaining detections of the frame.
    """
    if not detection.has_landmarks:
        return None

    try:
        crop = align_face(frame, detection.landmarks, detection.xyxy, padding)
        if crop is None:
            logger.debug("Face alignment failed")
            return None
        analysis = analyze_face(crop, detection.landmarks, detection.bbox)
    except (ValueError, cv2.error) as exc:
        logger.debug("Error processing face: %s", exc)
        return None

    if analysis is None:
        logger.debug("Face quality analysis failed")
        return None
    return crop, analysis


class FacePipeline:
    """Runs detection passes over frames and feeds the best-face tracker."""

    def __init__(
        self,
        detector: FaceDetector,
        settings: Settings,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.detector = detector
        self.settings = settings
        self.tracker = BestFaceTracker(settings.blur_threshold)
        self.cycle = CaptureCycle(
            self.tracker,
            wait_seconds=settings.cycle_wait_seconds,
            detect_seconds=settings.cycle_detect_seconds,
            clock=clock,
        )
        self._clock = clock
        self._in_flight = False
        self._last_pass = -math.inf

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def analyze_detection(
        self,
        frame: NDArray[np.uint8],
        detection: Detection,
    ) -> tuple[NDArray[np.uint8], FaceAnalysis] | None:
        return score_detection(frame, detection, self.settings.align_padding)

    def process_frame(self, frame: NDArray[np.uint8]) -> list[Detection]:
        """Run one detect-and-score pass unless one is already running or due later.

        Returns:
            The detections of this pass; empty when the frame was skipped or
            inference failed.
        """
        now = self._clock()
        if self._in_flight or now - self._last_pass < self.settings.detection_interval:
            return []

        self._in_flight = True
        self._last_pass = now
        try:
            return self._detect_and_score(frame)
        finally:
            self._in_flight = False

    async def submit(self, frame: NDArray[np.uint8]) -> list[Detection]:
        """Async variant of :meth:`process_frame` that runs the pass in a worker thread."""
        if self._in_flight:
            return []
        return await asyncio.to_thread(self.process_frame, frame)

    async def run(
        self,
        frames: AsyncIterable[NDArray[np.uint8]],
        uploader: UploadClient | None = None,
    ) -> list[UploadResult]:
        """Drive capture cycles over a frame source until it is exhausted.

        When the source ends mid-window, the window is closed and its best
        face is sent.
        """
        results: list[UploadResult] = []
        async for frame in frames:
            if self.cycle.tick():
                await self._finish_cycle(uploader, results)
            if self.cycle.detection_enabled:
                await self.submit(frame)

        if self.cycle.stop_detecting():
            await self._finish_cycle(uploader, results)
        return results

    # -- Internal -----------------------------------------------------------

    def _detect_and_score(self, frame: NDArray[np.uint8]) -> list[Detection]:
        try:
            detections = self.detector.detect(frame, self.settings.detection_threshold)
        except InferenceFailedError as exc:
            logger.warning("Detection error: %s", exc)
            return []

        self.tracker.record_frame(len(detections))
        if not self.cycle.detection_enabled:
            return detections

        for detection in detections:
            if not detection.has_landmarks:
                continue
            self.tracker.record_attempt()
            scored = self.analyze_detection(frame, detection)
            if scored is not None:
                crop, analysis = scored
                self.tracker.offer(crop, analysis, detection)
        return detections

    async def _finish_cycle(self, uploader: UploadClient | None, results: list[UploadResult]) -> None:
        best = self.tracker.best
        try:
            if best is None:
                logger.info("No best face found in this cycle")
            elif uploader is None:
                logger.info("Best face ready (score %.3f), upload disabled", best.analysis.overall_score)
            else:
                results.append(await uploader.send_best_face(best, self.tracker.faces_processed))
        finally:
            self.cycle.finish_sending()
