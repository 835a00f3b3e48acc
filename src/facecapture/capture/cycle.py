"""Best-of-cycle face selection and the timed capture cycle.

A cycle waits, then detects for a fixed window while the tracker keeps the
best face seen, then hands that face off for sending before waiting again.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    import numpy as np
    from numpy.typing import NDArray

    from facecapture.ml.face_detector import Detection
    from facecapture.quality.analyzer import FaceAnalysis

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BestFaceRecord:
    """The winning face of a cycle: aligned crop plus how it scored."""

    crop: NDArray[np.uint8]
    analysis: FaceAnalysis
    detection: Detection


class BestFaceTracker:
    """Keeps the highest-scoring face that clears the blur floor."""

    def __init__(self, blur_threshold: float) -> None:
        self.blur_threshold = blur_threshold
        self.reset()

    def reset(self) -> None:
        self.best: BestFaceRecord | None = None
        self.best_score = 0.0
        self.faces_detected = 0
        self.faces_processed = 0

    def record_frame(self, num_faces: int) -> None:
        """Count a detection pass; only frames with faces are counted."""
        if num_faces > 0:
            self.faces_detected += 1

    def record_attempt(self) -> None:
        """Count a face that entered alignment, whether or not it scores."""
        self.faces_processed += 1

    def offer(self, crop: NDArray[np.uint8], analysis: FaceAnalysis, detection: Detection) -> bool:
        """Replace the current best if ``analysis`` is sharp enough and scores higher.

        Returns:
            True when the candidate became the new best.
        """
        if analysis.blur_score < self.blur_threshold:
            logger.debug("Face too blurry: %.1f < %.1f", analysis.blur_score, self.blur_threshold)
            return False
        if analysis.overall_score <= self.best_score:
            return False

        self.best = BestFaceRecord(crop=crop, analysis=analysis, detection=detection)
        self.best_score = analysis.overall_score
        logger.info("New best face, score %.3f (blur %.1f)", analysis.overall_score, analysis.blur_score)
        return True


class CycleState(StrEnum):
    WAITING = "waiting"
    DETECTING = "detecting"
    SENDING = "sending"


class CaptureCycle:
    """Timed waiting -> detecting -> sending state machine.

    Driven by :meth:`tick` from the frame loop; the clock is injectable so
    tests can step time explicitly.
    """

    def __init__(
        self,
        tracker: BestFaceTracker,
        wait_seconds: float = 2.0,
        detect_seconds: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.tracker = tracker
        self.wait_seconds = wait_seconds
        self.detect_seconds = detect_seconds
        self._clock = clock
        self.state = CycleState.WAITING
        self._phase_start = clock()

    @property
    def detection_enabled(self) -> bool:
        return self.state is CycleState.DETECTING

    def elapsed(self) -> float:
        return self._clock() - self._phase_start

    def tick(self) -> bool:
        """Advance on elapsed time.

        Returns:
            True exactly when a detection window has just closed and the
            tracker's best face should be sent.
        """
        if self.state is CycleState.WAITING and self.elapsed() >= self.wait_seconds:
            self.start_detecting()
        elif self.state is CycleState.DETECTING and self.elapsed() >= self.detect_seconds:
            return self.stop_detecting()
        return False

    def start_detecting(self) -> None:
        self.tracker.reset()
        self.state = CycleState.DETECTING
        self._phase_start = self._clock()
        logger.info("Detection cycle started")

    def stop_detecting(self) -> bool:
        """Close the detection window early (e.g. the frame source ended)."""
        if self.state is not CycleState.DETECTING:
            return False
        self.state = CycleState.SENDING
        logger.info("Detection cycle ended, processed %d faces", self.tracker.faces_processed)
        return True

    def finish_sending(self) -> None:
        self.state = CycleState.WAITING
        self._phase_start = self._clock()
        logger.debug("Waiting for next cycle")

    def progress(self) -> float:
        """Percent of the detection window elapsed, 100 while sending."""
        if self.state is CycleState.DETECTING:
            return min(100.0, self.elapsed() / self.detect_seconds * 100)
        if self.state is CycleState.SENDING:
            return 100.0
        return 0.0
