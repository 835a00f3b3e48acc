"""SCRFD face detection on top of an ONNX Runtime session.

The network itself is opaque: it maps a (1, 3, 640, 640) BGR tensor to one
score, one box-distance and (optionally) one landmark-distance tensor per
stride. This module turns those tensors into ranked detections in source-frame
pixel coordinates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

import numpy as np

from facecapture.exceptions import InferenceFailedError, UnsupportedModelError
from facecapture.ml.anchors import AnchorGrid
from facecapture.ml.decoding import decode_boxes, decode_landmarks
from facecapture.ml.nms import DEFAULT_IOU_THRESHOLD, suppress
from facecapture.ml.preprocessing import DETECTION_INPUT_SIZE, letterbox, to_detection_tensor

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

NUM_LANDMARKS = 5


@dataclass(frozen=True)
class RawDetection:
    """Raw face detection result before coordinate rescaling.

    Coordinates are in pixel space of the detector input tensor.
    """

    bbox: NDArray[np.float32]
    score: float
    landmarks: NDArray[np.float32]


@dataclass(frozen=True)
class Detection:
    """A kept face detection in source-frame pixel coordinates.

    ``bbox`` is ``[x, y, w, h]``. ``landmarks`` is either (5, 2), ordered
    left eye, right eye, nose, left mouth corner, right mouth corner, or
    empty with shape (0, 2).
    """

    bbox: NDArray[np.float32]
    score: float
    landmarks: NDArray[np.float32] = field(default_factory=lambda: np.empty((0, 2), dtype=np.float32))

    @property
    def has_landmarks(self) -> bool:
        return len(self.landmarks) == NUM_LANDMARKS

    @property
    def xyxy(self) -> tuple[float, float, float, float]:
        x, y, w, h = (float(v) for v in self.bbox)
        return x, y, x + w, y + h


@dataclass(frozen=True)
class DetectorVariant:
    """Output layout of an SCRFD model, resolved once from its output count."""

    strides: tuple[int, ...]
    anchors_per_cell: int
    use_landmarks: bool

    @property
    def num_scales(self) -> int:
        return len(self.strides)

    @classmethod
    def from_output_count(cls, count: int) -> DetectorVariant:
        """Resolve the variant from the number of session outputs.

        Raises:
            UnsupportedModelError: If the count matches no known layout.
        """
        if count in (6, 9):
            return cls(strides=(8, 16, 32), anchors_per_cell=2, use_landmarks=count == 9)
        if count in (10, 15):
            return cls(strides=(8, 16, 32, 64, 128), anchors_per_cell=1, use_landmarks=count == 15)
        raise UnsupportedModelError(f"Unsupported detector with {count} outputs (expected 6, 9, 10 or 15)")


class FaceDetector(Protocol):
    """Protocol for face detection models."""

    @property
    def model_name(self) -> str:
        """Return the model identifier string."""
        ...

    def detect(self, image: NDArray[np.uint8], threshold: float = 0.5) -> list[Detection]:
        """Detect faces in an image.

        Args:
            image: HxWx3 RGB uint8 array.
            threshold: Minimum detection confidence.

        Returns:
            Detections in source-frame pixels, highest score first.
        """
        ...


class ScrfdFaceDetector:
    """SCRFD detector driven by an ONNX Runtime inference session."""

    def __init__(
        self,
        session: Any,
        model_name: str = "scrfd",
        nms_threshold: float = DEFAULT_IOU_THRESHOLD,
        input_size: tuple[int, int] = DETECTION_INPUT_SIZE,
    ) -> None:
        self._session = session
        self._model_name = model_name
        self.nms_threshold = nms_threshold
        self.input_size = input_size

        self._input_name: str = session.get_inputs()[0].name
        self._output_names: list[str] = [output.name for output in session.get_outputs()]
        self.variant = DetectorVariant.from_output_count(len(self._output_names))
        self.anchor_grid = AnchorGrid()

        logger.info(
            "Detector %s ready (strides=%s, anchors_per_cell=%d, landmarks=%s)",
            model_name,
            self.variant.strides,
            self.variant.anchors_per_cell,
            self.variant.use_landmarks,
        )

    @property
    def model_name(self) -> str:
        return self._model_name

    def detect(self, image: NDArray[np.uint8], threshold: float = 0.5) -> list[Detection]:
        """Run one detection pass over an RGB frame.

        Raises:
            InferenceFailedError: If the inference session fails.
        """
        if image is None or image.size == 0 or image.shape[0] == 0 or image.shape[1] == 0:
            return []

        canvas, det_scale = letterbox(image, self.input_size)
        tensor = to_detection_tensor(canvas)
        outputs = self._run(tensor)
        return self.decode_outputs(outputs, det_scale, threshold)

    def detect_safe(self, image: NDArray[np.uint8], threshold: float = 0.5) -> list[Detection]:
        """Like :meth:`detect`, but an inference failure yields no detections."""
        try:
            return self.detect(image, threshold)
        except InferenceFailedError as exc:
            logger.warning("Detection pass failed, treating frame as empty: %s", exc)
            return []

    def decode_outputs(
        self,
        outputs: Sequence[NDArray[np.float32]],
        det_scale: float = 1.0,
        threshold: float = 0.5,
    ) -> list[Detection]:
        """Turn raw per-stride output tensors into rescaled, suppressed detections."""
        raw = self._collect_candidates(outputs, threshold)
        if not raw:
            return []

        boxes = np.stack([r.bbox for r in raw])
        scores = np.array([r.score for r in raw], dtype=np.float32)
        keep = suppress(boxes, scores, self.nms_threshold)
        logger.debug("Kept %d of %d candidates after NMS", len(keep), len(raw))
        return [_rescale(raw[i], det_scale) for i in keep]

    # -- Internal -----------------------------------------------------------

    def _run(self, tensor: NDArray[np.float32]) -> list[NDArray[np.float32]]:
        try:
            return list(self._session.run(self._output_names, {self._input_name: tensor}))
        except Exception as exc:
            raise InferenceFailedError(f"Inference failed: {exc}") from exc

    def _collect_candidates(
        self,
        outputs: Sequence[NDArray[np.float32]],
        threshold: float,
    ) -> list[RawDetection]:
        variant = self.variant
        fmc = variant.num_scales
        input_h, input_w = self.input_size
        candidates: list[RawDetection] = []

        for idx, stride in enumerate(variant.strides):
            scores = np.asarray(outputs[idx], dtype=np.float32).reshape(-1)
            pos = np.flatnonzero(scores >= threshold)
            if pos.size == 0:
                continue

            anchors = self.anchor_grid.get_anchors(stride, input_h, input_w, variant.anchors_per_cell)
            if anchors.shape[0] != scores.size:
                raise UnsupportedModelError(
                    f"Stride {stride}: {scores.size} scores for {anchors.shape[0]} anchors"
                )

            box_dist = np.asarray(outputs[idx + fmc], dtype=np.float32).reshape(-1, 4)[pos] * stride
            boxes = decode_boxes(anchors[pos], box_dist, (input_h, input_w))

            if variant.use_landmarks:
                kps_all = np.asarray(outputs[idx + 2 * fmc], dtype=np.float32).reshape(scores.size, -1)
                kps_dist = kps_all[pos] * stride
                landmarks = decode_landmarks(anchors[pos], kps_dist, (input_h, input_w))
            else:
                landmarks = np.empty((pos.size, 0, 2), dtype=np.float32)

            candidates.extend(
                RawDetection(bbox=boxes[k], score=float(scores[i]), landmarks=landmarks[k])
                for k, i in enumerate(pos)
            )

        return candidates


def _rescale(raw: RawDetection, det_scale: float) -> Detection:
    """Map a detection from letterboxed input space back to source pixels."""
    x1, y1, x2, y2 = (float(v) for v in raw.bbox)
    bbox = np.array(
        [x1 / det_scale, y1 / det_scale, (x2 - x1) / det_scale, (y2 - y1) / det_scale],
        dtype=np.float32,
    )
    if len(raw.landmarks):
        landmarks = (raw.landmarks / det_scale).astype(np.float32)
    else:
        landmarks = np.empty((0, 2), dtype=np.float32)
    return Detection(bbox=bbox, score=raw.score, landmarks=landmarks)
