"""API route definitions."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np
from fastapi import APIRouter, Depends, HTTPException, Request, UploadFile, status

from facecapture.api.middleware import verify_api_key
from facecapture.api.schemas import (
    DetectedFace,
    ErrorResponse,
    FaceQuality,
    HealthResponse,
    ModelInfo,
    ModelsResponse,
)
from facecapture.capture.pipeline import score_detection
from facecapture.exceptions import InferenceFailedError, InvalidImageError, UnsupportedModelError
from facecapture.ml.model_manager import MODEL_REGISTRY
from facecapture.ml.preprocessing import decode_image

if TYPE_CHECKING:
    from facecapture.config import Settings
    from facecapture.ml.face_detector import FaceDetector
    from facecapture.ml.inference import InferencePool
    from facecapture.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_model_manager(request: Request) -> ModelManager:
    manager: ModelManager = request.app.state.model_manager
    return manager


def _finite_points(points: np.ndarray) -> list[tuple[float, float]]:
    if not np.isfinite(points).all():
        return []
    return [(float(px), float(py)) for px, py in points]


def _detect_and_score(image_bytes: bytes, detector: FaceDetector, settings: Settings) -> list[DetectedFace]:
    image = decode_image(image_bytes, settings.max_image_pixels)
    img_h, img_w = image.shape[:2]

    faces: list[DetectedFace] = []
    for detection in detector.detect(image, settings.detection_threshold):
        quality: FaceQuality | None = None
        scored = score_detection(image, detection, settings.align_padding)
        if scored is not None:
            _, analysis = scored
            quality = FaceQuality(
                **analysis.to_dict(),
                passes_blur_threshold=analysis.blur_score >= settings.blur_threshold,
            )

        x, y, w, h = (float(v) for v in detection.bbox)
        faces.append(
            DetectedFace(
                x=x / img_w,
                y=y / img_h,
                width=w / img_w,
                height=h / img_h,
                score=detection.score,
                landmarks=_finite_points(detection.landmarks),
                quality=quality,
            )
        )
    return faces


@router.post(
    "/detect-faces",
    response_model=list[DetectedFace],
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Detect and score faces in an image",
)
async def detect_faces(request: Request, file: UploadFile) -> list[DetectedFace]:
    """Detect faces, align each one, and report its quality scores."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    manager = _get_model_manager(request)

    image_bytes = await file.read()
    if len(image_bytes) > settings.max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds {settings.max_file_size} bytes",
        )

    try:
        detector = await pool.run(manager.get_detector, settings.face_detection_model)
        return await pool.run(_detect_and_score, image_bytes, detector, settings)
    except InvalidImageError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except TimeoutError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Detection queue is full, retry later",
        ) from exc
    except (KeyError, RuntimeError, UnsupportedModelError, InferenceFailedError) as exc:
        logger.warning("Detection unavailable: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"Detector unavailable: {exc}",
        ) from exc


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        models_loaded=_get_model_manager(request).get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available detectors",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return available detectors and their status based on current configuration."""
    settings = _get_settings(request)

    models: list[ModelInfo] = []
    for spec in MODEL_REGISTRY.values():
        if spec.name == settings.face_detection_model:
            model_status = "active"
        elif spec.insightface and not settings.accept_insightface_license:
            model_status = "requires_license"
        else:
            model_status = "available"
        models.append(ModelInfo(name=spec.name, task=spec.task, status=model_status, license=spec.license))

    return ModelsResponse(models=models)
