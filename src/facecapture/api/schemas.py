"""Pydantic request/response schemas for the FaceCapture API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class FaceQuality(BaseModel):
    """Quality analysis of one aligned face crop."""

    blur_score: float = Field(description="Laplacian variance of the aligned crop (higher is sharper)")
    quality_score: float = Field(description="Landmark-geometry score; -10 marks unscorable geometry")
    size_ratio: float = Field(description="Detection box area divided by aligned crop area")
    width: int
    height: int
    overall_score: float = Field(description="Ranking score (equals quality_score)")
    passes_blur_threshold: bool


class DetectedFace(BaseModel):
    """A single detected face with bounding box, score, landmarks and quality."""

    x: float = Field(description="Relative bounding box x position (0.0-1.0)")
    y: float = Field(description="Relative bounding box y position (0.0-1.0)")
    width: float = Field(description="Relative bounding box width (0.0-1.0)")
    height: float = Field(description="Relative bounding box height (0.0-1.0)")
    score: float = Field(description="Detection confidence (0.0-1.0)")
    landmarks: list[tuple[float, float]] = Field(
        description="Five (x, y) points in source pixels: eyes, nose, mouth corners; empty if unavailable",
    )
    quality: FaceQuality | None = Field(description="Null when alignment or scoring failed")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about an available detector."""

    name: str
    task: str = Field(description="Model task: 'face_detection'")
    status: str = Field(description="Model status: 'active', 'available', or 'requires_license'")
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
