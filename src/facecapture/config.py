"""Environment-based configuration for FaceCapture."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from FACECAPTURE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FACECAPTURE_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8082

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model selection
    face_detection_model: str = "scrfd_10g_kps"
    accept_insightface_license: bool = False
    models_dir: str = "models"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency (one detection pass in flight by default)
    max_concurrent: int = Field(default=1, ge=1)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=209_715_200, ge=1)

    # Model management
    model_ttl: int = Field(default=300, ge=0)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Detection
    detection_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    nms_threshold: float = Field(default=0.4, ge=0.0, le=1.0)

    # Quality gating and alignment
    blur_threshold: float = Field(default=50.0, ge=0.0)
    align_padding: int = Field(default=2, ge=0)

    # Capture cycle timing (seconds)
    detection_interval: float = Field(default=0.1, ge=0.0)
    cycle_wait_seconds: float = Field(default=2.0, ge=0.0)
    cycle_detect_seconds: float = Field(default=5.0, gt=0.0)

    # Best-face upload (None = disabled)
    upload_url: str | None = None
    upload_timeout: float = Field(default=30.0, gt=0.0)
    max_upload_bytes: int = Field(default=10 * 1024 * 1024, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
