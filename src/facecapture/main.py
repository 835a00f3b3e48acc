"""FastAPI application entry point."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from facecapture.ml.model_manager import ModelManager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from facecapture.api.routes import router
from facecapture.config import get_settings
from facecapture.ml.inference import InferencePool
from facecapture.ml.model_manager import OnnxModelManager

logger = logging.getLogger(__name__)

EVICTION_INTERVAL_SECONDS: float = 60.0


async def _evict_idle_models(manager: ModelManager, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        manager.unload_idle_models()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Wire settings, the inference pool and the detector cache for the app's lifetime."""
    settings = get_settings()
    app.state.settings = settings

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting FaceCapture (device=%s, max_concurrent=%s, detection=%s, blur_threshold=%.1f)",
        settings.device,
        settings.max_concurrent,
        settings.face_detection_model,
        settings.blur_threshold,
    )

    inference_pool = InferencePool(settings)
    model_manager = OnnxModelManager(settings)
    app.state.inference_pool = inference_pool
    app.state.model_manager = model_manager

    eviction: asyncio.Task[None] | None = None
    if settings.model_ttl > 0:
        eviction = asyncio.create_task(_evict_idle_models(model_manager, EVICTION_INTERVAL_SECONDS))

    logger.info("FaceCapture ready")
    yield

    logger.info("Shutting down FaceCapture")
    if eviction is not None:
        eviction.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await eviction
    inference_pool.shutdown()
    model_manager.shutdown()
    logger.info("FaceCapture shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="FaceCapture",
        description="Face detection, alignment and capture-quality scoring",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()
