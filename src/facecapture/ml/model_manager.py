"""Detector lifecycle: fetch SCRFD weights, build sessions, cache and evict them.

Weights come from the HuggingFace Hub unless already present under
``models_dir``. Each loaded model is wrapped in a :class:`ScrfdFaceDetector`
so its anchor cache lives exactly as long as its session.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import GraphOptimizationLevel, InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from facecapture.ml.face_detector import ScrfdFaceDetector

if TYPE_CHECKING:
    from facecapture.config import Settings

logger = logging.getLogger(__name__)


class ModelManager(Protocol):
    """Protocol for detector lifecycle management (kept for test mocking)."""

    def ensure_downloaded(self, model_name: str) -> Path: ...

    def get_detector(self, model_name: str) -> ScrfdFaceDetector: ...

    def get_loaded_models(self) -> list[str]: ...

    def unload_idle_models(self) -> None: ...

    def shutdown(self) -> None: ...


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


class ModelTask(StrEnum):
    FACE_DETECTION = "face_detection"


@dataclass(frozen=True)
class ModelSpec:
    """Where to fetch a detector and under which terms."""

    name: str
    repo_id: str
    filename: str
    subfolder: str | None
    task: ModelTask
    license: str
    insightface: bool

    @property
    def relative_path(self) -> Path:
        if self.subfolder:
            return Path(self.subfolder) / self.filename
        return Path(self.filename)


_INSIGHTFACE_LICENSE = "Non-commercial (InsightFace)"

MODEL_REGISTRY: dict[str, ModelSpec] = {
    spec.name: spec
    for spec in (
        ModelSpec(
            name="scrfd_10g_kps",
            repo_id="fal/AuraFace-v1",
            filename="scrfd_10g_bnkps.onnx",
            subfolder=None,
            task=ModelTask.FACE_DETECTION,
            license=_INSIGHTFACE_LICENSE,
            insightface=True,
        ),
        ModelSpec(
            name="buffalo_l_det_10g",
            repo_id="public-data/insightface",
            filename="det_10g.onnx",
            subfolder="models/buffalo_l",
            task=ModelTask.FACE_DETECTION,
            license=_INSIGHTFACE_LICENSE,
            insightface=True,
        ),
        ModelSpec(
            name="buffalo_s_det_500m",
            repo_id="public-data/insightface",
            filename="det_500m.onnx",
            subfolder="models/buffalo_s",
            task=ModelTask.FACE_DETECTION,
            license=_INSIGHTFACE_LICENSE,
            insightface=True,
        ),
    )
}


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


@dataclass
class _LoadedModel:
    detector: ScrfdFaceDetector
    last_used: float


class OnnxModelManager:
    """Loads SCRFD detectors on demand and drops them once idle past the TTL."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)
        self._models_dir.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._loaded: dict[str, _LoadedModel] = {}
        self._model_paths: dict[str, Path] = {}

        self._providers = _providers_for(settings)
        self._session_options = _session_options_for(settings)

    def ensure_downloaded(self, model_name: str) -> Path:
        """Return a local path to the model weights, downloading if needed."""
        spec = self._get_spec(model_name)
        self._check_license(spec)

        known = self._model_paths.get(model_name)
        if known is not None and known.exists():
            return known

        local = self._models_dir / spec.relative_path
        if local.exists():
            logger.debug("Using local weights for %s at %s", model_name, local)
            self._model_paths[model_name] = local
            return local

        downloaded = Path(
            hf_hub_download(
                repo_id=spec.repo_id,
                filename=spec.filename,
                subfolder=spec.subfolder,
                local_dir=str(self._models_dir),
            )
        )
        self._model_paths[model_name] = downloaded
        logger.info("Downloaded %s to %s", model_name, downloaded)
        return downloaded

    def get_detector(self, model_name: str) -> ScrfdFaceDetector:
        """Return the cached detector for ``model_name``, loading it if needed."""
        with self._lock:
            loaded = self._loaded.get(model_name)
            if loaded is not None:
                loaded.last_used = time.monotonic()
                return loaded.detector

        session = InferenceSession(
            str(self.ensure_downloaded(model_name)),
            sess_options=self._session_options,
            providers=self._providers,
        )
        detector = ScrfdFaceDetector(
            session,
            model_name=model_name,
            nms_threshold=self._settings.nms_threshold,
        )

        with self._lock:
            # Loading happens outside the lock; keep whichever detector won.
            loaded = self._loaded.setdefault(model_name, _LoadedModel(detector, time.monotonic()))
            loaded.last_used = time.monotonic()
            if loaded.detector is detector:
                logger.info("Loaded detector %s", model_name)
            return loaded.detector

    def get_loaded_models(self) -> list[str]:
        with self._lock:
            return list(self._loaded)

    def unload_idle_models(self) -> None:
        """Drop detectors unused for longer than ``model_ttl`` seconds (0 disables)."""
        ttl = self._settings.model_ttl
        if ttl == 0:
            return

        cutoff = time.monotonic() - ttl
        with self._lock:
            for name in [n for n, m in self._loaded.items() if m.last_used < cutoff]:
                del self._loaded[name]
                logger.info("Evicted idle detector %s", name)

    def shutdown(self) -> None:
        with self._lock:
            self._loaded.clear()
        logger.info("All detectors unloaded")

    @staticmethod
    def _get_spec(model_name: str) -> ModelSpec:
        try:
            return MODEL_REGISTRY[model_name]
        except KeyError:
            raise KeyError(f"Unknown model: {model_name}") from None

    def _check_license(self, spec: ModelSpec) -> None:
        if spec.insightface and not self._settings.accept_insightface_license:
            raise RuntimeError(f"Model '{spec.name}' requires FACECAPTURE_ACCEPT_INSIGHTFACE_LICENSE=true")


def _providers_for(settings: Settings) -> list[str | tuple[str, dict[str, object]]]:
    if settings.device == "cuda":
        cuda_options: dict[str, object] = {
            "device_id": 0,
            "gpu_mem_limit": settings.gpu_mem_limit,
            "arena_extend_strategy": "kSameAsRequested",
        }
        return [("CUDAExecutionProvider", cuda_options), "CPUExecutionProvider"]
    if settings.device == "openvino":
        return [("OpenVINOExecutionProvider", {"device_type": "CPU"}), "CPUExecutionProvider"]
    return ["CPUExecutionProvider"]


def _session_options_for(settings: Settings) -> SessionOptions:
    opts = SessionOptions()
    opts.intra_op_num_threads = settings.intra_op_threads
    opts.inter_op_num_threads = settings.inter_op_threads
    opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
    opts.enable_mem_pattern = True
    opts.enable_mem_reuse = True
    if settings.device == "openvino":
        # OpenVINO does its own graph optimization
        opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
    return opts
