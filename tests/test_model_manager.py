"""Tests for the ONNX detector manager."""

from __future__ import annotations

import time
from typing import TYPE_CHECKING
from unittest.mock import MagicMock, patch

import pytest
from conftest import make_session

from facecapture.config import Settings
from facecapture.exceptions import UnsupportedModelError
from facecapture.ml.face_detector import ScrfdFaceDetector
from facecapture.ml.model_manager import MODEL_REGISTRY, ModelTask, OnnxModelManager

if TYPE_CHECKING:
    from pathlib import Path

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_settings(models_dir: Path, **overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "device": "cpu",
        "accept_insightface_license": True,
        "models_dir": str(models_dir),
        "model_ttl": 300,
        "intra_op_threads": 0,
        "inter_op_threads": 1,
        "gpu_mem_limit": 2_147_483_648,
        "nms_threshold": 0.4,
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


# ---------------------------------------------------------------------------
# Model registry tests
# ---------------------------------------------------------------------------


class TestModelRegistry:
    def test_default_detector_registered(self) -> None:
        spec = MODEL_REGISTRY["scrfd_10g_kps"]
        assert spec.task == ModelTask.FACE_DETECTION
        assert spec.filename == "scrfd_10g_bnkps.onnx"
        assert spec.insightface is True

    def test_relative_path_includes_subfolder(self) -> None:
        assert str(MODEL_REGISTRY["buffalo_s_det_500m"].relative_path) == "models/buffalo_s/det_500m.onnx"
        assert str(MODEL_REGISTRY["scrfd_10g_kps"].relative_path) == "scrfd_10g_bnkps.onnx"

    def test_all_detectors(self) -> None:
        assert all(spec.task == "face_detection" for spec in MODEL_REGISTRY.values())


# ---------------------------------------------------------------------------
# OnnxModelManager tests
# ---------------------------------------------------------------------------


class TestEnsureDownloaded:
    @patch("facecapture.ml.model_manager.hf_hub_download")
    def test_downloads_from_hub(self, mock_download: MagicMock, tmp_path: Path) -> None:
        mock_download.return_value = str(tmp_path / "scrfd_10g_bnkps.onnx")
        mgr = OnnxModelManager(_make_settings(tmp_path))

        path = mgr.ensure_downloaded("scrfd_10g_kps")

        mock_download.assert_called_once_with(
            repo_id="fal/AuraFace-v1",
            filename="scrfd_10g_bnkps.onnx",
            subfolder=None,
            local_dir=str(tmp_path),
        )
        assert path == tmp_path / "scrfd_10g_bnkps.onnx"

    @patch("facecapture.ml.model_manager.hf_hub_download")
    def test_uses_local_weights(self, mock_download: MagicMock, tmp_path: Path) -> None:
        local = tmp_path / "models" / "buffalo_l" / "det_10g.onnx"
        local.parent.mkdir(parents=True)
        local.touch()
        mgr = OnnxModelManager(_make_settings(tmp_path))

        assert mgr.ensure_downloaded("buffalo_l_det_10g") == local
        mock_download.assert_not_called()

    @patch("facecapture.ml.model_manager.hf_hub_download")
    def test_download_happens_once(self, mock_download: MagicMock, tmp_path: Path) -> None:
        weights = tmp_path / "scrfd_10g_bnkps.onnx"
        weights.touch()
        mock_download.return_value = str(weights)
        mgr = OnnxModelManager(_make_settings(tmp_path / "store"))

        mgr.ensure_downloaded("scrfd_10g_kps")
        mgr.ensure_downloaded("scrfd_10g_kps")
        mock_download.assert_called_once()

    def test_blocked_without_license(self, tmp_path: Path) -> None:
        mgr = OnnxModelManager(_make_settings(tmp_path, accept_insightface_license=False))
        with pytest.raises(RuntimeError, match="FACECAPTURE_ACCEPT_INSIGHTFACE_LICENSE"):
            mgr.ensure_downloaded("scrfd_10g_kps")

    def test_unknown_model_raises_keyerror(self, tmp_path: Path) -> None:
        mgr = OnnxModelManager(_make_settings(tmp_path))
        with pytest.raises(KeyError, match="Unknown model"):
            mgr.ensure_downloaded("totally_fake_model")

    def test_creates_models_dir(self, tmp_path: Path) -> None:
        OnnxModelManager(_make_settings(tmp_path / "nested" / "models"))
        assert (tmp_path / "nested" / "models").is_dir()


@patch("facecapture.ml.model_manager.InferenceSession")
@patch("facecapture.ml.model_manager.hf_hub_download")
class TestGetDetector:
    def test_creates_and_caches(self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path) -> None:
        mock_download.return_value = str(tmp_path / "scrfd_10g_bnkps.onnx")
        mock_session_cls.return_value = make_session(9)
        mgr = OnnxModelManager(_make_settings(tmp_path, nms_threshold=0.3))

        first = mgr.get_detector("scrfd_10g_kps")
        second = mgr.get_detector("scrfd_10g_kps")

        assert first is second
        assert isinstance(first, ScrfdFaceDetector)
        assert first.model_name == "scrfd_10g_kps"
        assert first.nms_threshold == 0.3
        assert first.variant.use_landmarks
        mock_session_cls.assert_called_once()
        assert mock_session_cls.call_args.kwargs["providers"] == ["CPUExecutionProvider"]

    def test_unsupported_layout_not_cached(
        self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path
    ) -> None:
        mock_download.return_value = str(tmp_path / "odd.onnx")
        mock_session_cls.return_value = make_session(4)
        mgr = OnnxModelManager(_make_settings(tmp_path))

        with pytest.raises(UnsupportedModelError):
            mgr.get_detector("scrfd_10g_kps")
        assert mgr.get_loaded_models() == []

    def test_get_loaded_models(self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path) -> None:
        mock_download.return_value = str(tmp_path / "scrfd_10g_bnkps.onnx")
        mock_session_cls.return_value = make_session(9)
        mgr = OnnxModelManager(_make_settings(tmp_path))

        assert mgr.get_loaded_models() == []
        mgr.get_detector("scrfd_10g_kps")
        assert mgr.get_loaded_models() == ["scrfd_10g_kps"]

    def test_unload_idle_models_removes_expired(
        self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path
    ) -> None:
        mock_download.return_value = str(tmp_path / "scrfd_10g_bnkps.onnx")
        mock_session_cls.return_value = make_session(9)
        mgr = OnnxModelManager(_make_settings(tmp_path, model_ttl=1))
        mgr.get_detector("scrfd_10g_kps")

        # Fake the last_used time to be in the past.
        mgr._loaded["scrfd_10g_kps"].last_used = time.monotonic() - 10

        mgr.unload_idle_models()
        assert mgr.get_loaded_models() == []

    def test_unload_keeps_recent(self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path) -> None:
        mock_download.return_value = str(tmp_path / "scrfd_10g_bnkps.onnx")
        mock_session_cls.return_value = make_session(9)
        mgr = OnnxModelManager(_make_settings(tmp_path, model_ttl=60))
        mgr.get_detector("scrfd_10g_kps")

        mgr.unload_idle_models()
        assert mgr.get_loaded_models() == ["scrfd_10g_kps"]

    def test_shutdown_clears_detectors(
        self, mock_download: MagicMock, mock_session_cls: MagicMock, tmp_path: Path
    ) -> None:
        mock_download.return_value = str(tmp_path / "scrfd_10g_bnkps.onnx")
        mock_session_cls.return_value = make_session(9)
        mgr = OnnxModelManager(_make_settings(tmp_path))
        mgr.get_detector("scrfd_10g_kps")

        mgr.shutdown()
        assert mgr.get_loaded_models() == []


class TestManagerConfiguration:
    def test_unload_idle_skipped_when_ttl_zero(self, tmp_path: Path) -> None:
        mgr = OnnxModelManager(_make_settings(tmp_path, model_ttl=0))
        mgr.unload_idle_models()
        assert mgr.get_loaded_models() == []

    def test_provider_building_cpu(self, tmp_path: Path) -> None:
        mgr = OnnxModelManager(_make_settings(tmp_path, device="cpu"))
        assert mgr._providers == ["CPUExecutionProvider"]

    def test_provider_building_cuda(self, tmp_path: Path) -> None:
        mgr = OnnxModelManager(_make_settings(tmp_path, device="cuda", gpu_mem_limit=1024))
        assert len(mgr._providers) == 2
        provider_name, provider_opts = mgr._providers[0]  # type: ignore[misc]
        assert provider_name == "CUDAExecutionProvider"
        assert provider_opts["device_id"] == 0
        assert provider_opts["gpu_mem_limit"] == 1024
        assert mgr._providers[1] == "CPUExecutionProvider"

    def test_provider_building_openvino(self, tmp_path: Path) -> None:
        mgr = OnnxModelManager(_make_settings(tmp_path, device="openvino"))
        provider_name, _provider_opts = mgr._providers[0]  # type: ignore[misc]
        assert provider_name == "OpenVINOExecutionProvider"
        assert mgr._providers[1] == "CPUExecutionProvider"

    def test_session_thread_options(self, tmp_path: Path) -> None:
        mgr = OnnxModelManager(_make_settings(tmp_path, intra_op_threads=3, inter_op_threads=2))
        assert mgr._session_options.intra_op_num_threads == 3
        assert mgr._session_options.inter_op_num_threads == 2
