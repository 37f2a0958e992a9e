"""Model manager: download, load, cache, and evict ONNX image encoders.

Handles downloading encoder models from HuggingFace (or picking up a local
file from the models directory), creating and caching ONNX InferenceSessions,
and explicit eviction so the encoder can be released between uses.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

from arvocab.errors import ModelUnavailable

if TYPE_CHECKING:
    from arvocab.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class ModelManager(Protocol):
    """Protocol for model lifecycle management."""

    def ensure_downloaded(self, model_name: str) -> Path:
        """Ensure a model is available locally and return its file path."""
        ...

    def get_session(self, model_name: str) -> InferenceSession:
        """Return a cached or newly created InferenceSession."""
        ...

    def unload(self, model_name: str) -> bool:
        """Drop the cached session for one model."""
        ...

    def get_loaded_models(self) -> list[str]:
        """Return names of currently loaded models."""
        ...

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        ...


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


class TensorLayout(StrEnum):
    NHWC = "nhwc"
    NCHW = "nchw"


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for a single ONNX image encoder."""

    name: str
    repo_id: str | None
    filename: str
    subfolder: str | None
    layout: TensorLayout
    output_name: str | None
    license: str


MODEL_REGISTRY: dict[str, ModelSpec] = {
    "clip_vit_b32": ModelSpec(
        name="clip_vit_b32",
        repo_id="Xenova/clip-vit-base-patch32",
        filename="vision_model.onnx",
        subfolder="onnx",
        layout=TensorLayout.NCHW,
        output_name="image_embeds",
        license="MIT",
    ),
    "clip_vit_b16": ModelSpec(
        name="clip_vit_b16",
        repo_id="Xenova/clip-vit-base-patch16",
        filename="vision_model.onnx",
        subfolder="onnx",
        layout=TensorLayout.NCHW,
        output_name="image_embeds",
        license="MIT",
    ),
    "local_encoder": ModelSpec(
        name="local_encoder",
        repo_id=None,
        filename="image_encoder.onnx",
        subfolder=None,
        layout=TensorLayout.NHWC,
        output_name=None,
        license="User-supplied",
    ),
}


def get_model_spec(model_name: str) -> ModelSpec:
    """Look up a registry entry.

    Raises:
        KeyError: If the model is not registered.
    """
    try:
        return MODEL_REGISTRY[model_name]
    except KeyError:
        raise KeyError(f"Unknown model: {model_name}") from None


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class OnnxModelManager:
    """Downloads, loads, caches, and evicts ONNX inference sessions."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)
        self._models_dir.mkdir(parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._sessions: dict[str, InferenceSession] = {}
        self._model_paths: dict[str, Path] = {}

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    def ensure_downloaded(self, model_name: str) -> Path:
        """Download a model from HuggingFace if not already present locally.

        Raises:
            KeyError: If the model is not registered.
            ModelUnavailable: If a local-only model file is missing.
        """
        spec = get_model_spec(model_name)

        if model_name in self._model_paths:
            path = self._model_paths[model_name]
            if path.exists():
                return path

        if spec.repo_id is None:
            local = self._models_dir / spec.filename
            if not local.exists():
                raise ModelUnavailable(f"Model file not found: {local}")
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

    def get_session(self, model_name: str) -> InferenceSession:
        """Return a cached InferenceSession, creating one if needed."""
        with self._lock:
            cached = self._sessions.get(model_name)
            if cached is not None:
                return cached

        model_path = self.ensure_downloaded(model_name)
        session = InferenceSession(
            str(model_path),
            sess_options=self._session_options,
            providers=self._providers,
        )

        with self._lock:
            # Double-check: another thread may have created it while we loaded.
            existing = self._sessions.get(model_name)
            if existing is not None:
                return existing
            self._sessions[model_name] = session
            logger.info("Loaded session for %s", model_name)
            return session

    def unload(self, model_name: str) -> bool:
        """Drop the session for ``model_name``. Returns whether one was cached."""
        with self._lock:
            removed = self._sessions.pop(model_name, None)
        if removed is not None:
            logger.info("Unloaded session for %s", model_name)
        return removed is not None

    def get_loaded_models(self) -> list[str]:
        """Return names of models with active sessions."""
        with self._lock:
            return list(self._sessions.keys())

    def shutdown(self) -> None:
        """Clear all cached sessions."""
        with self._lock:
            self._sessions.clear()
            logger.info("All model sessions cleared")

    # -- Internal -----------------------------------------------------------

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        opts.enable_mem_pattern = True
        opts.enable_mem_reuse = True

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
