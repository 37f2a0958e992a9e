"""Image encoder engine: maps a preprocessed image tensor to an embedding.

The ONNX session is shared native state and is not safe to run from several
threads at once, so every call is serialized through one lock spanning the
input layout conversion, the session run, and the output copy.
"""

from __future__ import annotations

import logging
import threading
from enum import StrEnum
from typing import TYPE_CHECKING

import numpy as np

from arvocab.errors import InferenceError, ModelUnavailable
from arvocab.ml.model_manager import TensorLayout, get_model_spec

if TYPE_CHECKING:
    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from arvocab.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)


class EncoderState(StrEnum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class ImageEncoder:
    """Thread-safe wrapper around an ONNX image encoder session."""

    def __init__(self, model_manager: ModelManager, model_name: str) -> None:
        self._manager = model_manager
        self._model_name = model_name
        self._spec = get_model_spec(model_name)

        self._state_lock = threading.Lock()
        self._run_lock = threading.Lock()
        self._state = EncoderState.UNLOADED
        self._session: InferenceSession | None = None
        self._input_name = ""
        self._output_name = ""
        self._embedding_dim: int | None = None

    @property
    def model_name(self) -> str:
        return self._model_name

    @property
    def state(self) -> EncoderState:
        with self._state_lock:
            return self._state

    @property
    def embedding_dim(self) -> int | None:
        """Output embedding size, known once the session is loaded."""
        return self._embedding_dim

    def load(self) -> None:
        """Create the inference session if it is not loaded yet.

        Raises:
            ModelUnavailable: If the model cannot be downloaded or parsed.
        """
        with self._state_lock:
            if self._state is EncoderState.READY:
                return
            self._state = EncoderState.LOADING
            try:
                session = self._manager.get_session(self._model_name)
                self._bind(session)
            except Exception as exc:
                self._state = EncoderState.FAILED
                self._session = None
                logger.exception("Failed to load image encoder %s", self._model_name)
                raise ModelUnavailable(f"Cannot load image encoder '{self._model_name}': {exc}") from exc
            self._state = EncoderState.READY
            logger.info(
                "Image encoder %s ready (input=%s, output=%s, dim=%s)",
                self._model_name,
                self._input_name,
                self._output_name,
                self._embedding_dim,
            )

    def encode(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        """Run the encoder on a ``(1, size, size, 3)`` tensor.

        Returns:
            A copy of the first output row, shape ``(D,)``, not normalized.

        Raises:
            ModelUnavailable: If the session cannot be loaded.
            InferenceError: If the session run fails or returns nothing.
        """
        self.load()

        with self._run_lock:
            session = self._session
            if session is None:
                raise InferenceError(f"Image encoder '{self._model_name}' was released")
            try:
                feed = self._to_model_layout(tensor)
                outputs = session.run([self._output_name], {self._input_name: feed})
                result = np.array(outputs[0], dtype=np.float32).reshape(-1)
            except Exception as exc:
                raise InferenceError(f"Image encoder run failed: {exc}") from exc

        if result.size == 0:
            raise InferenceError("Image encoder returned an empty embedding")
        return result

    def release(self) -> None:
        """Drop the session so its native memory can be reclaimed."""
        with self._state_lock, self._run_lock:
            self._session = None
            self._state = EncoderState.UNLOADED
        self._manager.unload(self._model_name)
        logger.info("Image encoder %s released", self._model_name)

    # -- Internal -----------------------------------------------------------

    def _bind(self, session: InferenceSession) -> None:
        inputs = session.get_inputs()
        outputs = session.get_outputs()
        if not inputs or not outputs:
            raise ValueError("Model has no inputs or outputs")

        self._input_name = inputs[0].name
        output = outputs[0]
        if self._spec.output_name is not None:
            output = next((o for o in outputs if o.name == self._spec.output_name), output)
        self._output_name = output.name

        shape = list(output.shape)
        last = shape[-1] if shape else None
        self._embedding_dim = last if isinstance(last, int) and last > 0 else None
        self._session = session

    def _to_model_layout(self, tensor: NDArray[np.float32]) -> NDArray[np.float32]:
        if tensor.ndim != 4 or tensor.shape[-1] != 3:
            raise ValueError(f"Expected a (1, H, W, 3) tensor, got shape {tensor.shape}")
        if self._spec.layout is TensorLayout.NCHW:
            tensor = tensor.transpose(0, 3, 1, 2)
        return np.ascontiguousarray(tensor, dtype=np.float32)
