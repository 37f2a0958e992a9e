"""Object recognizer: the zero-shot recognition pipeline behind one handle.

Owns the label catalog, the normalized text-embedding matrix, the
preprocessor, and the image encoder. The catalog and matrix are loaded lazily
on first use and then shared read-only; the encoder can be released and
rebuilt on its own to bound peak memory.

Every public recognition call is total: failures are logged and reported as
``Unknown`` rather than raised.
"""

from __future__ import annotations

import logging
import threading
from enum import StrEnum
from typing import TYPE_CHECKING

import numpy as np

from arvocab.errors import AcquisitionFailure, ArVocabError
from arvocab.ml.encoder import EncoderState, ImageEncoder
from arvocab.ml.labels import LabelCatalog, load_labels
from arvocab.ml.npy_reader import load_embedding_matrix, normalize_rows
from arvocab.ml.preprocessing import ImagePreprocessor, NormalizationMode
from arvocab.ml.similarity import UNKNOWN, RecognitionResult, classify, rank
from arvocab.ml.yuv import yuv_to_image

if TYPE_CHECKING:
    from collections.abc import Callable

    from numpy.typing import NDArray
    from PIL import Image

    from arvocab.config import Settings
    from arvocab.ml.model_manager import ModelManager
    from arvocab.ml.yuv import PlanarYuvImage

logger = logging.getLogger(__name__)


class AssetState(StrEnum):
    UNLOADED = "unloaded"
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


class ObjectRecognizer:
    """Zero-shot recognizer: image in, ``RecognitionResult`` out."""

    def __init__(
        self,
        settings: Settings,
        model_manager: ModelManager,
        encoder: ImageEncoder | None = None,
    ) -> None:
        self._settings = settings
        self._manager = model_manager
        self._preprocessor = ImagePreprocessor(
            size=settings.input_size,
            mode=NormalizationMode(settings.normalization),
            max_image_pixels=settings.max_image_pixels,
        )

        self._encoder_lock = threading.Lock()
        self._encoder = encoder

        self._assets_lock = threading.Lock()
        self._asset_state = AssetState.UNLOADED
        self._labels = LabelCatalog()
        self._text_embeddings: NDArray[np.float32] = np.zeros((0, 0), dtype=np.float32)

    # -- Properties ---------------------------------------------------------

    @property
    def preprocessor(self) -> ImagePreprocessor:
        return self._preprocessor

    @property
    def labels(self) -> LabelCatalog:
        self._ensure_assets()
        return self._labels

    @property
    def text_embeddings(self) -> NDArray[np.float32]:
        self._ensure_assets()
        return self._text_embeddings

    @property
    def asset_state(self) -> AssetState:
        return self._asset_state

    @property
    def label_count(self) -> int:
        """Size of the loaded catalog. Unlike ``labels`` this never triggers a load."""
        return len(self._labels)

    @property
    def encoder_loaded(self) -> bool:
        with self._encoder_lock:
            return self._encoder is not None and self._encoder.state is EncoderState.READY

    # -- Recognition --------------------------------------------------------

    def recognize(self, image: Image.Image | NDArray[np.uint8]) -> RecognitionResult:
        """Return the best-matching label for ``image`` or ``Unknown``."""
        labels, text_embeddings = self.labels, self.text_embeddings
        if not labels or text_embeddings.size == 0:
            logger.warning("Label catalog or text embeddings unavailable; returning Unknown")
            return UNKNOWN

        embedding = self._embed(image)
        if embedding is None:
            return UNKNOWN
        return classify(embedding, text_embeddings, labels, temperature=self._settings.temperature)

    def classify_image(self, image: Image.Image | NDArray[np.uint8], top_k: int = 5) -> list[RecognitionResult]:
        """Return up to ``top_k`` ranked labels for ``image``."""
        labels, text_embeddings = self.labels, self.text_embeddings
        if not labels or text_embeddings.size == 0:
            return []

        embedding = self._embed(image)
        if embedding is None:
            return []
        return rank(embedding, text_embeddings, labels, top_k=top_k, temperature=self._settings.temperature)

    def recognize_frame(self, frame: PlanarYuvImage) -> RecognitionResult | None:
        """Convert and recognize one camera frame; ``None`` if conversion failed."""
        image = self.frame_to_image(lambda: frame)
        if image is None:
            return None
        try:
            return self.recognize(image)
        finally:
            image.close()

    # -- Frame conversion ---------------------------------------------------

    def yuv_to_image(self, frame: PlanarYuvImage) -> Image.Image:
        """Convert a planar YUV frame to an RGB image."""
        return yuv_to_image(frame, jpeg_quality=self._settings.jpeg_quality or None)

    def frame_to_image(
        self,
        acquire: Callable[[], PlanarYuvImage | None],
        release: Callable[[], None] | None = None,
    ) -> Image.Image | None:
        """Acquire a frame and convert it, or return ``None`` if either step fails.

        ``release`` hands the frame's buffers back to their owner as soon as the
        conversion is done, whether or not it succeeded.
        """
        try:
            frame = self._acquire_frame(acquire)
            return self.yuv_to_image(frame)
        except AcquisitionFailure as exc:
            logger.warning("Frame acquisition failed: %s", exc)
        except ValueError:
            logger.exception("Frame conversion failed")
        finally:
            if release is not None:
                release()
        return None

    # -- Lifecycle ----------------------------------------------------------

    def load(self) -> None:
        """Eagerly load assets and the encoder. Failures are logged, not raised."""
        self._ensure_assets()
        try:
            self._get_encoder().load()
        except ArVocabError:
            logger.exception("Image encoder unavailable; recognition will return Unknown")

    def release_encoder(self) -> None:
        """Free the encoder's native resources. It is rebuilt on next use."""
        with self._encoder_lock:
            encoder, self._encoder = self._encoder, None
        if encoder is not None:
            encoder.release()

    def close(self) -> None:
        """Release the encoder and drop cached assets."""
        self.release_encoder()
        with self._assets_lock:
            self._labels = LabelCatalog()
            self._text_embeddings = np.zeros((0, 0), dtype=np.float32)
            self._asset_state = AssetState.UNLOADED

    # -- Internal -----------------------------------------------------------

    @staticmethod
    def _acquire_frame(acquire: Callable[[], PlanarYuvImage | None]) -> PlanarYuvImage:
        try:
            frame = acquire()
        except AcquisitionFailure:
            raise
        except Exception as exc:
            raise AcquisitionFailure(f"Frame source failed: {exc}") from exc
        if frame is None:
            raise AcquisitionFailure("No frame available")
        return frame

    def _get_encoder(self) -> ImageEncoder:
        with self._encoder_lock:
            if self._encoder is None:
                self._encoder = ImageEncoder(self._manager, self._settings.encoder_model)
            return self._encoder

    def _embed(self, image: Image.Image | NDArray[np.uint8]) -> NDArray[np.float32] | None:
        try:
            tensor = self._preprocessor.preprocess(image)
            return self._get_encoder().encode(tensor)
        except (ArVocabError, ValueError):
            logger.exception("Error during recognition")
            return None

    def _ensure_assets(self) -> None:
        if self._asset_state in (AssetState.READY, AssetState.FAILED):
            return
        with self._assets_lock:
            if self._asset_state in (AssetState.READY, AssetState.FAILED):
                return
            self._asset_state = AssetState.LOADING
            self._labels = load_labels(self._settings.labels_path)
            self._text_embeddings = self._load_text_embeddings(len(self._labels))
            loaded = bool(self._labels) and self._text_embeddings.size > 0
            self._asset_state = AssetState.READY if loaded else AssetState.FAILED

    def _load_text_embeddings(self, n_labels: int) -> NDArray[np.float32]:
        empty = np.zeros((0, 0), dtype=np.float32)
        if n_labels == 0:
            logger.error("Label catalog is empty. Cannot load text embeddings.")
            return empty
        try:
            matrix = load_embedding_matrix(self._settings.embeddings_path, n_labels)
        except ArVocabError:
            logger.exception("Error loading text embeddings from %s", self._settings.embeddings_path)
            return empty
        return normalize_rows(matrix)
