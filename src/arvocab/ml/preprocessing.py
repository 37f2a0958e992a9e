"""Image preprocessing for the image encoder.

Handles decoding uploaded bytes, EXIF orientation, RGB conversion, size
validation, and turning an RGB image into the float32 tensor the encoder
expects: shape ``(1, size, size, 3)``, HWC, RGB channel order.
"""

from __future__ import annotations

import io
from enum import StrEnum
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

if TYPE_CHECKING:
    from numpy.typing import NDArray

CLIP_MEAN = np.array([0.48145466, 0.4578275, 0.40821073], dtype=np.float32)
CLIP_STD = np.array([0.26862954, 0.26130258, 0.27577711], dtype=np.float32)


class NormalizationMode(StrEnum):
    """Per-channel normalization policy, fixed per encoder model."""

    CLIP = "clip"
    SYMMETRIC = "symmetric"


class ImagePreprocessor:
    """Converts images into encoder input tensors."""

    def __init__(
        self,
        size: int = 224,
        mode: NormalizationMode = NormalizationMode.CLIP,
        max_image_pixels: int | None = None,
    ) -> None:
        self._size = size
        self._mode = NormalizationMode(mode)
        self._max_image_pixels = max_image_pixels

    @property
    def size(self) -> int:
        return self._size

    @property
    def mode(self) -> NormalizationMode:
        return self._mode

    def decode_image(self, image_bytes: bytes) -> Image.Image:
        """Decode raw image bytes into an RGB image.

        Raises:
            ValueError: If the image cannot be decoded or exceeds size limits.
        """
        try:
            image = Image.open(io.BytesIO(image_bytes))
            width, height = image.size
            if self._max_image_pixels is not None and width * height > self._max_image_pixels:
                raise ValueError(
                    f"Image has {width * height} pixels, limit is {self._max_image_pixels}"
                )
            image = ImageOps.exif_transpose(image)
            return image.convert("RGB")
        except (UnidentifiedImageError, OSError) as exc:
            raise ValueError(f"Cannot decode image: {exc}") from exc

    @staticmethod
    def to_rgb_array(image: Image.Image) -> NDArray[np.uint8]:
        """Return ``image`` as an HxWx3 uint8 RGB array."""
        if image.mode != "RGB":
            image = image.convert("RGB")
        return np.asarray(image, dtype=np.uint8).copy()

    def preprocess(self, image: Image.Image | NDArray[np.uint8]) -> NDArray[np.float32]:
        """Resize and normalize an image.

        Args:
            image: PIL image or HxWx3 RGB uint8 array of any size.

        Returns:
            Float32 tensor of shape ``(1, size, size, 3)``.
        """
        if isinstance(image, np.ndarray):
            image = Image.fromarray(np.ascontiguousarray(image, dtype=np.uint8))
        if image.mode != "RGB":
            image = image.convert("RGB")

        scaled = image.resize((self._size, self._size), Image.Resampling.BILINEAR)
        try:
            raw = np.asarray(scaled, dtype=np.float32)
        finally:
            scaled.close()

        if self._mode is NormalizationMode.CLIP:
            tensor = (raw / 255.0 - CLIP_MEAN) / CLIP_STD
        else:
            tensor = (raw - 127.5) / 127.5
        return tensor.astype(np.float32)[np.newaxis, ...]
