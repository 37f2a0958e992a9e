"""Tests for encoder input preprocessing."""

from __future__ import annotations

import io

import numpy as np
import pytest
from PIL import Image

from arvocab.ml.preprocessing import CLIP_MEAN, CLIP_STD, ImagePreprocessor, NormalizationMode


def _solid(color: tuple[int, int, int], size: tuple[int, int] = (37, 19)) -> Image.Image:
    return Image.new("RGB", size, color)


def _png_bytes(image: Image.Image) -> bytes:
    out = io.BytesIO()
    image.save(out, format="PNG")
    return out.getvalue()


class TestPreprocess:
    def test_output_shape_and_dtype(self) -> None:
        tensor = ImagePreprocessor(size=16).preprocess(_solid((10, 20, 30)))
        assert tensor.shape == (1, 16, 16, 3)
        assert tensor.dtype == np.float32

    def test_clip_normalization(self) -> None:
        tensor = ImagePreprocessor(size=4, mode=NormalizationMode.CLIP).preprocess(_solid((255, 0, 128)))
        expected = (np.array([255, 0, 128], dtype=np.float32) / 255.0 - CLIP_MEAN) / CLIP_STD
        np.testing.assert_allclose(tensor[0, 2, 3], expected, rtol=1e-5)

    def test_symmetric_normalization(self) -> None:
        tensor = ImagePreprocessor(size=4, mode=NormalizationMode.SYMMETRIC).preprocess(_solid((255, 0, 127)))
        np.testing.assert_allclose(tensor[0, 0, 0], [1.0, -1.0, (127 - 127.5) / 127.5], rtol=1e-6)

    def test_channel_order_is_rgb(self) -> None:
        tensor = ImagePreprocessor(size=2, mode="symmetric").preprocess(_solid((255, 0, 0)))
        assert tensor[0, 0, 0, 0] == pytest.approx(1.0)
        assert tensor[0, 0, 0, 2] == pytest.approx(-1.0)

    def test_accepts_numpy_array(self) -> None:
        array = np.full((5, 7, 3), 255, dtype=np.uint8)
        tensor = ImagePreprocessor(size=3, mode="symmetric").preprocess(array)
        np.testing.assert_allclose(tensor, np.ones((1, 3, 3, 3)))

    def test_converts_non_rgb_modes(self) -> None:
        gray = Image.new("L", (4, 4), 255)
        tensor = ImagePreprocessor(size=4, mode="symmetric").preprocess(gray)
        np.testing.assert_allclose(tensor, np.ones((1, 4, 4, 3)))

    def test_source_image_left_open(self) -> None:
        image = _solid((1, 2, 3))
        ImagePreprocessor(size=4).preprocess(image)
        assert image.getpixel((0, 0)) == (1, 2, 3)


class TestDecodeImage:
    def test_decodes_png(self) -> None:
        image = ImagePreprocessor().decode_image(_png_bytes(_solid((9, 8, 7), (6, 5))))
        assert image.mode == "RGB"
        assert image.size == (6, 5)

    def test_rejects_garbage(self) -> None:
        with pytest.raises(ValueError, match="decode"):
            ImagePreprocessor().decode_image(b"not an image")

    def test_rejects_oversized_image(self) -> None:
        preprocessor = ImagePreprocessor(max_image_pixels=10)
        with pytest.raises(ValueError, match="limit"):
            preprocessor.decode_image(_png_bytes(_solid((0, 0, 0), (4, 4))))


class TestToRgbArray:
    def test_returns_hwc_uint8(self) -> None:
        array = ImagePreprocessor.to_rgb_array(_solid((9, 8, 7), (6, 5)))
        assert array.shape == (5, 6, 3)
        assert array.dtype == np.uint8
        assert tuple(array[0, 0]) == (9, 8, 7)

    def test_converts_grayscale(self) -> None:
        array = ImagePreprocessor.to_rgb_array(Image.new("L", (2, 2), 42))
        np.testing.assert_array_equal(array, np.full((2, 2, 3), 42))
