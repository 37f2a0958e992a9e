"""Camera frame conversion: planar YUV 4:2:0 to NV21 and RGB.

Frames arrive as three planes with independent row and pixel strides (the
layout camera stacks expose for ``YUV_420_888``). The plane buffers are
borrowed for the duration of one call and never retained.
"""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray


@dataclass(frozen=True)
class Plane:
    """One image plane: raw bytes plus its row and pixel strides."""

    buffer: bytes | bytearray | memoryview
    row_stride: int
    pixel_stride: int = 1


@dataclass(frozen=True)
class PlanarYuvImage:
    """A YUV 4:2:0 frame. ``planes`` are ordered Y, U, V."""

    width: int
    height: int
    planes: Sequence[Plane]


def nv21_size(width: int, height: int) -> int:
    return width * height + 2 * (width // 2) * (height // 2)


def _plane_array(plane: Plane, rows: int, cols: int, name: str) -> NDArray[np.uint8]:
    """View ``rows`` x ``cols`` samples of ``plane`` honoring both strides."""
    data = np.frombuffer(plane.buffer, dtype=np.uint8)
    if rows == 0 or cols == 0:
        return np.empty((rows, cols), dtype=np.uint8)
    needed = (rows - 1) * plane.row_stride + (cols - 1) * plane.pixel_stride + 1
    if data.size < needed:
        raise ValueError(f"{name} plane too small: need {needed} bytes, have {data.size}")
    return np.lib.stride_tricks.as_strided(
        data,
        shape=(rows, cols),
        strides=(plane.row_stride, plane.pixel_stride),
        writeable=False,
    )


def yuv420_to_nv21(image: PlanarYuvImage) -> bytes:
    """Interleave a planar YUV 4:2:0 frame into NV21 (Y plane, then VU pairs).

    Only ``width`` bytes are read from each luma row regardless of its stride.

    Raises:
        ValueError: If the frame does not have three planes or a plane is short.
    """
    if len(image.planes) != 3:
        raise ValueError(f"Expected 3 planes, got {len(image.planes)}")
    width, height = image.width, image.height
    y_plane, u_plane, v_plane = image.planes
    chroma_h, chroma_w = height // 2, width // 2

    # Plane views are checked before the output buffer is allocated.
    y = _plane_array(y_plane, height, width, "Y")
    # Both chroma planes share the U plane's strides.
    v = _plane_array(Plane(v_plane.buffer, u_plane.row_stride, u_plane.pixel_stride), chroma_h, chroma_w, "V")
    u = _plane_array(u_plane, chroma_h, chroma_w, "U")

    nv21 = np.empty(nv21_size(width, height), dtype=np.uint8)
    y_size = width * height
    nv21[:y_size] = y.reshape(-1)
    vu = nv21[y_size:].reshape(chroma_h, chroma_w, 2) if chroma_h and chroma_w else None
    if vu is not None:
        vu[..., 0] = v
        vu[..., 1] = u
    return nv21.tobytes()


def nv21_to_rgb(nv21: bytes, width: int, height: int) -> NDArray[np.uint8]:
    """Convert NV21 bytes to an ``(height, width, 3)`` RGB array (BT.601, full range)."""
    if len(nv21) != nv21_size(width, height):
        raise ValueError(f"NV21 buffer has {len(nv21)} bytes, expected {nv21_size(width, height)}")

    data = np.frombuffer(nv21, dtype=np.uint8)
    y_size = width * height
    y = data[:y_size].reshape(height, width).astype(np.float32)

    chroma_h, chroma_w = height // 2, width // 2
    vu = data[y_size:].reshape(chroma_h, chroma_w, 2).astype(np.float32) - 128.0
    # Upsample each chroma sample to its 2x2 block; odd edges reuse the last sample.
    rows = np.minimum(np.arange(height) // 2, max(chroma_h - 1, 0))
    cols = np.minimum(np.arange(width) // 2, max(chroma_w - 1, 0))
    if chroma_h and chroma_w:
        vu_full = vu[rows][:, cols]
        v, u = vu_full[..., 0], vu_full[..., 1]
    else:
        v = u = np.zeros_like(y)

    r = y + 1.402 * v
    g = y - 0.344136 * u - 0.714136 * v
    b = y + 1.772 * u
    rgb = np.stack([r, g, b], axis=-1)
    return np.clip(np.rint(rgb), 0, 255).astype(np.uint8)


def yuv_to_image(image: PlanarYuvImage, jpeg_quality: int | None = 90) -> Image.Image:
    """Convert a planar YUV frame into an RGB Pillow image.

    When ``jpeg_quality`` is set, the image goes through a lossy JPEG encode and
    decode at that quality, matching what a device camera pipeline delivers.
    """
    rgb = Image.fromarray(nv21_to_rgb(yuv420_to_nv21(image), image.width, image.height))
    if not jpeg_quality:
        return rgb

    out = io.BytesIO()
    rgb.save(out, format="JPEG", quality=jpeg_quality)
    rgb.close()
    out.seek(0)
    decoded = Image.open(out)
    decoded.load()
    return decoded.convert("RGB")
