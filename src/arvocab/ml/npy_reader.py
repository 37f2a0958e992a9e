"""Reader for the precomputed text-embedding matrix.

The file is a NumPy ``.npy`` v1 container, but only the preamble is checked:
the textual header is skipped and the payload is always treated as a
C-contiguous, row-major, little-endian float32 array. The number of rows comes
from the label catalog, and the column count is derived from the payload size.
"""

from __future__ import annotations

import logging
import struct
from pathlib import Path
from typing import TYPE_CHECKING, BinaryIO

import numpy as np

from arvocab.errors import DimensionMismatch, InvalidFormat, ResourceUnavailable

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

NPY_MAGIC_BYTE = 0x93
NPY_MARKER = b"NUMPY"
PREAMBLE_SIZE = 10
_FLOAT_SIZE = 4


def read_embedding_matrix(stream: BinaryIO, n_rows: int) -> NDArray[np.float32]:
    """Parse an embedding file from ``stream`` into an ``(n_rows, dim)`` matrix.

    Raises:
        InvalidFormat: If the preamble or header is missing or malformed.
        DimensionMismatch: If the payload cannot be split into ``n_rows`` rows.
    """
    preamble = stream.read(PREAMBLE_SIZE)
    if len(preamble) < PREAMBLE_SIZE:
        raise InvalidFormat(f"Truncated preamble ({len(preamble)} bytes)")
    if preamble[0] != NPY_MAGIC_BYTE or preamble[1:6] != NPY_MARKER:
        raise InvalidFormat("Invalid NPY magic string")

    (header_len,) = struct.unpack_from("<H", preamble, 8)
    header = stream.read(header_len)
    if len(header) < header_len:
        raise InvalidFormat(f"Truncated header: expected {header_len} bytes, got {len(header)}")

    raw = stream.read()
    total_floats = len(raw) // _FLOAT_SIZE

    if n_rows <= 0:
        raise DimensionMismatch(f"Row count must be positive, got {n_rows}")
    if total_floats % n_rows != 0:
        raise DimensionMismatch(
            f"Total floats ({total_floats}) is not divisible by number of labels ({n_rows})"
        )
    dim = total_floats // n_rows
    if dim <= 0:
        raise DimensionMismatch(f"Invalid embedding dimension: {dim}")

    flat = np.frombuffer(raw, dtype="<f4", count=total_floats)
    return flat.astype(np.float32).reshape(n_rows, dim)


def load_embedding_matrix(path: str | Path, n_rows: int) -> NDArray[np.float32]:
    """Open ``path`` and parse it with :func:`read_embedding_matrix`.

    Raises:
        ResourceUnavailable: If the file cannot be opened.
    """
    try:
        with Path(path).open("rb") as stream:
            matrix = read_embedding_matrix(stream, n_rows)
    except OSError as exc:
        raise ResourceUnavailable(f"Cannot open embedding file {path}: {exc}") from exc

    logger.info("Loaded text embeddings: %d labels, %d dimensions", matrix.shape[0], matrix.shape[1])
    return matrix


def normalize_rows(matrix: NDArray[np.float32]) -> NDArray[np.float32]:
    """L2-normalize every row of ``matrix`` in place. Zero rows stay zero."""
    norms = np.linalg.norm(matrix, axis=1, keepdims=True)
    np.divide(matrix, norms, out=matrix, where=norms > 0)
    return matrix
