"""Shared fixtures: tiny on-disk assets and fake encoder sessions."""

from __future__ import annotations

import struct
from pathlib import Path
from types import SimpleNamespace
from typing import TYPE_CHECKING
from unittest.mock import MagicMock

import numpy as np
import pytest

from arvocab.config import Settings

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_npy_bytes(payload: bytes, header: bytes = b"{'descr': '<f4', 'fortran_order': False, }\n") -> bytes:
    """Build an .npy v1 container around an arbitrary payload."""
    return b"\x93NUMPY\x01\x00" + struct.pack("<H", len(header)) + header + payload


def matrix_npy_bytes(rows: Sequence[Sequence[float]]) -> bytes:
    return make_npy_bytes(np.asarray(rows, dtype="<f4").tobytes())


def make_settings(**overrides: object) -> Settings:
    defaults: dict[str, object] = {
        "device": "cpu",
        "models_dir": "/tmp/arvocab_test_models",
        "encoder_model": "local_encoder",
        "intra_op_threads": 0,
        "inter_op_threads": 1,
        "gpu_mem_limit": 2_147_483_648,
        "max_concurrent": 2,
        "input_size": 8,
        "jpeg_quality": 0,
        "chat_backend": "stub",
        "translation_backend": "passthrough",
    }
    defaults.update(overrides)
    return Settings(**defaults)  # type: ignore[arg-type]


def fake_session(outputs: Callable[[np.ndarray], np.ndarray], dim: int = 2) -> MagicMock:
    """A stand-in for ``onnxruntime.InferenceSession`` that maps input to output."""
    session = MagicMock()
    session.get_inputs.return_value = [SimpleNamespace(name="pixel_values", shape=[1, 8, 8, 3])]
    session.get_outputs.return_value = [SimpleNamespace(name="embedding", shape=[1, dim])]
    session.run.side_effect = lambda names, feed: [outputs(next(iter(feed.values())))]
    return session


def fake_manager(session: MagicMock) -> MagicMock:
    manager = MagicMock()
    manager.get_session.return_value = session
    manager.unload.return_value = True
    manager.get_loaded_models.return_value = []
    return manager


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def assets(tmp_path: Path) -> dict[str, str]:
    """Labels and embeddings for the cup/chair/table example."""
    labels = tmp_path / "words.txt"
    labels.write_text("cup\nchair\n\ntable\n", encoding="utf-8")
    embeddings = tmp_path / "text_embed.npy"
    embeddings.write_bytes(matrix_npy_bytes([[1.0, 0.0], [0.0, 1.0], [0.6, 0.8]]))
    return {"labels_path": str(labels), "embeddings_path": str(embeddings), "models_dir": str(tmp_path)}
