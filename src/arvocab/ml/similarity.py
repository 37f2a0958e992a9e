"""Zero-shot classification by cosine similarity against text embeddings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

UNKNOWN_LABEL = "Unknown"


@dataclass(frozen=True)
class RecognitionResult:
    """Best-matching label and its (possibly temperature-scaled) cosine score."""

    label: str
    score: float

    @property
    def is_unknown(self) -> bool:
        return self.label == UNKNOWN_LABEL


UNKNOWN = RecognitionResult(label=UNKNOWN_LABEL, score=0.0)


def l2_normalize(vector: NDArray[np.float32]) -> NDArray[np.float32]:
    """Normalize ``vector`` in place. A zero vector is returned unchanged."""
    norm = float(np.linalg.norm(vector))
    if norm > 0.0:
        with np.errstate(invalid="ignore"):
            vector /= norm
    return vector


def _similarities(
    image_embedding: NDArray[np.float32],
    text_embeddings: Sequence[NDArray[np.float32]] | NDArray[np.float32],
    n_labels: int,
) -> tuple[NDArray[np.intp], NDArray[np.float32]]:
    """Return (row indices, cosine scores) for every comparable row."""
    dim = image_embedding.shape[0]
    indices: list[int] = []
    rows: list[NDArray[np.float32]] = []
    for idx, row in enumerate(text_embeddings):
        if idx >= n_labels:
            break
        if len(row) == 0:
            continue
        if len(row) != dim:
            logger.warning(
                "Skipping text embedding %d due to mismatched dimension (image=%d, text=%d)",
                idx,
                dim,
                len(row),
            )
            continue
        indices.append(idx)
        rows.append(row)

    if not rows:
        return np.empty(0, dtype=np.intp), np.empty(0, dtype=np.float32)
    matrix = np.asarray(rows, dtype=np.float32)
    with np.errstate(invalid="ignore", over="ignore"):
        scores = matrix @ image_embedding
    # A NaN or infinite score never wins a comparison, so such rows are not comparable.
    finite = np.isfinite(scores)
    if not finite.all():
        logger.warning("Dropping %d non-finite similarity scores", int((~finite).sum()))
    return np.asarray(indices, dtype=np.intp)[finite], scores[finite]


def classify(
    image_embedding: NDArray[np.float32],
    text_embeddings: Sequence[NDArray[np.float32]] | NDArray[np.float32],
    labels: Sequence[str],
    temperature: float = 1.0,
) -> RecognitionResult:
    """Return the label whose text embedding is closest to ``image_embedding``.

    A normalized copy of the image embedding is compared; text rows are expected to be
    normalized already. Rows that are empty, have a different dimension, or have
    no label are skipped. Equal scores keep the earliest row.
    """
    if len(text_embeddings) == 0 or len(labels) == 0:
        logger.warning("Text embeddings or labels are empty. Cannot recognize.")
        return UNKNOWN

    image_embedding = l2_normalize(np.array(image_embedding, dtype=np.float32).reshape(-1))
    indices, scores = _similarities(image_embedding, text_embeddings, len(labels))
    if scores.size == 0:
        logger.warning("No text embedding is comparable with the image embedding.")
        return UNKNOWN

    # argmax returns the first occurrence of the maximum.
    best = int(np.argmax(scores))
    return RecognitionResult(label=labels[int(indices[best])], score=float(scores[best]) / temperature)


def rank(
    image_embedding: NDArray[np.float32],
    text_embeddings: Sequence[NDArray[np.float32]] | NDArray[np.float32],
    labels: Sequence[str],
    top_k: int = 5,
    temperature: float = 1.0,
) -> list[RecognitionResult]:
    """Return up to ``top_k`` results sorted by descending score."""
    if len(text_embeddings) == 0 or len(labels) == 0 or top_k <= 0:
        return []

    image_embedding = l2_normalize(np.array(image_embedding, dtype=np.float32).reshape(-1))
    indices, scores = _similarities(image_embedding, text_embeddings, len(labels))
    # Stable sort on negated scores keeps earlier rows first among ties.
    order = np.argsort(-scores, kind="stable")[:top_k]
    return [
        RecognitionResult(label=labels[int(indices[i])], score=float(scores[i]) / temperature) for i in order
    ]


def is_confident(result: RecognitionResult, threshold: float) -> bool:
    """Whether ``result`` clears the confidence gate and names a real label."""
    return bool(result.label.strip()) and not result.is_unknown and result.score > threshold
