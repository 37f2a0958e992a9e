"""Label catalog: the ordered category names matching the embedding rows."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, overload

from arvocab.errors import ResourceUnavailable

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

logger = logging.getLogger(__name__)


class LabelCatalog:
    """Immutable, index-addressable sequence of labels.

    Duplicates are kept: row ``i`` of the embedding matrix always belongs to
    ``catalog[i]``.
    """

    __slots__ = ("_labels",)

    def __init__(self, labels: Iterable[str] = ()) -> None:
        self._labels: tuple[str, ...] = tuple(labels)

    @overload
    def __getitem__(self, index: int) -> str: ...

    @overload
    def __getitem__(self, index: slice) -> tuple[str, ...]: ...

    def __getitem__(self, index: int | slice) -> str | tuple[str, ...]:
        return self._labels[index]

    def __len__(self) -> int:
        return len(self._labels)

    def __iter__(self) -> Iterator[str]:
        return iter(self._labels)

    def __bool__(self) -> bool:
        return bool(self._labels)

    def __repr__(self) -> str:
        return f"LabelCatalog({len(self._labels)} labels)"


def parse_labels(text: str) -> LabelCatalog:
    """Split ``text`` into labels, dropping blank lines."""
    return LabelCatalog(line.strip() for line in text.splitlines() if line.strip())


def read_labels(path: str | Path) -> LabelCatalog:
    """Read a newline-delimited UTF-8 label file.

    Raises:
        ResourceUnavailable: If the file cannot be opened or decoded.
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise ResourceUnavailable(f"Cannot read labels from {path}: {exc}") from exc
    return parse_labels(text)


def load_labels(path: str | Path) -> LabelCatalog:
    """Like :func:`read_labels`, but returns an empty catalog on failure."""
    try:
        catalog = read_labels(path)
    except ResourceUnavailable:
        logger.exception("Error loading labels from %s", path)
        return LabelCatalog()

    logger.info("Loaded %d labels from %s", len(catalog), path)
    return catalog
