"""Error kinds raised inside the recognition pipeline and its collaborators.

Pipeline components raise these; :class:`arvocab.ml.recognizer.ObjectRecognizer`
turns them into sentinel results so callers always get an answer.
"""

from __future__ import annotations


class ArVocabError(Exception):
    """Base class for all ArVocab errors."""


class ResourceUnavailable(ArVocabError):
    """A label file, embedding file, or model artifact could not be opened."""


class InvalidFormat(ArVocabError):
    """An embedding file does not start with the expected NumPy preamble."""


class DimensionMismatch(ArVocabError):
    """Embedding payload size does not factor into the expected row count."""


class ModelUnavailable(ArVocabError):
    """The image encoder could not be loaded."""


class InferenceError(ArVocabError):
    """A single encoder call failed."""


class AcquisitionFailure(ArVocabError):
    """A camera frame could not be obtained or converted."""


class ConversationError(ArVocabError):
    """The conversation backend failed to produce a reply or audio."""


class TranslationError(ArVocabError):
    """The translation service failed."""
