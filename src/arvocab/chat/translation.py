"""Label translation services."""

from __future__ import annotations

import logging
import threading
from typing import TYPE_CHECKING, Protocol

from arvocab.chat.gemini import GeminiClient
from arvocab.errors import ConversationError, TranslationError

if TYPE_CHECKING:
    from arvocab.config import Settings

logger = logging.getLogger(__name__)

LANGUAGE_NAMES: dict[str, str] = {
    "en": "English",
    "ko": "Korean",
    "ja": "Japanese",
    "zh": "Chinese",
    "es": "Spanish",
    "fr": "French",
    "de": "German",
    "it": "Italian",
}


class Translator(Protocol):
    """Protocol for text translation."""

    @property
    def target_language(self) -> str:
        """BCP-47 tag of the output language."""
        ...

    def translate(self, text: str) -> str:
        """Translate ``text``.

        Raises:
            TranslationError: If the text could not be translated.
        """
        ...


def language_name(tag: str) -> str:
    return LANGUAGE_NAMES.get(tag.split("-")[0].lower(), tag)


class PassthroughTranslator:
    """Returns text unchanged. Used when no translation service is configured."""

    def __init__(self, target_language: str = "en") -> None:
        self._target = target_language

    @property
    def target_language(self) -> str:
        return self._target

    def translate(self, text: str) -> str:
        return text


class GeminiTranslator:
    """Single-word translation by prompting Gemini."""

    def __init__(self, client: GeminiClient, source_language: str, target_language: str) -> None:
        self._client = client
        self._source = source_language
        self._target = target_language
        self._cache: dict[str, str] = {}
        self._lock = threading.Lock()

    @property
    def target_language(self) -> str:
        return self._target

    def translate(self, text: str) -> str:
        text = text.strip()
        if not text:
            return ""
        with self._lock:
            cached = self._cache.get(text)
        if cached is not None:
            return cached

        prompt = (
            f"Translate the {language_name(self._source)} word or phrase below into "
            f"{language_name(self._target)}. Reply with the translation only.\n\n{text}"
        )
        try:
            translated = self._client.generate_text(prompt).strip().strip('"').strip()
        except ConversationError as exc:
            raise TranslationError(f"Translation of '{text}' failed: {exc}") from exc
        if not translated:
            raise TranslationError(f"Empty translation for '{text}'")

        with self._lock:
            self._cache[text] = translated
        return translated


def create_translator(settings: Settings) -> Translator:
    """Build the translator selected by ``settings.translation_backend``."""
    if settings.translation_backend == "gemini":
        try:
            return GeminiTranslator(GeminiClient(settings), settings.source_language, settings.target_language)
        except ConversationError:
            logger.exception("Gemini translator unavailable; labels will not be translated")
    return PassthroughTranslator(settings.source_language)
