"""Conversation session about the currently recognized object.

Collaborator failures never escape from here: they come back as a
``ChatReply`` carrying a plain error string, which is what gets shown to the
learner.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from arvocab.chat.hints import extract_translated_word, is_translation_request
from arvocab.chat.translation import language_name
from arvocab.errors import ConversationError, TranslationError

if TYPE_CHECKING:
    from arvocab.chat.backends import ConversationBackend
    from arvocab.chat.translation import Translator

logger = logging.getLogger(__name__)

UNKNOWN_LABEL = "Unknown"


@dataclass(frozen=True)
class ChatReply:
    """One assistant turn."""

    text: str
    translated_word: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class _SessionState:
    label: str | None = None
    translation: str = ""
    overlay: str | None = None
    history: list[tuple[str, str]] = field(default_factory=list)
    last_reply: str | None = None


class ConversationSession:
    """Chat state for one recognized object."""

    def __init__(self, backend: ConversationBackend, translator: Translator) -> None:
        self._backend = backend
        self._translator = translator
        self._lock = threading.Lock()
        self._state = _SessionState()

    @property
    def label(self) -> str | None:
        return self._state.label

    @property
    def translation(self) -> str:
        return self._state.translation

    @property
    def overlay(self) -> str | None:
        """Word currently shown over the object: the label or an extracted translation."""
        return self._state.overlay

    @property
    def history(self) -> list[tuple[str, str]]:
        """``(speaker, text)`` pairs, oldest first."""
        with self._lock:
            return list(self._state.history)

    @property
    def last_reply(self) -> str | None:
        return self._state.last_reply

    @property
    def backend_status(self) -> str:
        return self._backend.status

    def greet(self, label: str) -> list[str]:
        """Start a conversation about ``label`` and return the opening messages."""
        translated = ""
        if label != UNKNOWN_LABEL:
            try:
                translated = self._translator.translate(label)
            except TranslationError as exc:
                logger.error("Translation error: %s", exc)

        language = language_name(self._translator.target_language)
        if translated:
            opening = [f"It looks like a {label}! In {language}, that's '{translated}'."]
        else:
            opening = [f"It looks like a {label}!"]
        opening.append("What would you like to know about it?")

        with self._lock:
            self._state = _SessionState(label=label, translation=translated, overlay=label)
            self._state.history.extend(("assistant", message) for message in opening)
        return opening

    def send(self, message: str) -> ChatReply:
        """Send a learner message and return the assistant's reply."""
        label = self._state.label or UNKNOWN_LABEL
        with self._lock:
            self._state.history.append(("user", message))

        try:
            text = self._backend.chat(label, self._state.translation, message)
        except ConversationError as exc:
            logger.error("Chat failed: %s", exc)
            return ChatReply(text=f"Error: {exc}", error=str(exc))

        translated_word = None
        if is_translation_request(message):
            translated_word = extract_translated_word(text) or None

        with self._lock:
            self._state.history.append(("assistant", text))
            self._state.last_reply = text
            if translated_word:
                self._state.overlay = translated_word
        return ChatReply(text=text, translated_word=translated_word)

    def translate(self, text: str) -> ChatReply:
        try:
            return ChatReply(text=self._translator.translate(text))
        except TranslationError as exc:
            logger.error("Translation error: %s", exc)
            return ChatReply(text=f"Error: {exc}", error=str(exc))

    def speak(self, text: str | None = None) -> bytes:
        """Synthesize ``text`` (or the last reply) as PCM audio.

        Raises:
            ConversationError: If there is nothing to say or synthesis failed.
        """
        text = text or self._state.last_reply
        if not text:
            raise ConversationError("Nothing to speak")
        return self._backend.generate_speech(text)

    def reset(self) -> None:
        with self._lock:
            self._state = _SessionState()
