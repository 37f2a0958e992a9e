"""Conversation backends: the assistant the user chats with about an object.

Implementations: Gemini (remote), stub (offline echo). The recognition
pipeline never depends on which one is active.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from arvocab.chat.gemini import GeminiClient
from arvocab.errors import ConversationError

if TYPE_CHECKING:
    from arvocab.config import Settings

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a friendly vocabulary tutor inside a camera app. The learner is "
    "pointing the camera at a {label}{translation}. Answer in one to three short "
    "sentences. When asked how to say something in another language, put the "
    'translated word in double quotes, for example "컵".'
)


class ConversationBackend(Protocol):
    """Protocol for conversational assistants."""

    @property
    def status(self) -> str:
        """Human-readable backend status."""
        ...

    def chat(self, object_label: str, translated_label: str, user_message: str) -> str:
        """Reply to ``user_message`` about the recognized object.

        Raises:
            ConversationError: If no reply could be produced.
        """
        ...

    def generate_speech(self, text: str) -> bytes:
        """Synthesize ``text`` as raw 16-bit PCM.

        Raises:
            ConversationError: If speech is unsupported or synthesis failed.
        """
        ...


def build_system_prompt(object_label: str, translated_label: str) -> str:
    translation = f" (translated: {translated_label})" if translated_label else ""
    return SYSTEM_PROMPT.format(label=object_label or "Unknown", translation=translation)


class GeminiBackend:
    """Chat and speech through the Gemini REST API."""

    def __init__(self, client: GeminiClient) -> None:
        self._client = client
        self._last_error: str | None = None

    @property
    def status(self) -> str:
        if self._last_error:
            return f"Gemini (last error: {self._last_error})"
        return "Gemini ready"

    def chat(self, object_label: str, translated_label: str, user_message: str) -> str:
        try:
            reply = self._client.generate_text(
                user_message,
                system=build_system_prompt(object_label, translated_label),
            )
        except ConversationError as exc:
            self._last_error = str(exc)
            raise
        self._last_error = None
        return reply

    def generate_speech(self, text: str) -> bytes:
        try:
            return self._client.generate_speech(text)
        except ConversationError as exc:
            self._last_error = str(exc)
            raise


class StubBackend:
    """Offline placeholder that echoes the conversation context."""

    @property
    def status(self) -> str:
        return "Stub assistant (offline)"

    def chat(self, object_label: str, translated_label: str, user_message: str) -> str:
        return f"Tell me more about the '{object_label}' in your target language: '{translated_label}'"

    def generate_speech(self, text: str) -> bytes:
        raise ConversationError("Speech is not available with the stub assistant")


def create_backend(settings: Settings) -> ConversationBackend:
    """Build the backend selected by ``settings.chat_backend``.

    Falls back to the stub if the Gemini client cannot be configured.
    """
    if settings.chat_backend == "gemini":
        try:
            return GeminiBackend(GeminiClient(settings))
        except ConversationError:
            logger.exception("Gemini backend unavailable; using stub assistant")
    return StubBackend()
