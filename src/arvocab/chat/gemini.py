"""Minimal REST client for the Gemini ``generateContent`` endpoint."""

from __future__ import annotations

import base64
import logging
from typing import TYPE_CHECKING

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from arvocab.errors import ConversationError

if TYPE_CHECKING:
    from arvocab.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Wire models
# ---------------------------------------------------------------------------


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InlineData(_WireModel):
    mime_type: str
    data: str


class Part(_WireModel):
    text: str | None = None
    inline_data: InlineData | None = None


class Content(_WireModel):
    role: str | None = None
    parts: list[Part]


class PrebuiltVoiceConfig(_WireModel):
    voice_name: str


class VoiceConfig(_WireModel):
    prebuilt_voice_config: PrebuiltVoiceConfig


class SpeechConfig(_WireModel):
    voice_config: VoiceConfig


class GenerationConfig(_WireModel):
    response_modalities: list[str] | None = None
    speech_config: SpeechConfig | None = None


class GenerateRequest(_WireModel):
    contents: list[Content]
    system_instruction: Content | None = None
    generation_config: GenerationConfig | None = None


class Candidate(_WireModel):
    content: Content | None = None
    finish_reason: str | None = None


class GenerateResponse(_WireModel):
    candidates: list[Candidate] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class GeminiClient:
    """Sends ``generateContent`` requests and unpacks text or audio parts."""

    def __init__(self, settings: Settings, client: httpx.Client | None = None) -> None:
        if not settings.gemini_api_key:
            raise ConversationError("ARVOCAB_GEMINI_API_KEY is not set")
        self._api_key = settings.gemini_api_key
        self._chat_model = settings.chat_model
        self._tts_model = settings.tts_model
        self._voice = settings.tts_voice
        self._client = client or httpx.Client(
            base_url=settings.gemini_base_url,
            timeout=settings.request_timeout,
        )

    def generate_text(self, prompt: str, system: str | None = None) -> str:
        request = GenerateRequest(
            contents=[Content(role="user", parts=[Part(text=prompt)])],
            system_instruction=Content(parts=[Part(text=system)]) if system else None,
        )
        response = self._post(self._chat_model, request)
        texts = [part.text for part in self._parts(response) if part.text]
        if not texts:
            raise ConversationError("Gemini returned no text")
        return "".join(texts).strip()

    def generate_speech(self, text: str) -> bytes:
        """Return raw 16-bit PCM audio for ``text``."""
        request = GenerateRequest(
            contents=[Content(role="user", parts=[Part(text=text)])],
            generation_config=GenerationConfig(
                response_modalities=["AUDIO"],
                speech_config=SpeechConfig(
                    voice_config=VoiceConfig(prebuilt_voice_config=PrebuiltVoiceConfig(voice_name=self._voice))
                ),
            ),
        )
        response = self._post(self._tts_model, request)
        for part in self._parts(response):
            if part.inline_data is not None:
                try:
                    return base64.b64decode(part.inline_data.data)
                except ValueError as exc:
                    raise ConversationError(f"Invalid audio payload: {exc}") from exc
        raise ConversationError("Gemini returned no audio")

    def close(self) -> None:
        self._client.close()

    # -- Internal -----------------------------------------------------------

    def _post(self, model: str, request: GenerateRequest) -> GenerateResponse:
        try:
            response = self._client.post(
                f"/v1beta/models/{model}:generateContent",
                params={"key": self._api_key},
                json=request.model_dump(by_alias=True, exclude_none=True),
            )
            response.raise_for_status()
            return GenerateResponse.model_validate(response.json())
        except httpx.HTTPStatusError as exc:
            logger.error("Gemini %s returned %s", model, exc.response.status_code)
            raise ConversationError(f"API error {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            logger.error("Gemini %s request failed: %s", model, exc)
            raise ConversationError(f"Request failed: {exc}") from exc
        except (ValidationError, ValueError) as exc:
            raise ConversationError(f"Unexpected response: {exc}") from exc

    @staticmethod
    def _parts(response: GenerateResponse) -> list[Part]:
        if not response.candidates or response.candidates[0].content is None:
            raise ConversationError("Gemini returned no candidates")
        return response.candidates[0].content.parts
