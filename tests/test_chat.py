"""Tests for the conversation collaborators: Gemini client, backends, translation, hints, session."""

from __future__ import annotations

import base64
import json
from unittest.mock import MagicMock

import httpx
import pytest
from conftest import make_settings

from arvocab.chat.backends import GeminiBackend, StubBackend, build_system_prompt, create_backend
from arvocab.chat.gemini import GeminiClient
from arvocab.chat.hints import extract_translated_word, is_translation_request
from arvocab.chat.session import ConversationSession
from arvocab.chat.translation import (
    GeminiTranslator,
    PassthroughTranslator,
    create_translator,
    language_name,
)
from arvocab.errors import ConversationError, TranslationError

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _text_response(text: str) -> dict[str, object]:
    return {"candidates": [{"content": {"role": "model", "parts": [{"text": text}]}}]}


def _client(transport: httpx.MockTransport | None = None, **overrides: object) -> GeminiClient:
    settings = make_settings(gemini_api_key="test-key", **overrides)
    transport = transport or httpx.MockTransport(lambda request: httpx.Response(200, json=_text_response("hi")))
    http = httpx.Client(transport=transport, base_url=settings.gemini_base_url)
    return GeminiClient(settings, client=http)


class _FakeTranslator:
    target_language = "ja"

    def __init__(self, table: dict[str, str] | None = None, error: bool = False) -> None:
        self._table = table or {}
        self._error = error

    def translate(self, text: str) -> str:
        if self._error:
            raise TranslationError("service down")
        return self._table.get(text, text)


# ---------------------------------------------------------------------------
# GeminiClient
# ---------------------------------------------------------------------------


class TestGeminiClient:
    def test_generate_text_request_shape(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_text_response(" A cup holds drinks. "))

        client = _client(httpx.MockTransport(handler))
        assert client.generate_text("What is this?", system="Be brief") == "A cup holds drinks."

        request = seen[0]
        assert request.url.path == "/v1beta/models/gemini-1.5-flash-latest:generateContent"
        assert request.url.params["key"] == "test-key"
        body = json.loads(request.content)
        assert body["contents"] == [{"role": "user", "parts": [{"text": "What is this?"}]}]
        assert body["systemInstruction"] == {"parts": [{"text": "Be brief"}]}
        assert "generationConfig" not in body

    def test_generate_speech_decodes_audio(self) -> None:
        pcm = b"\x01\x00\x02\x00"
        seen: list[dict[str, object]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(json.loads(request.content))
            part = {"inlineData": {"mimeType": "audio/L16;rate=24000", "data": base64.b64encode(pcm).decode()}}
            return httpx.Response(200, json={"candidates": [{"content": {"parts": [part]}}]})

        assert _client(httpx.MockTransport(handler)).generate_speech("컵") == pcm
        config = seen[0]["generationConfig"]
        assert config == {
            "responseModalities": ["AUDIO"],
            "speechConfig": {"voiceConfig": {"prebuiltVoiceConfig": {"voiceName": "Kore"}}},
        }

    def test_http_error_becomes_conversation_error(self) -> None:
        client = _client(httpx.MockTransport(lambda request: httpx.Response(429, json={"error": "quota"})))
        with pytest.raises(ConversationError, match="API error 429"):
            client.generate_text("hello")

    def test_transport_error_becomes_conversation_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("no route", request=request)

        with pytest.raises(ConversationError, match="Request failed"):
            _client(httpx.MockTransport(handler)).generate_text("hello")

    def test_no_candidates(self) -> None:
        client = _client(httpx.MockTransport(lambda request: httpx.Response(200, json={"candidates": []})))
        with pytest.raises(ConversationError, match="no candidates"):
            client.generate_text("hello")

    def test_malformed_body(self) -> None:
        client = _client(httpx.MockTransport(lambda request: httpx.Response(200, content=b"not json")))
        with pytest.raises(ConversationError, match="Unexpected response"):
            client.generate_text("hello")

    def test_missing_api_key(self) -> None:
        with pytest.raises(ConversationError, match="GEMINI_API_KEY"):
            GeminiClient(make_settings())


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class TestBackends:
    def test_stub_echoes_context(self) -> None:
        reply = StubBackend().chat("cup", "컵", "what is it?")
        assert reply == "Tell me more about the 'cup' in your target language: '컵'"

    def test_stub_has_no_speech(self) -> None:
        with pytest.raises(ConversationError):
            StubBackend().generate_speech("hello")

    def test_system_prompt_mentions_object(self) -> None:
        prompt = build_system_prompt("cup", "컵")
        assert "cup (translated: 컵)" in prompt
        assert "(translated" not in build_system_prompt("cup", "")

    def test_gemini_backend_tracks_last_error(self) -> None:
        client = MagicMock()
        client.generate_text.side_effect = ConversationError("API error 500")
        backend = GeminiBackend(client)

        with pytest.raises(ConversationError):
            backend.chat("cup", "컵", "hi")
        assert "API error 500" in backend.status

        client.generate_text.side_effect = None
        client.generate_text.return_value = "Hello!"
        assert backend.chat("cup", "컵", "hi") == "Hello!"
        assert backend.status == "Gemini ready"

    def test_gemini_backend_passes_system_prompt(self) -> None:
        client = MagicMock()
        client.generate_text.return_value = "ok"
        GeminiBackend(client).chat("cup", "컵", "hi")
        assert "cup" in client.generate_text.call_args.kwargs["system"]

    def test_create_backend_stub_by_default(self) -> None:
        assert isinstance(create_backend(make_settings()), StubBackend)

    def test_create_backend_falls_back_without_key(self) -> None:
        assert isinstance(create_backend(make_settings(chat_backend="gemini")), StubBackend)

    def test_create_backend_gemini(self) -> None:
        backend = create_backend(make_settings(chat_backend="gemini", gemini_api_key="k"))
        assert isinstance(backend, GeminiBackend)


# ---------------------------------------------------------------------------
# Translation
# ---------------------------------------------------------------------------


class TestTranslation:
    def test_passthrough(self) -> None:
        translator = PassthroughTranslator("en")
        assert translator.translate("cup") == "cup"
        assert translator.target_language == "en"

    def test_language_name(self) -> None:
        assert language_name("ko") == "Korean"
        assert language_name("ja-JP") == "Japanese"
        assert language_name("xx") == "xx"

    def test_gemini_translator_strips_quotes_and_caches(self) -> None:
        client = MagicMock()
        client.generate_text.return_value = ' "컵" '
        translator = GeminiTranslator(client, "en", "ko")

        assert translator.translate("cup") == "컵"
        assert translator.translate(" cup ") == "컵"
        client.generate_text.assert_called_once()
        assert "Korean" in client.generate_text.call_args.args[0]

    def test_gemini_translator_wraps_errors(self) -> None:
        client = MagicMock()
        client.generate_text.side_effect = ConversationError("API error 503")
        with pytest.raises(TranslationError, match="cup"):
            GeminiTranslator(client, "en", "ko").translate("cup")

    def test_gemini_translator_rejects_empty(self) -> None:
        client = MagicMock()
        client.generate_text.return_value = '""'
        with pytest.raises(TranslationError, match="Empty"):
            GeminiTranslator(client, "en", "ko").translate("cup")

    def test_blank_input(self) -> None:
        client = MagicMock()
        assert GeminiTranslator(client, "en", "ko").translate("  ") == ""
        client.generate_text.assert_not_called()

    def test_create_translator_falls_back(self) -> None:
        translator = create_translator(make_settings(translation_backend="gemini"))
        assert isinstance(translator, PassthroughTranslator)

    def test_create_translator_gemini(self) -> None:
        translator = create_translator(make_settings(translation_backend="gemini", gemini_api_key="k"))
        assert isinstance(translator, GeminiTranslator)
        assert translator.target_language == "ko"


# ---------------------------------------------------------------------------
# Hints
# ---------------------------------------------------------------------------


class TestHints:
    @pytest.mark.parametrize(
        "message",
        ["How do you say this in Korean?", "Translate it please", "일본어로 뭐라고 해?", "What's this?"],
    )
    def test_translation_requests(self, message: str) -> None:
        assert is_translation_request(message)

    def test_plain_message(self) -> None:
        assert not is_translation_request("Tell me a fun fact about it")

    @pytest.mark.parametrize(
        ("response", "expected"),
        [
            ('In Japanese, a cup is "コップ" (koppu).', "コップ"),
            ("In Korean, a cup is called 컵.", "컵"),
            ("Sure! It's 컵 in Korean.", "컵"),
            ("The word is **杯子** in Chinese.", "杯子"),
            ("Thai: หนังสือ", "หนังสือ"),
            ("In Hindi it is किताब.", "किताब"),
        ],
    )
    def test_extract_non_latin_word(self, response: str, expected: str) -> None:
        assert extract_translated_word(response) == expected

    def test_latin_only_response(self) -> None:
        assert extract_translated_word("In Spanish it is 'taza'.") == ""

    def test_unknown_is_never_extracted(self) -> None:
        assert extract_translated_word('"Unknown"') == ""


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class TestConversationSession:
    def test_greet_with_translation(self) -> None:
        session = ConversationSession(StubBackend(), _FakeTranslator({"cup": "コップ"}))
        messages = session.greet("cup")

        assert messages == [
            "It looks like a cup! In Japanese, that's 'コップ'.",
            "What would you like to know about it?",
        ]
        assert session.label == "cup"
        assert session.translation == "コップ"
        assert session.overlay == "cup"
        assert [speaker for speaker, _ in session.history] == ["assistant", "assistant"]

    def test_greet_survives_translation_failure(self) -> None:
        session = ConversationSession(StubBackend(), _FakeTranslator(error=True))
        assert session.greet("cup")[0] == "It looks like a cup!"
        assert session.translation == ""

    def test_greet_unknown_skips_translation(self) -> None:
        translator = MagicMock()
        translator.target_language = "ko"
        ConversationSession(StubBackend(), translator).greet("Unknown")
        translator.translate.assert_not_called()

    def test_send_uses_stub_backend(self) -> None:
        session = ConversationSession(StubBackend(), _FakeTranslator({"cup": "コップ"}))
        session.greet("cup")

        reply = session.send("Tell me about it")

        assert reply.ok
        assert reply.text == "Tell me more about the 'cup' in your target language: 'コップ'"
        assert reply.translated_word is None
        assert session.last_reply == reply.text
        assert session.history[-2:] == [("user", "Tell me about it"), ("assistant", reply.text)]

    def test_send_updates_overlay_on_translation(self) -> None:
        backend = MagicMock()
        backend.chat.return_value = "In Korean, a cup is called 컵."
        session = ConversationSession(backend, _FakeTranslator())
        session.greet("cup")

        reply = session.send("How do you say it in Korean?")

        assert reply.translated_word == "컵"
        assert session.overlay == "컵"

    def test_send_error_becomes_reply(self) -> None:
        backend = MagicMock()
        backend.chat.side_effect = ConversationError("API error 500")
        session = ConversationSession(backend, _FakeTranslator())

        reply = session.send("hi")

        assert not reply.ok
        assert reply.text == "Error: API error 500"
        backend.chat.assert_called_once_with("Unknown", "", "hi")

    def test_translate(self) -> None:
        session = ConversationSession(StubBackend(), _FakeTranslator({"chair": "椅子"}))
        assert session.translate("chair").text == "椅子"
        failed = ConversationSession(StubBackend(), _FakeTranslator(error=True)).translate("chair")
        assert failed.error == "service down"

    def test_speak_defaults_to_last_reply(self) -> None:
        backend = MagicMock()
        backend.chat.return_value = "A cup."
        backend.generate_speech.return_value = b"pcm"
        session = ConversationSession(backend, _FakeTranslator())
        session.send("hi")

        assert session.speak() == b"pcm"
        backend.generate_speech.assert_called_once_with("A cup.")

    def test_speak_with_nothing_to_say(self) -> None:
        with pytest.raises(ConversationError, match="Nothing to speak"):
            ConversationSession(StubBackend(), _FakeTranslator()).speak()

    def test_reset_clears_state(self) -> None:
        session = ConversationSession(StubBackend(), _FakeTranslator())
        session.greet("cup")
        session.send("hi")

        session.reset()

        assert session.label is None
        assert session.history == []
        assert session.last_reply is None
