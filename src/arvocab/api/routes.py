"""API route definitions."""

from __future__ import annotations

import base64
import binascii
import io
import wave
from typing import TYPE_CHECKING, Annotated, TypeVar

from fastapi import APIRouter, Depends, HTTPException, Query, Request, UploadFile, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import Response

from arvocab.api.middleware import verify_api_key
from arvocab.api.schemas import (
    ChatMessage,
    ChatRequest,
    ChatResponse,
    ClassifyImageResponse,
    ErrorResponse,
    FramePayload,
    FrameResponse,
    HealthResponse,
    ImageTag,
    ModelInfo,
    ModelsResponse,
    RecognizeResponse,
    SessionResponse,
    SpeechRequest,
    TranslateRequest,
    TranslateResponse,
)
from arvocab.errors import ConversationError
from arvocab.ml.model_manager import MODEL_REGISTRY
from arvocab.ml.similarity import is_confident
from arvocab.ml.yuv import PlanarYuvImage, Plane

if TYPE_CHECKING:
    from collections.abc import Callable

    from PIL import Image

    from arvocab.chat.session import ConversationSession
    from arvocab.config import Settings
    from arvocab.ml.inference import InferencePool
    from arvocab.ml.model_manager import ModelManager
    from arvocab.ml.recognizer import ObjectRecognizer
    from arvocab.ml.scheduler import RecognitionScheduler

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

T = TypeVar("T")

PCM_SAMPLE_RATE = 24_000


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_recognizer(request: Request) -> ObjectRecognizer:
    recognizer: ObjectRecognizer = request.app.state.recognizer
    return recognizer


def _get_scheduler(request: Request) -> RecognitionScheduler:
    scheduler: RecognitionScheduler = request.app.state.scheduler
    return scheduler


def _get_session(request: Request) -> ConversationSession:
    session: ConversationSession = request.app.state.session
    return session


async def _read_image(request: Request, file: UploadFile) -> Image.Image:
    settings = _get_settings(request)
    data = await file.read(settings.max_file_size + 1)
    if len(data) > settings.max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds {settings.max_file_size} bytes",
        )
    try:
        return await run_in_threadpool(_get_recognizer(request).preprocessor.decode_image, data)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


async def _run_recognizer(request: Request, func: Callable[..., T], *args: object) -> T:
    try:
        return await _get_inference_pool(request).run(func, *args)
    except TimeoutError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Recognizer is busy, try again later",
        ) from exc


def _decode_frame(payload: FramePayload, max_pixels: int) -> PlanarYuvImage:
    if payload.width * payload.height > max_pixels:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"Frame exceeds {max_pixels} pixels",
        )
    try:
        planes = [
            Plane(
                buffer=base64.b64decode(plane.data, validate=True),
                row_stride=plane.row_stride,
                pixel_stride=plane.pixel_stride,
            )
            for plane in payload.planes
        ]
    except binascii.Error as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"Invalid plane data: {exc}") from exc
    return PlanarYuvImage(width=payload.width, height=payload.height, planes=planes)


def _session_response(request: Request) -> SessionResponse:
    session = _get_session(request)
    return SessionResponse(
        state=_get_scheduler(request).state,
        label=session.label,
        translation=session.translation,
        overlay=session.overlay,
        messages=[ChatMessage(speaker=speaker, text=text) for speaker, text in session.history],
        assistant_status=session.backend_status,
    )


def _pcm_to_wav(pcm: bytes) -> bytes:
    out = io.BytesIO()
    with wave.open(out, "wb") as wav:
        wav.setnchannels(1)
        wav.setsampwidth(2)
        wav.setframerate(PCM_SAMPLE_RATE)
        wav.writeframes(pcm)
    return out.getvalue()


# ---------------------------------------------------------------------------
# Recognition
# ---------------------------------------------------------------------------


@router.post(
    "/recognize",
    response_model=RecognizeResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Recognize the main object in an image",
)
async def recognize(request: Request, file: UploadFile) -> RecognizeResponse:
    """Return the best-matching label for an uploaded image."""
    image = await _read_image(request, file)
    try:
        result = await _run_recognizer(request, _get_recognizer(request).recognize, image)
    finally:
        image.close()
    threshold = _get_settings(request).confidence_threshold
    return RecognizeResponse(
        label=result.label,
        score=result.score,
        recognized=is_confident(result, threshold),
    )


@router.post(
    "/classify-image",
    response_model=ClassifyImageResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Classify an image with ranked tags",
)
async def classify_image(
    request: Request,
    file: UploadFile,
    top_k: Annotated[int, Query(ge=1, le=100)] = 5,
) -> ClassifyImageResponse:
    """Classify an uploaded image and return ranked tags."""
    image = await _read_image(request, file)
    try:
        results = await _run_recognizer(request, _get_recognizer(request).classify_image, image, top_k)
    finally:
        image.close()
    return ClassifyImageResponse(tags=[ImageTag(label=r.label, score=r.score) for r in results])


@router.post(
    "/frames",
    response_model=FrameResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
    },
    summary="Submit a camera frame for throttled recognition",
)
async def submit_frame(request: Request, payload: FramePayload) -> FrameResponse:
    """Offer a frame to the scheduler. Frames it cannot take right now are dropped."""
    frame = _decode_frame(payload, _get_settings(request).max_image_pixels)
    recognizer = _get_recognizer(request)
    scheduler = _get_scheduler(request)
    accepted = scheduler.submit(lambda: recognizer.recognize_frame(frame))
    return FrameResponse(accepted=accepted, state=scheduler.state)


@router.get("/session", response_model=SessionResponse, summary="Current recognition and chat state")
async def get_session(request: Request) -> SessionResponse:
    return _session_response(request)


@router.post("/session/reset", response_model=SessionResponse, summary="Resume recognition")
async def reset_session(request: Request) -> SessionResponse:
    """Clear the current object and chat, and start accepting frames again."""
    _get_session(request).reset()
    _get_scheduler(request).reset()
    return _session_response(request)


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------


@router.post("/chat", response_model=ChatResponse, summary="Chat about the recognized object")
async def chat(request: Request, body: ChatRequest) -> ChatResponse:
    reply = await run_in_threadpool(_get_session(request).send, body.message)
    return ChatResponse(reply=reply.text, translated_word=reply.translated_word, error=reply.error)


@router.post("/translate", response_model=TranslateResponse, summary="Translate text")
async def translate(request: Request, body: TranslateRequest) -> TranslateResponse:
    reply = await run_in_threadpool(_get_session(request).translate, body.text)
    return TranslateResponse(text=reply.text, error=reply.error)


@router.post(
    "/speech",
    response_class=Response,
    responses={
        status.HTTP_200_OK: {"content": {"audio/wav": {}}},
        status.HTTP_502_BAD_GATEWAY: {"model": ErrorResponse},
    },
    summary="Synthesize speech",
)
async def speech(request: Request, body: SpeechRequest) -> Response:
    """Return a WAV rendering of the given text or the last assistant reply."""
    try:
        pcm = await run_in_threadpool(_get_session(request).speak, body.text)
    except ConversationError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc)) from exc
    return Response(content=_pcm_to_wav(pcm), media_type="audio/wav")


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)
    manager: ModelManager = request.app.state.model_manager
    recognizer = _get_recognizer(request)
    return HealthResponse(
        status="ok",
        gpu=settings.device == "cuda",
        models_loaded=manager.get_loaded_models(),
        labels=recognizer.label_count,
        asset_state=recognizer.asset_state,
        scheduler_state=_get_scheduler(request).state,
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available image encoders",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return registered encoders and which one is active."""
    settings = _get_settings(request)
    return ModelsResponse(
        models=[
            ModelInfo(
                name=spec.name,
                status="active" if spec.name == settings.encoder_model else "available",
                source=spec.repo_id or f"local:{spec.filename}",
                license=spec.license,
            )
            for spec in MODEL_REGISTRY.values()
        ]
    )
