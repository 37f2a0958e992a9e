"""Pydantic request/response schemas for the ArVocab API."""

from __future__ import annotations

from pydantic import BaseModel, Field

MAX_FRAME_SIDE = 8192


class RecognizeResponse(BaseModel):
    """Best zero-shot match for an uploaded image."""

    label: str
    score: float = Field(description="Cosine similarity of the winning label (temperature-scaled)")
    recognized: bool = Field(description="Whether the score cleared the confidence threshold")


class ImageTag(BaseModel):
    """A single classification tag with its similarity score."""

    label: str
    score: float


class ClassifyImageResponse(BaseModel):
    """Response for image classification endpoint."""

    tags: list[ImageTag]


class PlanePayload(BaseModel):
    """One image plane of a camera frame."""

    data: str = Field(description="Base64-encoded plane bytes")
    row_stride: int = Field(ge=1)
    pixel_stride: int = Field(default=1, ge=1)


class FramePayload(BaseModel):
    """A planar YUV 4:2:0 camera frame (planes ordered Y, U, V)."""

    width: int = Field(ge=2, le=MAX_FRAME_SIDE)
    height: int = Field(ge=2, le=MAX_FRAME_SIDE)
    planes: list[PlanePayload] = Field(min_length=3, max_length=3)


class FrameResponse(BaseModel):
    accepted: bool
    state: str


class ChatMessage(BaseModel):
    speaker: str
    text: str


class SessionResponse(BaseModel):
    """Recognition and conversation state."""

    state: str
    label: str | None
    translation: str
    overlay: str | None
    messages: list[ChatMessage]
    assistant_status: str


class ChatRequest(BaseModel):
    message: str = Field(min_length=1)


class ChatResponse(BaseModel):
    reply: str
    translated_word: str | None = None
    error: str | None = None


class TranslateRequest(BaseModel):
    text: str = Field(min_length=1)


class TranslateResponse(BaseModel):
    text: str
    error: str | None = None


class SpeechRequest(BaseModel):
    text: str | None = Field(default=None, description="Text to speak; defaults to the last assistant reply")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    labels: int = Field(description="Labels in the catalog; 0 until the assets are loaded")
    asset_state: str
    scheduler_state: str
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about an available image encoder."""

    name: str
    status: str = Field(description="Model status: 'active' or 'available'")
    source: str
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str

