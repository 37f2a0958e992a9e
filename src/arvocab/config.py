"""Environment-based configuration for ArVocab."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from ARVOCAB_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="ARVOCAB_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8082

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model selection
    encoder_model: str = "clip_vit_b32"
    models_dir: str = "models"

    # Zero-shot assets
    labels_path: str = "assets/words.txt"
    embeddings_path: str = "assets/text_embed.npy"

    # Preprocessing
    input_size: int = Field(default=224, ge=1)
    normalization: Literal["clip", "symmetric"] = "clip"

    # Classification
    confidence_threshold: float = 0.1
    temperature: float = Field(default=1.0, gt=0.0)

    # Frame scheduling
    min_interval_ms: int = Field(default=1000, ge=0)
    release_encoder_on_pause: bool = True
    jpeg_quality: int = Field(default=90, ge=0, le=100)

    # Conversation
    chat_backend: Literal["gemini", "stub"] = "stub"
    gemini_api_key: str | None = None
    gemini_base_url: str = "https://generativelanguage.googleapis.com"
    chat_model: str = "gemini-1.5-flash-latest"
    tts_model: str = "gemini-2.5-flash-preview-tts"
    tts_voice: str = "Kore"
    request_timeout: float = Field(default=30.0, gt=0.0)

    # Translation
    translation_backend: Literal["gemini", "passthrough"] = "passthrough"
    source_language: str = "en"
    target_language: str = "ko"

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=4, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=209_715_200, ge=1)

    # GPU memory
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
