"""FastAPI application entry point."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from arvocab.chat.backends import ConversationBackend
    from arvocab.chat.translation import Translator
    from arvocab.config import Settings
    from arvocab.ml.model_manager import ModelManager
    from arvocab.ml.similarity import RecognitionResult

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from arvocab.api.routes import router
from arvocab.chat.backends import create_backend
from arvocab.chat.session import ConversationSession
from arvocab.chat.translation import create_translator
from arvocab.config import get_settings
from arvocab.ml.inference import InferencePool
from arvocab.ml.model_manager import OnnxModelManager
from arvocab.ml.recognizer import ObjectRecognizer
from arvocab.ml.scheduler import RecognitionScheduler

logger = logging.getLogger(__name__)


def init_app_state(
    app: FastAPI,
    settings: Settings,
    *,
    model_manager: ModelManager | None = None,
    recognizer: ObjectRecognizer | None = None,
    backend: ConversationBackend | None = None,
    translator: Translator | None = None,
) -> None:
    """Build the recognition pipeline and chat session and attach them to ``app.state``."""
    manager = model_manager or OnnxModelManager(settings)
    recognizer = recognizer or ObjectRecognizer(settings, manager)
    session = ConversationSession(
        backend or create_backend(settings),
        translator or create_translator(settings),
    )

    def on_recognized(result: RecognitionResult) -> None:
        if settings.release_encoder_on_pause:
            recognizer.release_encoder()
        session.greet(result.label)

    app.state.settings = settings
    app.state.model_manager = manager
    app.state.recognizer = recognizer
    app.state.session = session
    app.state.scheduler = RecognitionScheduler(
        min_interval=settings.min_interval_ms / 1000.0,
        confidence_threshold=settings.confidence_threshold,
        on_recognized=on_recognized,
    )
    app.state.inference_pool = InferencePool(settings)


def shutdown_app_state(app: FastAPI) -> None:
    """Stop background workers and free model memory."""
    app.state.scheduler.shutdown()
    app.state.inference_pool.shutdown()
    app.state.recognizer.close()
    app.state.model_manager.shutdown()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan: initialize on startup, clean up on shutdown."""
    settings = get_settings()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )

    logger.info(
        "Starting ArVocab (device=%s, encoder=%s, labels=%s, chat=%s, translation=%s)",
        settings.device,
        settings.encoder_model,
        settings.labels_path,
        settings.chat_backend,
        settings.translation_backend,
    )

    init_app_state(app, settings)
    app.state.recognizer.load()

    logger.info("ArVocab ready")
    yield

    logger.info("Shutting down ArVocab")
    shutdown_app_state(app)
    logger.info("ArVocab shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="ArVocab",
        description="Zero-shot object recognition and vocabulary chat",
        version="0.1.0",
        lifespan=lifespan,
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(router)
    return application


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("arvocab.main:app", host=settings.host, port=settings.port)
