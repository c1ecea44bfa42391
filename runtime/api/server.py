"""
FastAPI application entry point for the voice relay runtime.

Responsibilities:
- create the FastAPI app
- construct shared singletons (SessionStore, TurnProcessor,
  UtteranceAccumulator, CallController)
- run the idle-session sweeper for the lifetime of the app
- include the WebSocket routes

Run with:

    uvicorn runtime.api.server:app
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from configs.settings import settings
from core.api.openai_client import (
    OpenAICompletionService,
    OpenAISpeechService,
    OpenAITranscriptionService,
)
from core.api.providers import (
    CompletionService,
    SpeechSynthesisService,
    TranscriptionService,
)
from runtime.agents.call_controller import CallController
from runtime.agents.turn_processor import TurnProcessor
from runtime.agents.utterance_accumulator import UtteranceAccumulator
from runtime.store.session_store import SessionStore
from . import voice_routes


logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
)
logger = logging.getLogger(__name__)


def create_app(
    transcriber: Optional[TranscriptionService] = None,
    completer: Optional[CompletionService] = None,
    synthesizer: Optional[SpeechSynthesisService] = None,
    session_store: Optional[SessionStore] = None,
    silence_seconds: Optional[float] = None,
    provider_timeout: Optional[float] = None,
) -> FastAPI:
    """Build the app; providers default to the OpenAI implementations."""

    # ---------------------------------------------------------------------------
    # Shared singletons
    # ---------------------------------------------------------------------------

    # Session storage: in-memory, transcripts archived under data_dir if set.
    if session_store is None:
        session_store = SessionStore(
            system_prompt=settings.system_prompt,
            data_dir=str(settings.data_dir) if settings.data_dir else None,
        )

    turn_processor = TurnProcessor(
        session_store=session_store,
        transcriber=transcriber or OpenAITranscriptionService(),
        completer=completer or OpenAICompletionService(),
        synthesizer=synthesizer or OpenAISpeechService(),
        min_transcript_chars=settings.min_transcript_chars,
        provider_timeout=(
            settings.provider_timeout_seconds if provider_timeout is None else provider_timeout
        ),
    )

    accumulator = UtteranceAccumulator(
        session_store=session_store,
        turn_processor=turn_processor,
        silence_seconds=settings.silence_seconds if silence_seconds is None else silence_seconds,
    )

    call_controller = CallController(
        session_store=session_store,
        accumulator=accumulator,
    )

    # Sessions with a turn in flight are never swept.
    session_store.is_busy = accumulator.in_flight

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper = asyncio.create_task(
            session_store.run_sweeper(
                interval_seconds=settings.sweep_interval_seconds,
                max_idle_seconds=settings.session_idle_seconds,
            )
        )
        logger.info("Voice relay started")
        try:
            yield
        finally:
            sweeper.cancel()
            try:
                await sweeper
            except asyncio.CancelledError:
                pass
            await accumulator.drain()
            logger.info("Voice relay stopped")

    # ---------------------------------------------------------------------------
    # FastAPI app + route registration
    # ---------------------------------------------------------------------------

    app = FastAPI(title="Voice Relay Runtime", lifespan=lifespan)
    # Route handlers look these up on the app serving the request.
    app.state.session_store = session_store
    app.state.accumulator = accumulator
    app.state.call_controller = call_controller

    app.include_router(voice_routes.router)
    return app


app = create_app()
