"""
core.api.openai_client

Thin wrappers around the OpenAI audio and chat APIs for the voice relay.

Used by:
  - runtime/api/server.py (default providers for every session)
  - cli/main.py (`turn` command)
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import AsyncIterator, Dict, List, Optional

from openai import AsyncOpenAI, OpenAIError

from configs.settings import settings
from exceptions.exceptions import ProviderFailureException


logger = logging.getLogger(__name__)


# -------------------------------------------------------------------
# Client
# -------------------------------------------------------------------


@lru_cache(maxsize=1)
def get_client() -> AsyncOpenAI:
    """
    Return the shared AsyncOpenAI client, creating it on first use.

    Creation is deferred so the app (and its tests) can be imported
    without OPENAI_API_KEY being set.
    """
    return AsyncOpenAI(
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
        timeout=settings.provider_timeout_seconds,
    )


# -------------------------------------------------------------------
# Providers
# -------------------------------------------------------------------


class OpenAITranscriptionService:
    """Whisper transcription of one utterance."""

    def __init__(self, model: Optional[str] = None, filename: Optional[str] = None) -> None:
        self.model = model or settings.transcription_model
        self.filename = filename or settings.audio_filename

    async def transcribe(self, audio: bytes) -> str:
        try:
            transcription = await get_client().audio.transcriptions.create(
                model=self.model,
                file=(self.filename, audio),
            )
        except OpenAIError as e:
            raise ProviderFailureException("transcription", e) from e
        return transcription.text or ""


class OpenAICompletionService:
    """Streaming chat completion over the whole conversation history."""

    def __init__(self, model: Optional[str] = None) -> None:
        self.model = model or settings.completion_model

    async def stream_reply(self, history: List[Dict[str, str]]) -> AsyncIterator[str]:
        try:
            stream = await get_client().chat.completions.create(
                model=self.model,
                messages=history,
                stream=True,
            )
            try:
                async for chunk in stream:
                    if not chunk.choices:
                        continue
                    content = chunk.choices[0].delta.content
                    if content:
                        yield content
            finally:
                await stream.close()
        except OpenAIError as e:
            raise ProviderFailureException("completion", e) from e


class OpenAISpeechService:
    """Text-to-speech; returns the full encoded payload (mp3 by default)."""

    def __init__(
        self,
        model: Optional[str] = None,
        voice: Optional[str] = None,
        speed: Optional[float] = None,
    ) -> None:
        self.model = model or settings.speech_model
        self.voice = voice or settings.speech_voice
        self.speed = settings.speech_speed if speed is None else speed

    async def synthesize(self, text: str) -> bytes:
        logger.debug("Synthesizing %d characters with %s/%s", len(text), self.model, self.voice)
        try:
            response = await get_client().audio.speech.create(
                model=self.model,
                voice=self.voice,
                input=text,
                speed=self.speed,
            )
        except OpenAIError as e:
            raise ProviderFailureException("speech", e) from e
        return response.content
