"""
core.api.providers

Contracts for the three external services a voice turn depends on.

Implementations may use:
- OpenAI (see core.api.openai_client)
- local models
- in-memory fakes in tests

All three are async. Any failure should be raised as
ProviderFailureException so the turn can report it to the client.
"""

from __future__ import annotations

from typing import AsyncIterator, Dict, List, Protocol


class TranscriptionService(Protocol):
    async def transcribe(self, audio: bytes) -> str:
        """Return the text recognized in one utterance of encoded audio."""
        ...


class CompletionService(Protocol):
    def stream_reply(self, history: List[Dict[str, str]]) -> AsyncIterator[str]:
        """
        Yield the assistant reply for `history` as incremental text fragments.

        The iterator is finite and single-use; it is consumed once and may be
        closed early with `aclose()`.
        """
        ...


class SpeechSynthesisService(Protocol):
    async def synthesize(self, text: str) -> bytes:
        """Return one complete encoded audio payload speaking `text`."""
        ...
