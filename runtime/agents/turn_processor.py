"""TurnProcessor implementation.

Responsible for one full voice turn of a session:
- transcribe the captured utterance
- append the user's text to the session history
- stream the assistant reply back fragment by fragment
- append the full reply to the history
- synthesize the reply and send the audio

Every turn emits `status: processing` first and `status: ready` last,
whatever happens in between. A failing step is reported as an `error`
event and never leaves the session blocked.

The caller (UtteranceAccumulator) guarantees that at most one turn runs per
session, so the turn list is mutated here without further locking.
"""

import asyncio
import base64
import logging
from typing import Awaitable, Callable, Optional

from core.api.providers import (
    CompletionService,
    SpeechSynthesisService,
    TranscriptionService,
)
from exceptions.exceptions import InvalidSessionException, ProviderFailureException

from ..models.api_models import (
    AudioResponseEvent,
    ErrorEvent,
    ResponseChunkEvent,
    ServerEvent,
    StatusEvent,
    TranscriptionEvent,
)
from ..models.session_models import Session, SessionMode, TurnRole
from ..store.session_store import SessionStore


logger = logging.getLogger(__name__)

Emitter = Callable[[ServerEvent], Awaitable[None]]

_END_OF_STREAM = object()


async def _next_fragment(stream):
    try:
        return await stream.__anext__()
    except StopAsyncIteration:
        return _END_OF_STREAM


class TurnProcessor:
    """Transcribe -> complete -> synthesize pipeline for a single utterance.

    Parameters
    ----------
    session_store:
        Store holding the sessions whose history is extended.
    transcriber, completer, synthesizer:
        Provider implementations (see core.api.providers).
    min_transcript_chars:
        In continuous mode, transcripts shorter than this (after trimming)
        are treated as noise and end the turn silently.
    provider_timeout:
        Deadline in seconds for each provider call and for each streamed
        fragment. None disables the deadline.
    """

    def __init__(
        self,
        session_store: SessionStore,
        transcriber: TranscriptionService,
        completer: CompletionService,
        synthesizer: SpeechSynthesisService,
        min_transcript_chars: int = 2,
        provider_timeout: Optional[float] = None,
    ) -> None:
        self.session_store = session_store
        self.transcriber = transcriber
        self.completer = completer
        self.synthesizer = synthesizer
        self.min_transcript_chars = min_transcript_chars
        self.provider_timeout = provider_timeout

    async def run(self, session_id: str, audio: bytes, mode: SessionMode, emit: Emitter) -> None:
        """Run one turn and emit its events; never raises for turn failures."""
        await emit(StatusEvent(status="processing"))
        try:
            await self._run_pipeline(session_id, audio, mode, emit)
        except (InvalidSessionException, ProviderFailureException) as e:
            logger.warning("[TURN] Turn failed for session_id=%s: %s", session_id, e)
            await emit(ErrorEvent(message=str(e)))
        except Exception as e:
            logger.exception("[TURN] Unexpected error for session_id=%s", session_id)
            await emit(ErrorEvent(message=str(e) or e.__class__.__name__))
        await emit(StatusEvent(status="ready"))

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _run_pipeline(self, session_id: str, audio: bytes, mode: SessionMode, emit: Emitter) -> None:
        session = self.session_store.get_session(session_id)
        if session is None:
            raise InvalidSessionException(session_id)
        self.session_store.touch(session_id)

        # (1) Transcribe
        text = await self._bounded("transcription", self.transcriber.transcribe(audio))
        if self.session_store.get_session(session_id) is None:
            logger.info("[TURN] Session %s closed during transcription; skipping reply", session_id)
            return
        self.session_store.touch(session_id)

        if mode is SessionMode.CONTINUOUS:
            text = text.strip()
            if len(text) < self.min_transcript_chars:
                logger.info("[TURN] Ignoring empty transcript for session_id=%s", session_id)
                return

        logger.info("[TURN] Transcription for session_id=%s: %r", session_id, text)

        # (2) + (3) Report and record the user's words
        await emit(TranscriptionEvent(text=text))
        session.append_turn(TurnRole.USER, text)

        # (4) + (5) Stream the reply, then record it
        reply = await self._stream_reply(session, emit)
        if reply is None:
            return
        session.append_turn(TurnRole.ASSISTANT, reply)
        self.session_store.touch(session_id)

        # (6) Speak it
        speech = await self._bounded("speech", self.synthesizer.synthesize(reply))
        self.session_store.touch(session_id)
        await emit(AudioResponseEvent(audio=base64.b64encode(speech).decode("ascii")))

    async def _stream_reply(self, session: Session, emit: Emitter) -> Optional[str]:
        """Forward each completion fragment as it arrives and return the joined reply.

        Returns None when the session was torn down mid-stream; the stream is
        closed so no further fragments are generated.
        """
        stream = self.completer.stream_reply(session.history())
        fragments = []
        try:
            while True:
                fragment = await self._bounded("completion", _next_fragment(stream))
                if fragment is _END_OF_STREAM:
                    break
                if self.session_store.get_session(session.session_id) is None:
                    logger.info(
                        "[TURN] Session %s closed while streaming; dropping reply",
                        session.session_id,
                    )
                    return None
                self.session_store.touch(session.session_id)
                fragments.append(fragment)
                await emit(ResponseChunkEvent(text=fragment))
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
        return "".join(fragments)

    async def _bounded(self, stage: str, awaitable):
        if self.provider_timeout is None:
            return await awaitable
        try:
            return await asyncio.wait_for(awaitable, self.provider_timeout)
        except asyncio.TimeoutError as e:
            raise ProviderFailureException(
                stage, f"{stage} service timed out after {self.provider_timeout:g}s"
            ) from e
