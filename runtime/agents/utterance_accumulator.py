"""UtteranceAccumulator: silence-delimited batching of microphone audio.

The browser streams an open microphone as a series of arbitrarily sized
fragments. Each session gets one PendingUtterance:

    IDLE --append--> ACCUMULATING --silence timer--> FLUSHING --turn done--> IDLE
                        ^    |
                        +----+ append (timer restarted)

The swap of the buffer for an empty one happens synchronously inside the
timer callback, which is the only ACCUMULATING -> FLUSHING transition. All
callbacks run on the same event loop, so an `append` can never interleave
with the swap.

While a session is FLUSHING, new fragments are dropped rather than queued:
the microphone is logically paused until the assistant has answered.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Set

from exceptions.exceptions import InvalidSessionException

from ..models.session_models import SessionMode
from ..store.session_store import SessionStore
from .turn_processor import Emitter, TurnProcessor


logger = logging.getLogger(__name__)


class UtteranceState(str, Enum):
    IDLE = "idle"
    ACCUMULATING = "accumulating"
    FLUSHING = "flushing"


@dataclass
class PendingUtterance:
    """Per-session buffer, silence timer and single-flight flag."""

    emit: Emitter
    buffer: bytearray = field(default_factory=bytearray)
    timer: Optional[asyncio.TimerHandle] = None
    state: UtteranceState = UtteranceState.IDLE

    @property
    def processing(self) -> bool:
        return self.state is UtteranceState.FLUSHING

    def cancel_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None

    def clear(self) -> None:
        self.cancel_timer()
        self.buffer = bytearray()
        if not self.processing:
            self.state = UtteranceState.IDLE


class UtteranceAccumulator:
    """Turns a stream of audio fragments into single-flight voice turns.

    Parameters
    ----------
    session_store:
        Used to check whether a session exists and has an active call.
    turn_processor:
        Runs the transcription/completion/speech pipeline for each flush.
    silence_seconds:
        Quiet period after the last fragment before the utterance is flushed.
    """

    def __init__(
        self,
        session_store: SessionStore,
        turn_processor: TurnProcessor,
        silence_seconds: float = 1.0,
    ) -> None:
        self.session_store = session_store
        self.turn_processor = turn_processor
        self.silence_seconds = silence_seconds
        self._pending: Dict[str, PendingUtterance] = {}
        # Strong references so running turns are not garbage collected.
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, session_id: str, emit: Emitter) -> None:
        """Attach a session and the callable its turn events are sent through."""
        self._pending[session_id] = PendingUtterance(emit=emit)

    def discard(self, session_id: str) -> None:
        """Forget a session: cancel its timer and drop unprocessed audio.

        A turn already in flight keeps running to completion.
        """
        pending = self._pending.pop(session_id, None)
        if pending is not None:
            pending.clear()

    def reset(self, session_id: str) -> None:
        """Cancel the silence timer and drop the buffered audio."""
        pending = self._pending.get(session_id)
        if pending is not None:
            pending.clear()

    # ------------------------------------------------------------------
    # Audio intake
    # ------------------------------------------------------------------

    def append(self, session_id: str, fragment: bytes) -> bool:
        """Add a fragment to the session's pending utterance.

        Returns False when the fragment was dropped because the call is not
        active or a turn is already being processed.
        """
        session = self.session_store.get_session(session_id)
        pending = self._pending.get(session_id)
        if session is None or pending is None:
            raise InvalidSessionException(session_id)

        if not session.call_active or pending.processing:
            return False

        self.session_store.touch(session_id)
        pending.buffer.extend(fragment)
        pending.state = UtteranceState.ACCUMULATING

        pending.cancel_timer()
        loop = asyncio.get_running_loop()
        pending.timer = loop.call_later(self.silence_seconds, self._on_silence, session_id)
        return True

    def dispatch(self, session_id: str, audio: bytes, mode: SessionMode = SessionMode.ONE_SHOT) -> bool:
        """Start a turn right away for a complete recording.

        Goes through the same single-flight gate as silence flushes and
        returns False if a turn is already running for the session.
        """
        if self.session_store.get_session(session_id) is None:
            raise InvalidSessionException(session_id)
        pending = self._pending.get(session_id)
        if pending is None:
            raise InvalidSessionException(session_id)
        if pending.processing:
            return False

        pending.clear()
        self.session_store.touch(session_id)
        self._start_turn(session_id, pending, audio, mode)
        return True

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def in_flight(self, session_id: str) -> bool:
        pending = self._pending.get(session_id)
        return pending is not None and pending.processing

    def pending_bytes(self, session_id: str) -> bytes:
        pending = self._pending.get(session_id)
        return bytes(pending.buffer) if pending is not None else b""

    def state(self, session_id: str) -> Optional[UtteranceState]:
        pending = self._pending.get(session_id)
        return pending.state if pending is not None else None

    async def drain(self) -> None:
        """Wait until every turn started so far has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _on_silence(self, session_id: str) -> None:
        pending = self._pending.get(session_id)
        if pending is None:
            return
        pending.timer = None

        if not pending.buffer or pending.processing:
            return

        session = self.session_store.get_session(session_id)
        if session is None or not session.call_active:
            pending.clear()
            return

        audio = bytes(pending.buffer)
        pending.buffer = bytearray()
        logger.info("[CALL] Silence detected for session_id=%s; flushing %d bytes", session_id, len(audio))
        self._start_turn(session_id, pending, audio, SessionMode.CONTINUOUS)

    def _start_turn(self, session_id: str, pending: PendingUtterance, audio: bytes, mode: SessionMode) -> None:
        pending.state = UtteranceState.FLUSHING
        task = asyncio.get_running_loop().create_task(
            self._run_turn(session_id, pending, audio, mode)
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_turn(self, session_id: str, pending: PendingUtterance, audio: bytes, mode: SessionMode) -> None:
        try:
            await self.turn_processor.run(session_id, audio, mode, pending.emit)
        except Exception:
            logger.exception("[CALL] Turn task crashed for session_id=%s", session_id)
        finally:
            pending.state = UtteranceState.IDLE
