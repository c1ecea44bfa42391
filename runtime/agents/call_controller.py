"""CallController: idle/active call state for continuous sessions.

While a session's call is idle, continuous audio is dropped by the
UtteranceAccumulator. Starting a call clears any leftover buffer; ending it
cancels the silence timer and discards audio that was never flushed. An
in-flight turn is never waited for or interrupted here.
"""

import logging
from typing import Optional

from exceptions.exceptions import InvalidSessionException

from ..models.api_models import CallStatusEvent
from ..models.session_models import Session
from ..store.session_store import SessionStore
from .utterance_accumulator import UtteranceAccumulator


logger = logging.getLogger(__name__)


class CallController:
    def __init__(self, session_store: SessionStore, accumulator: UtteranceAccumulator) -> None:
        self.session_store = session_store
        self.accumulator = accumulator

    def start_call(self, session_id: str) -> CallStatusEvent:
        session = self._require_session(session_id)
        self.accumulator.reset(session_id)
        session.call_active = True
        self.session_store.touch(session_id)
        logger.info("[CALL] Continuous call started for session_id=%s", session_id)
        return CallStatusEvent(status="active", message="Call started. Listening...")

    def end_call(self, session_id: str) -> Optional[CallStatusEvent]:
        """Return the acknowledgement, or None if the call was already idle."""
        session = self._require_session(session_id)
        self.session_store.touch(session_id)
        if not session.call_active:
            return None
        self.hang_up(session_id)
        logger.info("[CALL] Continuous call ended for session_id=%s", session_id)
        return CallStatusEvent(status="ended", message="Call ended")

    def hang_up(self, session_id: str) -> None:
        """Go idle without acknowledging (connection is closing)."""
        session = self.session_store.get_session(session_id)
        if session is not None:
            session.call_active = False
        self.accumulator.reset(session_id)

    def _require_session(self, session_id: str) -> Session:
        session = self.session_store.get_session(session_id)
        if session is None:
            raise InvalidSessionException(session_id)
        return session
