"""Session storage for the voice relay.

This is an in-memory dict of session_id -> Session, owned by a single
event loop. Every connection gets exactly one Session for its lifetime.

The design is intentionally simple:
- In-memory access is the only source of truth during a run.
- Idle sessions are removed by a periodic sweep (advisory cleanup; the
  connection teardown path is what normally deletes a session).
- If a data_dir is configured, a session's transcript is written to
  `data_dir/sessions/<session_id>.json` when it is deleted or swept,
  so conversations can be inspected after the fact.
"""

import asyncio
import json
import logging
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional
from uuid import uuid4

from ..models.session_models import Session, SessionMode, TurnRole


logger = logging.getLogger(__name__)


class SessionStore:
    """In-memory session store with idle sweep and optional transcript archive.

    Parameters
    ----------
    system_prompt:
        Preamble stored as the first TurnRecord of every new session.
    data_dir:
        Base directory for archived transcripts. If not provided,
        nothing is written to disk.
    clock:
        Monotonic time source; injectable for tests.
    is_busy:
        Predicate telling whether a session has a turn in flight. Busy
        sessions are never swept, however long the turn runs.
    """

    def __init__(
        self,
        system_prompt: str,
        data_dir: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
        is_busy: Optional[Callable[[str], bool]] = None,
    ) -> None:
        self._sessions: Dict[str, Session] = {}
        self._system_prompt = system_prompt
        self._data_dir: Optional[Path] = Path(data_dir) if data_dir else None
        self._clock = clock
        self.is_busy = is_busy

        if self._data_dir is not None:
            self._sessions_dir.mkdir(parents=True, exist_ok=True)

    @property
    def _sessions_dir(self) -> Path:
        return self._data_dir / "sessions"

    def __len__(self) -> int:
        return len(self._sessions)

    def create_session(self, mode: SessionMode = SessionMode.CONTINUOUS) -> Session:
        """Create a new session and return it.

        A newly created session starts with:
        - a random UUID as `session_id`
        - the system preamble as its only turn
        - the call inactive
        - last_activity set to now
        """
        session = Session(
            session_id=str(uuid4()),
            mode=mode,
            last_activity=self._clock(),
        )
        session.append_turn(TurnRole.SYSTEM, self._system_prompt)
        self._sessions[session.session_id] = session
        logger.info("[STORE] Session created: %s (%s)", session.session_id, mode.value)
        return session

    def get_session(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def touch(self, session_id: str) -> None:
        """Refresh last_activity; unknown ids are ignored."""
        session = self._sessions.get(session_id)
        if session is not None:
            session.last_activity = self._clock()

    def delete_session(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        self._archive_session(session)
        logger.info("[STORE] Session deleted: %s", session_id)
        return True

    def sweep_expired(self, max_idle_seconds: float) -> List[str]:
        """Delete every session idle for longer than max_idle_seconds.

        Sessions reported busy by `is_busy` are skipped.
        """
        now = self._clock()
        expired = [
            session_id
            for session_id, session in self._sessions.items()
            if now - session.last_activity > max_idle_seconds
            and not (self.is_busy is not None and self.is_busy(session_id))
        ]
        for session_id in expired:
            self.delete_session(session_id)
            logger.info("[STORE] Cleaned up inactive session: %s", session_id)
        return expired

    async def run_sweeper(self, interval_seconds: float, max_idle_seconds: float) -> None:
        """Sweep forever, once per interval, until cancelled."""
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                self.sweep_expired(max_idle_seconds)
            except Exception:
                logger.exception("[STORE] Session sweep failed")

    def _archive_session(self, session: Session) -> None:
        """Write the transcript to disk if a data_dir is configured.

        If no data_dir was provided, this is a no-op.
        """
        if self._data_dir is None:
            return

        sessions_dir = self._sessions_dir
        sessions_dir.mkdir(parents=True, exist_ok=True)
        path = sessions_dir / f"{session.session_id}.json"

        try:
            with path.open("w", encoding="utf-8") as f:
                json.dump(session.model_dump(mode="json"), f, ensure_ascii=False, indent=2)
        except OSError:
            # Archiving is best effort; teardown must still succeed.
            logger.exception("[STORE] Failed to archive session %s", session.session_id)
