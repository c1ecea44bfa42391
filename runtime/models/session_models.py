"""
Session-related models for the voice relay runtime.

These describe:
- a per-connection Session object
- TurnRecord entries (system / user / assistant)
- SessionMode enum (ONE_SHOT, CONTINUOUS)
"""

from enum import Enum
from typing import List
from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field


class SessionMode(str, Enum):
    ONE_SHOT = "one_shot"
    CONTINUOUS = "continuous"


class TurnRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class TurnRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: TurnRole
    text: str


class Session(BaseModel):
    session_id: str
    mode: SessionMode = SessionMode.CONTINUOUS
    turns: List[TurnRecord] = Field(default_factory=list)
    call_active: bool = False
    last_activity: float = 0.0  # monotonic seconds, see SessionStore clock
    created_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def append_turn(self, role: TurnRole, text: str) -> TurnRecord:
        record = TurnRecord(role=role, text=text)
        self.turns.append(record)
        return record

    def history(self) -> List[dict]:
        """Chat-completions shaped copy of the turn list."""
        return [{"role": t.role.value, "content": t.text} for t in self.turns]
