"""
WebSocket message models for the voice relay runtime API.

Inbound frames are parsed into ClientMessage; every outbound frame is one
of the *Event models below, serialized with `to_wire()`.
"""

from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ClientMessage(BaseModel):
    """
    Tagged envelope sent by the browser:

    type:
      - "audio"             (audio: base64, one-shot turn)
      - "continuous_audio"  (audio: base64, open microphone)
      - "start_call"
      - "end_call"
      - "end"

    Extra keys (the client echoes its sessionId) are ignored.
    """
    model_config = ConfigDict(extra="ignore")

    type: str
    audio: Optional[str] = None


class ServerEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True)


class SessionEvent(ServerEvent):
    type: Literal["session"] = "session"
    session_id: str = Field(alias="sessionId")
    is_continuous: bool = Field(default=False, alias="isContinuous")


class StatusEvent(ServerEvent):
    type: Literal["status"] = "status"
    status: Literal["processing", "ready"]


class CallStatusEvent(ServerEvent):
    type: Literal["call_status"] = "call_status"
    status: Literal["active", "ended"]
    message: Optional[str] = None


class TranscriptionEvent(ServerEvent):
    type: Literal["transcription"] = "transcription"
    text: str


class ResponseChunkEvent(ServerEvent):
    type: Literal["response_chunk"] = "response_chunk"
    text: str


class AudioResponseEvent(ServerEvent):
    type: Literal["audio_response"] = "audio_response"
    audio: str  # base64


class ErrorEvent(ServerEvent):
    type: Literal["error"] = "error"
    message: str
