from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv


load_dotenv()


DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful, friendly assistant having a real-time voice "
    "conversation. Be concise and natural in your responses, as if you were "
    "speaking, not writing. Respond in a conversational tone."
)


class Settings:
    """
    Central configuration for the voice relay.

    Values are loaded once from environment variables (with sensible defaults)
    and then exposed via typed properties.
    """

    def __init__(self) -> None:
        # OpenAI / provider configuration
        self._openai_api_key = os.getenv("OPENAI_API_KEY")
        self._openai_base_url = os.getenv("OPENAI_BASE_URL") or None
        self._transcription_model = os.getenv(
            "VOICE_RELAY_TRANSCRIPTION_MODEL", "whisper-1"
        )
        self._completion_model = os.getenv("VOICE_RELAY_COMPLETION_MODEL", "gpt-4o")
        self._speech_model = os.getenv("VOICE_RELAY_SPEECH_MODEL", "tts-1")
        self._speech_voice = os.getenv("VOICE_RELAY_SPEECH_VOICE", "nova")
        self._speech_speed = float(os.getenv("VOICE_RELAY_SPEECH_SPEED", "1.1"))
        self._audio_filename = os.getenv("VOICE_RELAY_AUDIO_FILENAME", "audio.wav")
        self._provider_timeout = float(os.getenv("VOICE_RELAY_PROVIDER_TIMEOUT", "60"))
        self._system_prompt = os.getenv("VOICE_RELAY_SYSTEM_PROMPT", DEFAULT_SYSTEM_PROMPT)

        # Turn-taking
        self._silence_ms = int(os.getenv("VOICE_RELAY_SILENCE_MS", "1000"))
        self._min_transcript_chars = int(
            os.getenv("VOICE_RELAY_MIN_TRANSCRIPT_CHARS", "2")
        )

        # Session lifecycle
        self._session_idle_seconds = float(
            os.getenv("VOICE_RELAY_SESSION_IDLE_SECONDS", "3600")
        )
        self._sweep_interval_seconds = float(
            os.getenv("VOICE_RELAY_SWEEP_INTERVAL_SECONDS", "3600")
        )
        data_dir = os.getenv("VOICE_RELAY_DATA_DIR")
        self._data_dir: Optional[Path] = Path(data_dir) if data_dir else None

        # Server
        self._host = os.getenv("VOICE_RELAY_HOST", "0.0.0.0")
        self._port = int(os.getenv("VOICE_RELAY_PORT", "3000"))
        self._log_level = os.getenv("VOICE_RELAY_LOG_LEVEL", "INFO").upper()

    # ------------------------------------------------------------------
    # OpenAI / provider settings
    # ------------------------------------------------------------------

    @property
    def openai_api_key(self) -> str:
        if not self._openai_api_key:
            raise RuntimeError(
                "OPENAI_API_KEY is not set. Please export it in your environment "
                "or define it in a .env file."
            )
        return self._openai_api_key

    @property
    def openai_base_url(self) -> Optional[str]:
        return self._openai_base_url

    @property
    def transcription_model(self) -> str:
        return self._transcription_model

    @property
    def completion_model(self) -> str:
        return self._completion_model

    @property
    def speech_model(self) -> str:
        return self._speech_model

    @property
    def speech_voice(self) -> str:
        return self._speech_voice

    @property
    def speech_speed(self) -> float:
        return self._speech_speed

    @property
    def audio_filename(self) -> str:
        """Filename sent with uploads; the transcription API sniffs the format from it."""
        return self._audio_filename

    @property
    def provider_timeout_seconds(self) -> float:
        return self._provider_timeout

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    # ------------------------------------------------------------------
    # Turn-taking
    # ------------------------------------------------------------------

    @property
    def silence_seconds(self) -> float:
        return self._silence_ms / 1000.0

    @property
    def min_transcript_chars(self) -> int:
        return self._min_transcript_chars

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    @property
    def session_idle_seconds(self) -> float:
        return self._session_idle_seconds

    @property
    def sweep_interval_seconds(self) -> float:
        return self._sweep_interval_seconds

    @property
    def data_dir(self) -> Optional[Path]:
        return self._data_dir

    # ------------------------------------------------------------------
    # Server
    # ------------------------------------------------------------------

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def log_level(self) -> str:
        return self._log_level


settings = Settings()
