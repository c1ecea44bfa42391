#!/usr/bin/env python3
"""
Voice Relay CLI

Commands:

1) serve
   - Run the WebSocket relay under uvicorn:
       ws://<host>:<port>/ws             (one-shot recordings)
       ws://<host>:<port>/continuous-ws  (continuous calls)

2) turn
   - Run a single voice turn against the configured providers for an
     audio file and print every event the browser would receive.
     Handy for checking credentials and models without a browser.
"""

from __future__ import annotations

import argparse
import asyncio
import base64
import logging
import sys
from pathlib import Path
from typing import Optional

# Ensure project root is on sys.path when running as a script
ROOT_DIR = Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from configs.settings import settings


# ---------------------------------------------------------------------------
# serve
# ---------------------------------------------------------------------------


def cmd_serve(host: str, port: int, reload: bool) -> None:
    """Start the FastAPI app with uvicorn."""
    import uvicorn

    print(f"[Voice-Relay] Serving on http://{host}:{port}")
    print(f"[Voice-Relay]   one-shot:   ws://{host}:{port}/ws")
    print(f"[Voice-Relay]   continuous: ws://{host}:{port}/continuous-ws")
    uvicorn.run(
        "runtime.api.server:app",
        host=host,
        port=port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


# ---------------------------------------------------------------------------
# turn
# ---------------------------------------------------------------------------


async def _run_turn(audio: bytes, continuous: bool, save_audio: Optional[str]) -> int:
    # Lazy imports so `serve --help` works without the provider stack.
    from core.api.openai_client import (
        OpenAICompletionService,
        OpenAISpeechService,
        OpenAITranscriptionService,
    )
    from runtime.agents.turn_processor import TurnProcessor
    from runtime.models.api_models import ServerEvent
    from runtime.models.session_models import SessionMode
    from runtime.store.session_store import SessionStore

    mode = SessionMode.CONTINUOUS if continuous else SessionMode.ONE_SHOT
    store = SessionStore(system_prompt=settings.system_prompt)
    session = store.create_session(mode)
    processor = TurnProcessor(
        session_store=store,
        transcriber=OpenAITranscriptionService(),
        completer=OpenAICompletionService(),
        synthesizer=OpenAISpeechService(),
        min_transcript_chars=settings.min_transcript_chars,
        provider_timeout=settings.provider_timeout_seconds,
    )

    errors = 0

    async def emit(event: ServerEvent) -> None:
        nonlocal errors
        if event.type == "response_chunk":
            print(event.text, end="", flush=True)
            return
        if event.type == "audio_response":
            print()
            payload = base64.b64decode(event.audio)
            if save_audio:
                Path(save_audio).write_bytes(payload)
                print(f"[Voice-Relay] ✓ {len(payload)} bytes of speech → {save_audio}")
            else:
                print(f"[Voice-Relay] ✓ {len(payload)} bytes of speech (use --save-audio to keep it)")
            return
        if event.type == "error":
            errors += 1
        print(f"[Voice-Relay] {event.type}: {event.to_wire()}")

    await processor.run(session.session_id, audio, mode, emit)
    return 1 if errors else 0


def cmd_turn(audio_path: str, continuous: bool, save_audio: Optional[str]) -> int:
    path = Path(audio_path)
    if not path.is_file():
        raise FileNotFoundError(f"Audio file not found: {audio_path}")

    print(f"[Voice-Relay] Running one {'continuous' if continuous else 'one-shot'} turn for {path}")
    return asyncio.run(_run_turn(path.read_bytes(), continuous, save_audio))


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Voice Relay CLI")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # serve
    p_serve = subparsers.add_parser("serve", help="Run the WebSocket relay server")
    p_serve.add_argument(
        "--host",
        default=settings.host,
        help="Bind address (default: VOICE_RELAY_HOST or 0.0.0.0)",
    )
    p_serve.add_argument(
        "--port",
        type=int,
        default=settings.port,
        help="Port (default: VOICE_RELAY_PORT or 3000)",
    )
    p_serve.add_argument("--reload", action="store_true", help="Reload on code changes")

    # turn
    p_turn = subparsers.add_parser(
        "turn", help="Transcribe, answer and speak a single audio file"
    )
    p_turn.add_argument("audio", help="Path to the recorded utterance")
    p_turn.add_argument(
        "--continuous",
        action="store_true",
        help="Apply continuous-mode rules (ignore near-empty transcripts)",
    )
    p_turn.add_argument("--save-audio", help="Write the synthesized reply to this path")

    return parser


def main(argv: Optional[list] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    )

    if args.command == "serve":
        cmd_serve(host=args.host, port=args.port, reload=args.reload)
        return 0
    if args.command == "turn":
        return cmd_turn(
            audio_path=args.audio,
            continuous=args.continuous,
            save_audio=args.save_audio,
        )
    parser.error(f"Unknown command: {args.command}")
    return 2


if __name__ == "__main__":
    sys.exit(main())
