"""Shared fakes and fixtures for the voice relay tests."""

import asyncio
import base64
from typing import List, Optional

import pytest

from runtime.store.session_store import SessionStore


SYSTEM_PROMPT = "You are a test assistant."


class FakeTranscriber:
    """Returns canned texts in order (the last one repeats) and records audio."""

    def __init__(self, *texts: str, delay: float = 0.0, gate: Optional[asyncio.Event] = None):
        self.texts = list(texts) or ["hello there"]
        self.delay = delay
        self.gate = gate
        self.calls: List[bytes] = []
        self.active = 0
        self.max_active = 0

    async def transcribe(self, audio: bytes) -> str:
        self.calls.append(audio)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.gate is not None:
                await self.gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.active -= 1
        index = min(len(self.calls), len(self.texts)) - 1
        return self.texts[index]


class FakeCompleter:
    """Streams fixed fragments; optionally fails after `fail_after` fragments."""

    def __init__(self, fragments=("Hi", " there", "!"), error: Optional[Exception] = None, fail_after: int = 0):
        self.fragments = list(fragments)
        self.error = error
        self.fail_after = fail_after
        self.histories: List[list] = []
        self.on_fragment = None
        self.closed = False

    async def stream_reply(self, history):
        self.histories.append(history)
        try:
            for i, fragment in enumerate(self.fragments):
                if self.error is not None and i >= self.fail_after:
                    raise self.error
                yield fragment
                if self.on_fragment is not None:
                    self.on_fragment(i)
            if self.error is not None and self.fail_after >= len(self.fragments):
                raise self.error
        finally:
            self.closed = True


class FakeSynthesizer:
    def __init__(self, payload: bytes = b"ID3-fake-mp3", error: Optional[Exception] = None):
        self.payload = payload
        self.error = error
        self.texts: List[str] = []

    async def synthesize(self, text: str) -> bytes:
        self.texts.append(text)
        if self.error is not None:
            raise self.error
        return self.payload


class EventRecorder:
    def __init__(self):
        self.events = []

    async def emit(self, event) -> None:
        self.events.append(event)

    def types(self) -> List[str]:
        return [event.type for event in self.events]

    def wire(self) -> List[dict]:
        return [event.to_wire() for event in self.events]


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return SessionStore(system_prompt=SYSTEM_PROMPT, clock=clock)


@pytest.fixture
def recorder():
    return EventRecorder()
