import asyncio
import threading
import time

import pytest
from fastapi.testclient import TestClient

from exceptions.exceptions import ProviderFailureException
from runtime.api.server import create_app
from runtime.store.session_store import SessionStore

from conftest import SYSTEM_PROMPT, FakeCompleter, FakeSynthesizer, FakeTranscriber, b64


SILENCE = 0.3


class HeldTranscriber(FakeTranscriber):
    """Blocks every transcription until `release` is set from the test thread."""

    def __init__(self, *texts):
        super().__init__(*texts)
        self.release = threading.Event()

    async def transcribe(self, audio: bytes) -> str:
        while not self.release.is_set():
            await asyncio.sleep(0.01)
        return await super().transcribe(audio)


def build_app(transcriber, session_store, completer=None):
    return create_app(
        transcriber=transcriber,
        completer=completer or FakeCompleter(["Not", " much", "."]),
        synthesizer=FakeSynthesizer(b"speech"),
        session_store=session_store,
        silence_seconds=SILENCE,
        provider_timeout=5,
    )


@pytest.fixture
def transcriber():
    return FakeTranscriber("What's up?")


@pytest.fixture
def completer():
    return FakeCompleter(["Not", " much", "."])


@pytest.fixture
def client(store, transcriber, completer):
    app = build_app(transcriber, store, completer)
    with TestClient(app) as client:
        yield client


def receive_turn(ws):
    """Collect events up to and including the closing `status: ready`."""
    events = []
    while True:
        event = ws.receive_json()
        events.append(event)
        if event == {"type": "status", "status": "ready"}:
            return events


def wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def test_session_event_on_connect(client, store):
    with client.websocket_connect("/continuous-ws") as ws:
        event = ws.receive_json()
        assert event["type"] == "session"
        assert event["isContinuous"] is True
        assert store.get_session(event["sessionId"]) is not None

    with client.websocket_connect("/ws") as ws:
        assert ws.receive_json()["isContinuous"] is False


def test_continuous_call_scenario(client, transcriber, completer, store):
    with client.websocket_connect("/continuous-ws") as ws:
        session_id = ws.receive_json()["sessionId"]

        ws.send_json({"type": "start_call", "sessionId": session_id})
        assert ws.receive_json() == {
            "type": "call_status",
            "status": "active",
            "message": "Call started. Listening...",
        }

        ws.send_json({"type": "continuous_audio", "audio": b64(b"first-")})
        time.sleep(SILENCE / 3)
        ws.send_json({"type": "continuous_audio", "audio": b64(b"second")})

        events = receive_turn(ws)

    assert transcriber.calls == [b"first-second"]
    types = [e["type"] for e in events]
    assert types == [
        "status",
        "transcription",
        "response_chunk",
        "response_chunk",
        "response_chunk",
        "audio_response",
        "status",
    ]
    assert events[0] == {"type": "status", "status": "processing"}
    assert events[1] == {"type": "transcription", "text": "What's up?"}
    assert "".join(e["text"] for e in events if e["type"] == "response_chunk") == "Not much."
    assert events[5] == {"type": "audio_response", "audio": b64(b"speech")}
    assert len(completer.histories) == 1


def test_one_shot_audio(client, transcriber):
    transcriber.texts = ["k"]
    with client.websocket_connect("/ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "audio", "audio": b64(b"whole-clip")})
        events = receive_turn(ws)

    assert transcriber.calls == [b"whole-clip"]
    assert events[1] == {"type": "transcription", "text": "k"}
    assert events[-2]["type"] == "audio_response"


def test_empty_transcript_in_call(client, transcriber, completer, store):
    transcriber.texts = [" "]
    with client.websocket_connect("/continuous-ws") as ws:
        session_id = ws.receive_json()["sessionId"]
        ws.send_json({"type": "start_call"})
        ws.receive_json()
        ws.send_json({"type": "continuous_audio", "audio": b64(b"hiss")})
        events = receive_turn(ws)
        history = list(store.get_session(session_id).turns)

    assert events == [
        {"type": "status", "status": "processing"},
        {"type": "status", "status": "ready"},
    ]
    assert completer.histories == []
    assert len(history) == 1


def test_completion_failure_then_recovery(client, completer):
    completer.error = ProviderFailureException("completion", "rate limited")
    with client.websocket_connect("/continuous-ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "start_call"})
        ws.receive_json()

        ws.send_json({"type": "continuous_audio", "audio": b64(b"one")})
        failed = receive_turn(ws)

        completer.error = None
        ws.send_json({"type": "continuous_audio", "audio": b64(b"two")})
        recovered = receive_turn(ws)

    assert failed[-2:] == [
        {"type": "error", "message": "rate limited"},
        {"type": "status", "status": "ready"},
    ]
    assert recovered[-2]["type"] == "audio_response"


def test_end_call_twice_acknowledged_once(client):
    with client.websocket_connect("/continuous-ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "start_call"})
        ws.receive_json()

        ws.send_json({"type": "end_call"})
        assert ws.receive_json()["status"] == "ended"
        ws.send_json({"type": "end_call"})

        # The next frame answers this start_call, so the second end_call sent nothing.
        ws.send_json({"type": "start_call"})
        assert ws.receive_json()["status"] == "active"


def test_end_call_cancels_pending_utterance(client, transcriber):
    with client.websocket_connect("/continuous-ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "start_call"})
        ws.receive_json()
        ws.send_json({"type": "continuous_audio", "audio": b64(b"cut-off")})
        ws.send_json({"type": "end_call"})
        assert ws.receive_json()["status"] == "ended"
        time.sleep(SILENCE * 2)

        ws.send_json({"type": "start_call"})
        assert ws.receive_json()["type"] == "call_status"

    assert transcriber.calls == []


def test_audio_ignored_before_call_starts(client, transcriber):
    with client.websocket_connect("/continuous-ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "continuous_audio", "audio": b64(b"early")})
        time.sleep(SILENCE * 2)
        ws.send_json({"type": "start_call"})
        assert ws.receive_json()["type"] == "call_status"

    assert transcriber.calls == []


@pytest.mark.parametrize(
    "frame",
    [
        "not json",
        "[1, 2]",
        '{"audio": "AAAA"}',
        '{"type": "audio"}',
        '{"type": "continuous_audio", "audio": "***"}',
    ],
)
def test_malformed_frames_report_error_and_keep_connection(client, frame):
    with client.websocket_connect("/continuous-ws") as ws:
        ws.receive_json()
        ws.send_text(frame)
        event = ws.receive_json()
        assert event["type"] == "error"
        assert event["message"].startswith("Malformed message")

        ws.send_json({"type": "start_call"})
        assert ws.receive_json()["type"] == "call_status"


def test_unknown_type_is_ignored(client):
    with client.websocket_connect("/continuous-ws") as ws:
        ws.receive_json()
        ws.send_json({"type": "ping"})
        ws.send_json({"type": "start_call"})
        assert ws.receive_json()["type"] == "call_status"


def test_end_tears_down_session(client, store):
    with client.websocket_connect("/ws") as ws:
        session_id = ws.receive_json()["sessionId"]
        ws.send_json({"type": "end"})
        ws.send_json({"type": "audio", "audio": b64(b"too late")})
        assert ws.receive_json() == {"type": "error", "message": "Invalid session ID"}
        assert store.get_session(session_id) is None


def test_disconnect_removes_session(client, store):
    with client.websocket_connect("/continuous-ws") as ws:
        session_id = ws.receive_json()["sessionId"]
        assert store.get_session(session_id) is not None

    assert wait_until(lambda: store.get_session(session_id) is None)


def test_healthz(client):
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "sessions": 0}


def test_second_one_shot_clip_rejected_while_processing(store):
    transcriber = HeldTranscriber("hello")
    with TestClient(build_app(transcriber, store)) as client:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_json({"type": "audio", "audio": b64(b"first")})
            assert ws.receive_json() == {"type": "status", "status": "processing"}

            ws.send_json({"type": "audio", "audio": b64(b"second")})
            assert ws.receive_json() == {
                "type": "error",
                "message": "Still processing the previous message",
            }

            transcriber.release.set()
            events = receive_turn(ws)

    assert transcriber.calls == [b"first"]
    assert events[0] == {"type": "transcription", "text": "hello"}
    assert events[-2] == {"type": "audio_response", "audio": b64(b"speech")}


def test_sweep_spares_session_with_turn_in_flight(store, clock):
    transcriber = HeldTranscriber("hello")
    with TestClient(build_app(transcriber, store)) as client:
        with client.websocket_connect("/ws") as ws:
            session_id = ws.receive_json()["sessionId"]
            ws.send_json({"type": "audio", "audio": b64(b"clip")})
            assert ws.receive_json() == {"type": "status", "status": "processing"}

            clock.advance(5000)
            assert store.sweep_expired(max_idle_seconds=3600) == []

            transcriber.release.set()
            events = receive_turn(ws)
            assert store.get_session(session_id) is not None

    assert events[-2]["type"] == "audio_response"


def test_apps_keep_their_own_providers(clock):
    first = FakeTranscriber("from first")
    second = FakeTranscriber("from second")
    first_store = SessionStore(system_prompt=SYSTEM_PROMPT, clock=clock)
    second_store = SessionStore(system_prompt=SYSTEM_PROMPT, clock=clock)
    first_app = build_app(first, first_store)
    build_app(second, second_store)

    with TestClient(first_app) as client:
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            assert len(first_store) == 1
            assert len(second_store) == 0
            ws.send_json({"type": "audio", "audio": b64(b"clip")})
            events = receive_turn(ws)

    assert first.calls == [b"clip"]
    assert second.calls == []
    assert events[1] == {"type": "transcription", "text": "from first"}
