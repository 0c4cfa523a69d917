"""
Shared test doubles for the conversation engine.

Remote service, speech facility and clock are replaced by in-process
fakes so tests never touch the network, audio devices or wall time.
"""

import asyncio
import os
import sys
from typing import List, Optional

import pytest

# Add package source to path
project_root = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
sys.path.insert(0, os.path.join(project_root, "language_peer", "src"))

from language_peer.connectivity import ConnectivityMonitor
from language_peer.errors import RemoteServiceError
from language_peer.remote_client import ReasoningClient, RemoteReasoningResponse
from language_peer.speech_output import EVENT_END, EVENT_ERROR, EVENT_START, SpeechBackend, Voice


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRemote(ReasoningClient):
    """
    Scriptable remote reasoning service.

    behavior: "ok" | "error" | "reset" | "hang" | "gated"
    """

    def __init__(self, behavior: str = "ok", text: str = "Remote reply", feedback: Optional[dict] = None):
        self.behavior = behavior
        self.text = text
        self.feedback = feedback if feedback is not None else {
            "grammarScore": 88, "fluencyScore": 91, "vocabularyScore": 84,
            "suggestions": ["Use more linking words"], "corrections": ["I went, not I goed"],
            "encouragement": "Nice work!",
        }
        self.requests = []
        self.gate = asyncio.Event()

    async def respond(self, request):
        self.requests.append(request)
        if self.behavior == "error":
            raise RemoteServiceError("HTTP error! status: 503")
        if self.behavior == "reset":
            raise ConnectionResetError("connection reset by peer")
        if self.behavior == "hang":
            await asyncio.sleep(3600)
        if self.behavior == "gated":
            await self.gate.wait()
        return RemoteReasoningResponse.model_validate({"text": self.text, "feedback": self.feedback})


class FakeSpeechBackend(SpeechBackend):
    """
    Speech facility driven by the test.

    mode: "finish" emits start+end immediately, "hold" waits for finish(),
    "error" emits an error event, "raise" fails inside start() the way
    platform engines do, "unsupported" reports no capability.
    """

    def __init__(self, mode: str = "finish", voices: Optional[List[Voice]] = None):
        self.mode = mode
        self.voices = voices if voices is not None else [
            Voice(id="v-joanna", name="Joanna", languages=("en-US",)),
            Voice(id="v-thomas", name="Thomas", languages=("fr-FR",)),
        ]
        self.started = []
        self.cancelled = 0
        self._on_event = None

    def is_supported(self) -> bool:
        return self.mode != "unsupported"

    def list_voices(self):
        return list(self.voices)

    def start(self, text, voice, params, on_event):
        self.started.append({"text": text, "voice": voice, "params": params})
        if self.mode == "raise":
            raise RuntimeError("run loop already started")
        self._on_event = on_event
        on_event(EVENT_START, None)
        if self.mode == "finish":
            on_event(EVENT_END, None)
        elif self.mode == "error":
            on_event(EVENT_ERROR, "synthesis-failed")

    def finish(self) -> None:
        if self._on_event is not None:
            self._on_event(EVENT_END, None)

    def cancel(self) -> None:
        self.cancelled += 1


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monitor(clock):
    return ConnectivityMonitor(cooldown_s=5.0, clock=clock, network_probe=None)
