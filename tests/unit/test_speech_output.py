"""
Unit Tests for Speech Output

Tests completion driven by backend events, stop semantics, capability
fallback, voice selection and the pyttsx3 adapter.
"""

import asyncio
import os
import sys
import threading
from types import SimpleNamespace

import pytest

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "language_peer", "src"))

from conftest import FakeSpeechBackend
from language_peer.personalities import FRIENDLY_TUTOR, PRONUNCIATION_COACH, VoiceParams
from language_peer import speech_output
from language_peer.errors import SpeechBackendError
from language_peer.speech_output import Pyttsx3SpeechBackend, SpeechOutputDriver, Voice, select_voice


class TestSpeechOutputDriver:
    """Test suite for SpeechOutputDriver."""

    @pytest.mark.asyncio
    async def test_speak_resolves_on_end_event(self):
        backend = FakeSpeechBackend(mode="finish")
        driver = SpeechOutputDriver(backend)

        await driver.speak("Hello there!", FRIENDLY_TUTOR)

        assert backend.started[0]["text"] == "Hello there!"
        assert backend.started[0]["voice"].name == "Joanna"
        assert backend.started[0]["params"] == FRIENDLY_TUTOR.voice_params
        assert not driver.is_speaking

    @pytest.mark.asyncio
    async def test_speak_waits_for_backend(self):
        backend = FakeSpeechBackend(mode="hold")
        driver = SpeechOutputDriver(backend)

        task = asyncio.create_task(driver.speak("A long sentence", FRIENDLY_TUTOR))
        await asyncio.sleep(0.01)
        assert driver.is_speaking
        assert not task.done()

        backend.finish()
        await asyncio.wait_for(task, timeout=1.0)
        assert not driver.is_speaking

    @pytest.mark.asyncio
    async def test_error_event_resolves(self):
        driver = SpeechOutputDriver(FakeSpeechBackend(mode="error"))
        await asyncio.wait_for(driver.speak("Hello", FRIENDLY_TUTOR), timeout=1.0)
        assert not driver.is_speaking

    @pytest.mark.asyncio
    async def test_stop_resolves_pending_speak(self):
        backend = FakeSpeechBackend(mode="hold")
        driver = SpeechOutputDriver(backend)

        task = asyncio.create_task(driver.speak("Interrupt me", FRIENDLY_TUTOR))
        await asyncio.sleep(0.01)
        driver.stop()
        await asyncio.wait_for(task, timeout=1.0)

        assert backend.cancelled == 1
        assert not driver.is_speaking

        # A late end event for the stopped utterance is ignored
        backend.finish()
        await asyncio.sleep(0)
        assert not driver.is_speaking

    @pytest.mark.asyncio
    async def test_new_speak_cancels_previous(self):
        backend = FakeSpeechBackend(mode="hold")
        driver = SpeechOutputDriver(backend)

        first = asyncio.create_task(driver.speak("first", FRIENDLY_TUTOR))
        await asyncio.sleep(0.01)
        second = asyncio.create_task(driver.speak("second", FRIENDLY_TUTOR))
        await asyncio.sleep(0.01)

        assert first.done()
        assert backend.cancelled == 1
        backend.finish()
        await asyncio.wait_for(second, timeout=1.0)

    def test_stop_when_idle_is_noop(self):
        driver = SpeechOutputDriver(FakeSpeechBackend())
        driver.stop()
        driver.stop()
        assert not driver.is_speaking

    @pytest.mark.asyncio
    async def test_unsupported_resolves_immediately(self):
        backend = FakeSpeechBackend(mode="unsupported")
        driver = SpeechOutputDriver(backend)

        await asyncio.wait_for(driver.speak("Hello", FRIENDLY_TUTOR), timeout=1.0)
        await asyncio.wait_for(driver.speak("Again", FRIENDLY_TUTOR), timeout=1.0)

        assert backend.started == []
        assert not driver.is_supported()

    @pytest.mark.asyncio
    async def test_no_backend(self):
        driver = SpeechOutputDriver(None)
        await asyncio.wait_for(driver.speak("Hello", FRIENDLY_TUTOR), timeout=1.0)

    @pytest.mark.asyncio
    async def test_blank_text_not_spoken(self):
        backend = FakeSpeechBackend()
        await SpeechOutputDriver(backend).speak("   ", FRIENDLY_TUTOR)
        assert backend.started == []

    @pytest.mark.asyncio
    async def test_backend_exception_resolves(self):
        backend = FakeSpeechBackend(mode="raise")
        driver = SpeechOutputDriver(backend)

        await asyncio.wait_for(driver.speak("Hello", FRIENDLY_TUTOR), timeout=1.0)
        assert not driver.is_speaking

        backend.mode = "finish"
        await asyncio.wait_for(driver.speak("Hello again", FRIENDLY_TUTOR), timeout=1.0)
        assert len(backend.started) == 2
        assert not driver.is_speaking


class TestVoiceSelection:

    @pytest.fixture
    def voices(self):
        return [
            Voice(id="1", name="Microsoft Zira Desktop", languages=("en-US",)),
            Voice(id="2", name="Paulina", languages=("es-MX",)),
            Voice(id="3", name="Lupe", languages=("es-US",)),
            Voice(id="4", name="Daniel", languages=("en-GB",)),
        ]

    def test_preference_order(self, voices):
        params = VoiceParams(voice_preference_list=("Joanna", "Zira"))
        assert select_voice(voices, params, "en-US").id == "1"

    def test_preference_for_coach(self, voices):
        assert select_voice(voices, PRONUNCIATION_COACH.voice_params, "es-US").name == "Lupe"

    def test_language_fallback_exact(self, voices):
        assert select_voice(voices, VoiceParams(), "en_GB").id == "4"

    def test_language_fallback_primary_subtag(self, voices):
        assert select_voice(voices, VoiceParams(), "es-ES").id == "2"

    def test_platform_default(self, voices):
        assert select_voice(voices, VoiceParams(), "ja-JP") is None


class FakeEngine:
    """
    In-process pyttsx3 engine.

    mode: "finish" plays through, "hold" plays until stop(),
    "error" fails inside the run loop.
    """

    def __init__(self, mode: str = "finish"):
        self.mode = mode
        self.callbacks = {}
        self.properties = {"voices": []}
        self.said = []
        self.stopped = False
        self._released = threading.Event()

    def connect(self, topic, callback):
        self.callbacks[topic] = callback

    def setProperty(self, name, value):
        self.properties[name] = value

    def getProperty(self, name):
        return self.properties.get(name)

    def say(self, text, name=None):
        self.said.append((text, name))

    def runAndWait(self):
        _, name = self.said[-1]
        if self.mode == "error":
            raise OSError("audio device busy")
        self.callbacks["started-utterance"](name=name)
        if self.mode == "hold":
            self._released.wait(timeout=1)
            self.callbacks["finished-utterance"](name=name, completed=False)
            return
        self.callbacks["finished-utterance"](name=name, completed=True)

    def stop(self):
        self.stopped = True
        self._released.set()


class TestPyttsx3SpeechBackend:
    """Engine callbacks become speech events, delivered at most once."""

    @pytest.fixture
    def engine(self, monkeypatch):
        engine = FakeEngine()
        monkeypatch.setattr(speech_output.pyttsx3, "init", lambda driverName=None: engine)
        return engine

    @staticmethod
    def recorder():
        events = []
        started = threading.Event()

        def on_event(event, detail=None):
            events.append((event, detail))
            if event == "start":
                started.set()

        return events, started, on_event

    def test_forwards_engine_callbacks(self, engine):
        backend = Pyttsx3SpeechBackend()
        events, _, on_event = self.recorder()

        backend.start("Hello", Voice(id="zira", name="Zira"), VoiceParams(rate=1.2), on_event)
        backend._worker.join(timeout=1)

        assert events == [("start", None), ("end", None)]
        assert engine.said[0][0] == "Hello"
        assert engine.properties["rate"] == 210
        assert engine.properties["voice"] == "zira"

    def test_run_loop_failure_reported_as_error(self, engine):
        engine.mode = "error"
        backend = Pyttsx3SpeechBackend()
        events, _, on_event = self.recorder()

        backend.start("Hello", None, VoiceParams(), on_event)
        backend._worker.join(timeout=1)

        assert events == [("error", "audio device busy")]

    def test_cancel_drops_late_events(self, engine):
        engine.mode = "hold"
        backend = Pyttsx3SpeechBackend()
        events, started, on_event = self.recorder()

        backend.start("A long sentence", None, VoiceParams(), on_event)
        assert started.wait(timeout=1)
        backend.cancel()
        backend._worker.join(timeout=1)

        assert engine.stopped
        assert events == [("start", None)]

    def test_next_utterance_waits_for_cancelled_one(self, engine):
        engine.mode = "hold"
        backend = Pyttsx3SpeechBackend()
        _, started, first = self.recorder()

        backend.start("first", None, VoiceParams(), first)
        assert started.wait(timeout=1)
        backend.cancel()
        engine.mode = "finish"
        events, _, second = self.recorder()
        backend.start("second", None, VoiceParams(), second)
        backend._worker.join(timeout=1)

        assert events == [("start", None), ("end", None)]
        assert [text for text, _ in engine.said] == ["first", "second"]

    @pytest.mark.asyncio
    async def test_driver_resolves_from_worker_thread(self, engine):
        driver = SpeechOutputDriver(Pyttsx3SpeechBackend())

        await asyncio.wait_for(driver.speak("Hello there!", FRIENDLY_TUTOR), timeout=1.0)

        assert not driver.is_speaking
        assert engine.said[0][0] == "Hello there!"

    def test_list_voices(self, engine):
        engine.properties["voices"] = [
            SimpleNamespace(id="en-us", name="English (America)", languages=[b"\x05en-us"]),
            SimpleNamespace(id="HKEY_ZIRA", name="Microsoft Zira Desktop", languages=[]),
        ]
        voices = Pyttsx3SpeechBackend().list_voices()

        assert voices[0] == Voice(id="en-us", name="English (America)", languages=("en-us",))
        assert voices[1].languages == ()

    def test_init_failure_is_unsupported(self, monkeypatch):
        def broken(driverName=None):
            raise RuntimeError("eSpeak not installed")

        monkeypatch.setattr(speech_output.pyttsx3, "init", broken)
        backend = Pyttsx3SpeechBackend()

        assert not backend.is_supported()
        assert backend.list_voices() == []
        with pytest.raises(SpeechBackendError):
            backend.start("Hello", None, VoiceParams(), lambda event, detail=None: None)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
