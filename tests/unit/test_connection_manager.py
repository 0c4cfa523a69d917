"""
Unit Tests for ConnectionManager

Tests:
- Remote pass-through in connected mode
- Transparent fallback on error, transport failure and timeout
- Cool-down and offline skipping
- Malformed personality is the only error surfaced
"""

import dataclasses
import os
import random
import sys

import httpx
import pytest

# Add project root to path
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), "../.."))
sys.path.insert(0, os.path.join(project_root, "language_peer", "src"))

from conftest import FakeRemote
from language_peer.connection_manager import ConnectionManager
from language_peer.errors import InternalSynthesisError
from language_peer.models import MODE_CONNECTED, MODE_LOCAL, ROLE_AGENT, ROLE_USER, Turn
from language_peer.personalities import FRIENDLY_TUTOR, STRICT_TEACHER
from language_peer.response_synthesizer import ResponseSynthesizer


def make_manager(remote, monitor, timeout_s=0.05):
    return ConnectionManager(
        remote=remote,
        synthesizer=ResponseSynthesizer(random.Random(11)),
        monitor=monitor,
        timeout_s=timeout_s,
    )


class TestConnectedMode:
    """Remote replies are passed through unchanged."""

    @pytest.mark.asyncio
    async def test_remote_reply(self, monitor):
        remote = FakeRemote(text="Bonjour! Comment ça va?")
        manager = make_manager(remote, monitor)

        turn = await manager.send("Hello", [], FRIENDLY_TUTOR, session_id="session-1")

        assert turn.role == ROLE_AGENT
        assert turn.text == "Bonjour! Comment ça va?"
        assert turn.feedback.grammar_score == 88
        assert turn.feedback.corrections == ("I went, not I goed",)
        assert manager.mode == MODE_CONNECTED
        assert monitor.snapshot().remote_service_reachable

    @pytest.mark.asyncio
    async def test_request_carries_history(self, monitor):
        remote = FakeRemote()
        manager = make_manager(remote, monitor)
        history = [Turn(role=ROLE_USER, text="Hi"), Turn(role=ROLE_AGENT, text="Hello!")]

        await manager.send("How are you?", history, STRICT_TEACHER, session_id="session-9")

        request = remote.requests[0]
        assert request.session_id == "session-9"
        assert request.agent_id == "strict-teacher"
        assert request.utterance == "How are you?"
        assert request.history == [{"role": "user", "text": "Hi"}, {"role": "agent", "text": "Hello!"}]

    @pytest.mark.asyncio
    async def test_missing_remote_feedback_is_filled_locally(self, monitor):
        remote = FakeRemote()
        remote.feedback = None
        manager = make_manager(remote, monitor)

        turn = await manager.send("I visited my aunt", [], FRIENDLY_TUTOR)

        assert turn.text == "Remote reply"
        assert turn.feedback is not None
        assert 0 <= turn.feedback.grammar_score <= 100


class TestFallback:
    """Remote trouble never reaches the caller."""

    @pytest.mark.asyncio
    async def test_error_falls_back_to_local(self, monitor, clock):
        manager = make_manager(FakeRemote(behavior="error"), monitor)

        turn = await manager.send("Hello, how are you?", [], FRIENDLY_TUTOR)

        assert turn.role == ROLE_AGENT
        assert turn.text in FRIENDLY_TUTOR.tone_categories["greetings"]
        assert manager.mode == MODE_LOCAL
        state = monitor.snapshot()
        assert state.remote_service_reachable is False
        assert state.last_remote_failure == clock.now

    @pytest.mark.asyncio
    async def test_timeout_falls_back_to_local(self, monitor):
        manager = make_manager(FakeRemote(behavior="hang"), monitor, timeout_s=0.05)

        turn = await manager.send("Tell me more", [], STRICT_TEACHER)

        assert turn.text in STRICT_TEACHER.tone_categories["default"]
        assert manager.mode == MODE_LOCAL
        assert monitor.in_cooldown()

    @pytest.mark.asyncio
    async def test_transport_error_falls_back_to_local(self, monitor):
        remote = FakeRemote(behavior="reset")
        manager = make_manager(remote, monitor)

        turn = await manager.send("Hello, how are you?", [], FRIENDLY_TUTOR)

        assert turn.role == ROLE_AGENT
        assert turn.text in FRIENDLY_TUTOR.tone_categories["greetings"]
        assert manager.mode == MODE_LOCAL
        assert monitor.in_cooldown()

    @pytest.mark.asyncio
    async def test_unexpected_client_error_falls_back_to_local(self, monitor):
        class LeakyRemote(FakeRemote):
            async def respond(self, request):
                self.requests.append(request)
                raise httpx.ConnectError("All connection attempts failed")

        manager = make_manager(LeakyRemote(), monitor)

        turn = await manager.send("Tell me more", [], STRICT_TEACHER)

        assert turn.text in STRICT_TEACHER.tone_categories["default"]
        assert manager.mode == MODE_LOCAL
        assert monitor.snapshot().remote_service_reachable is False

    @pytest.mark.asyncio
    async def test_cooldown_skips_remote(self, monitor, clock):
        remote = FakeRemote(behavior="error")
        manager = make_manager(remote, monitor)

        await manager.send("first", [], FRIENDLY_TUTOR)
        remote.behavior = "ok"
        clock.advance(1.0)
        await manager.send("second", [], FRIENDLY_TUTOR)

        assert len(remote.requests) == 1
        assert manager.mode == MODE_LOCAL

    @pytest.mark.asyncio
    async def test_remote_retried_after_cooldown(self, monitor, clock):
        remote = FakeRemote(behavior="error")
        manager = make_manager(remote, monitor)

        await manager.send("first", [], FRIENDLY_TUTOR)
        remote.behavior = "ok"
        clock.advance(6.0)
        turn = await manager.send("second", [], FRIENDLY_TUTOR)

        assert len(remote.requests) == 2
        assert turn.text == "Remote reply"
        assert manager.mode == MODE_CONNECTED
        assert monitor.snapshot().last_remote_failure is None

    @pytest.mark.asyncio
    async def test_offline_skips_remote(self, monitor):
        remote = FakeRemote()
        manager = make_manager(remote, monitor)
        monitor.set_network_online(False)

        turn = await manager.send("Hello", [], FRIENDLY_TUTOR)

        assert remote.requests == []
        assert turn.role == ROLE_AGENT
        assert manager.mode == MODE_LOCAL

    @pytest.mark.asyncio
    async def test_no_remote_configured(self, monitor):
        manager = ConnectionManager(remote=None, monitor=monitor)
        assert manager.mode == MODE_LOCAL

        turn = await manager.send("Hello", [], FRIENDLY_TUTOR)
        assert turn.text in FRIENDLY_TUTOR.tone_categories["greetings"]

    @pytest.mark.asyncio
    async def test_malformed_personality_raises(self, monitor):
        broken = dataclasses.replace(FRIENDLY_TUTOR, tone_categories={})
        manager = make_manager(FakeRemote(), monitor)

        with pytest.raises(InternalSynthesisError):
            await manager.send("Hello", [], broken)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
