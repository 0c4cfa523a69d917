"""
Connection Manager

Single entry point for obtaining an agent turn. Decides per call whether
to ask the remote reasoning service or synthesize locally, and falls back
transparently: callers always get a Turn, never a remote failure.
"""

import asyncio
from typing import Optional, Sequence

from language_peer.connectivity import ConnectivityMonitor, get_connectivity_monitor
from language_peer.errors import InternalSynthesisError, RemoteServiceError
from language_peer.logger import get_logger
from language_peer.models import MODE_CONNECTED, MODE_LOCAL, ROLE_AGENT, Turn
from language_peer.personalities import Personality, validate_personality
from language_peer.remote_client import ReasoningClient, RemoteReasoningRequest
from language_peer.response_synthesizer import ResponseSynthesizer

logger = get_logger("language_peer.connection")

DEFAULT_REMOTE_TIMEOUT_S = 4.0


class ConnectionManager:
    """
    Chooses remote call vs. local synthesis for each utterance.

    Args:
        remote: remote reasoning client, or None to always run locally
        synthesizer: local fallback
        monitor: connectivity state (process-wide monitor by default)
        timeout_s: upper bound on a remote attempt
    """

    def __init__(
        self,
        remote: Optional[ReasoningClient] = None,
        synthesizer: Optional[ResponseSynthesizer] = None,
        monitor: Optional[ConnectivityMonitor] = None,
        timeout_s: float = DEFAULT_REMOTE_TIMEOUT_S,
    ):
        self.remote = remote
        self.synthesizer = synthesizer or ResponseSynthesizer()
        self.monitor = monitor or get_connectivity_monitor()
        self.timeout_s = timeout_s
        # Mode that produced the most recent turn
        self.mode = MODE_CONNECTED if remote is not None else MODE_LOCAL

    async def send(
        self,
        utterance: str,
        history: Sequence[Turn],
        personality: Personality,
        session_id: Optional[str] = None,
    ) -> Turn:
        """
        Produce the agent turn for an utterance.

        Never raises for remote trouble. The only error path is
        InternalSynthesisError for malformed personality data.
        """
        validate_personality(personality)

        skip_reason = self._skip_reason()
        if skip_reason is not None:
            return self._local_turn(utterance, history, personality, skip_reason)

        request = RemoteReasoningRequest(
            session_id=session_id,
            agent_id=personality.id,
            utterance=utterance,
            history=[turn.as_history_entry() for turn in history],
        )
        try:
            response = await asyncio.wait_for(self.remote.respond(request), timeout=self.timeout_s)
        except asyncio.TimeoutError:
            self.monitor.record_remote_failure()
            return self._local_turn(utterance, history, personality, f"timeout after {self.timeout_s}s")
        except InternalSynthesisError:
            raise
        except RemoteServiceError as e:
            self.monitor.record_remote_failure()
            return self._local_turn(utterance, history, personality, f"remote error: {e}")
        except Exception as e:
            # Clients outside this package may leak transport errors (OSError, httpx, ...)
            self.monitor.record_remote_failure()
            return self._local_turn(utterance, history, personality, f"remote error: {type(e).__name__}: {e}")

        self.monitor.record_remote_success()
        if self.mode != MODE_CONNECTED:
            logger.success("Back in connected mode")
        self.mode = MODE_CONNECTED

        if response.feedback is not None:
            feedback = response.feedback.to_feedback()
        else:
            feedback = self.synthesizer.build_feedback(utterance)
        return Turn(role=ROLE_AGENT, text=response.text, feedback=feedback, audio_ref=response.audio_url)

    def _skip_reason(self) -> Optional[str]:
        if self.remote is None:
            return "no remote service configured"
        state = self.monitor.snapshot()
        if not state.network_online:
            return "network offline"
        if self.monitor.in_cooldown():
            return "remote service in cool-down"
        return None

    def _local_turn(
        self,
        utterance: str,
        history: Sequence[Turn],
        personality: Personality,
        reason: str,
    ) -> Turn:
        if self.mode != MODE_LOCAL:
            logger.warning("Falling back to local mode", data={"reason": reason, "agent": personality.id})
        else:
            logger.debug(f"Local synthesis ({reason})")
        self.mode = MODE_LOCAL

        result = self.synthesizer.synthesize(utterance, history, personality)
        return Turn(role=ROLE_AGENT, text=result.text, feedback=result.feedback)
