"""
Conversation Session

State machine tying the engine together for one learner:

    Idle -> AwaitingUserTurn -> ProcessingTurn -> SpeakingResponse -> AwaitingUserTurn ...
                                                           end()/switch_agent() -> Ended -> Idle

Only one utterance may be in the pipeline at a time; a second submission
while a turn is processing or being spoken is refused with SessionBusyError,
which keeps turns strictly in submission order.

The presentation layer drives the session through start / submit_utterance /
switch_agent / end and observes it through subscribe(); it never touches
Session fields directly.
"""

import asyncio
import random
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Tuple

from language_peer.connection_manager import ConnectionManager
from language_peer.connectivity import ConnectivityMonitor
from language_peer.conversation_store import ConversationStore
from language_peer.errors import SessionBusyError, SessionStateError
from language_peer.logger import get_logger
from language_peer.models import MODE_LOCAL, ROLE_USER, Session, SessionSummary, Turn
from language_peer.personalities import Personality, PersonalityCatalog, get_default_catalog
from language_peer.response_synthesizer import ResponseSynthesizer
from language_peer.speech_output import SpeechOutputDriver

logger = get_logger("language_peer.session")


class SessionStatus(str, Enum):
    IDLE = "idle"
    AWAITING_USER_TURN = "awaiting_user_turn"
    PROCESSING_TURN = "processing_turn"
    SPEAKING_RESPONSE = "speaking_response"
    ENDED = "ended"


BUSY_STATES = (SessionStatus.PROCESSING_TURN, SessionStatus.SPEAKING_RESPONSE)


@dataclass(frozen=True)
class SessionChange:
    """Notification published on every state transition."""
    state: SessionStatus
    turns: Tuple[Turn, ...]
    mode: Optional[str]
    session_id: Optional[str] = None
    agent_id: Optional[str] = None


SessionListener = Callable[[SessionChange], None]


def _log_detached_turn(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error("Turn for an ended session failed", error=error)


class ConversationSession:
    """
    Orchestrates turns for the single active practice session.

    Args:
        connection_manager: produces agent turns (remote or local)
        speech: speech output driver; a silent driver by default
        store: session persistence; None disables saving
        catalog: personality registry
        autosave: save after every completed agent turn
    """

    def __init__(
        self,
        connection_manager: Optional[ConnectionManager] = None,
        speech: Optional[SpeechOutputDriver] = None,
        store: Optional[ConversationStore] = None,
        catalog: Optional[PersonalityCatalog] = None,
        autosave: bool = True,
    ):
        self.connection_manager = connection_manager or ConnectionManager()
        self.speech = speech or SpeechOutputDriver()
        self.store = store
        self.catalog = catalog or get_default_catalog()
        self.autosave = autosave

        self._state = SessionStatus.IDLE
        self._session: Optional[Session] = None
        self._personality: Optional[Personality] = None
        self._pending: Optional[asyncio.Task] = None
        self._listeners: List[SessionListener] = []

    @classmethod
    def from_config(cls, config, rng: Optional[random.Random] = None) -> "ConversationSession":
        """Wire a session from an EngineConfig."""
        from language_peer.config import (
            build_key_value_store,
            build_network_check,
            build_reasoning_client,
            build_speech_backend,
        )

        remote = build_reasoning_client(config)
        monitor = ConnectivityMonitor(
            cooldown_s=config.cooldown_s,
            recheck_interval_s=config.recheck_interval_s,
            network_probe=build_network_check(config),
            remote_probe=remote.health_check if remote is not None else None,
        )
        manager = ConnectionManager(
            remote=remote,
            synthesizer=ResponseSynthesizer(rng=rng),
            monitor=monitor,
            timeout_s=config.remote_timeout_s,
        )
        speech = SpeechOutputDriver(build_speech_backend(config), language=config.language)
        store = ConversationStore(build_key_value_store(config))
        return cls(connection_manager=manager, speech=speech, store=store, autosave=config.autosave)

    # -- Observation -------------------------------------------------------

    @property
    def state(self) -> SessionStatus:
        return self._state

    @property
    def session_id(self) -> Optional[str]:
        return self._session.id if self._session else None

    @property
    def agent_id(self) -> Optional[str]:
        return self._session.agent_id if self._session else None

    @property
    def personality(self) -> Optional[Personality]:
        return self._personality

    @property
    def turns(self) -> Tuple[Turn, ...]:
        return self._session.turns if self._session else ()

    @property
    def mode(self) -> Optional[str]:
        return self._session.mode if self._session else None

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register for change notifications. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _set_state(self, state: SessionStatus, session: Optional[Session] = None) -> None:
        previous = self._state
        self._state = state
        source = session or self._session
        change = SessionChange(
            state=state,
            turns=source.turns if source else (),
            mode=source.mode if source else None,
            session_id=source.id if source else None,
            agent_id=source.agent_id if source else None,
        )
        logger.debug(f"{previous.value} -> {state.value}")
        for listener in list(self._listeners):
            try:
                listener(change)
            except Exception as e:
                logger.error("Session listener failed", error=e)

    # -- Lifecycle ---------------------------------------------------------

    def start(self, agent_id: str) -> Session:
        """
        Begin a fresh session with an agent.

        Raises:
            InvalidAgentError: agent_id is not in the catalog
            SessionStateError: a session is already active
        """
        if self._state != SessionStatus.IDLE:
            raise SessionStateError(f"Cannot start while {self._state.value}")
        personality = self.catalog.get(agent_id)

        self._session = Session(agent_id=agent_id, mode=self.connection_manager.mode)
        self._personality = personality
        logger.info(f"Session started with {personality.display_name}", data={"session_id": self._session.id})
        self._set_state(SessionStatus.AWAITING_USER_TURN)
        return self._session

    async def resume(self, session_id: str) -> Session:
        """Reopen a stored session and keep appending to it."""
        if self._state != SessionStatus.IDLE:
            raise SessionStateError(f"Cannot resume while {self._state.value}")
        if self.store is None:
            raise SessionStateError("No conversation store configured")

        session = await self.store.load(session_id)
        if session is None:
            raise SessionStateError(f"No stored session {session_id!r}")
        personality = self.catalog.get(session.agent_id)

        self._session = session
        self._personality = personality
        logger.info(f"Session resumed with {personality.display_name}",
                    data={"session_id": session.id, "turns": len(session.turns)})
        self._set_state(SessionStatus.AWAITING_USER_TURN)
        return session

    async def switch_agent(self, new_agent_id: str) -> Session:
        """Persist and close the current session, then start one with another agent."""
        self.catalog.get(new_agent_id)
        await self.end()
        return self.start(new_agent_id)

    async def end(self) -> Session:
        """
        Stop speech, persist the session and return to Idle.

        An in-flight turn is left to finish but its result is discarded.
        """
        if self._state in (SessionStatus.IDLE, SessionStatus.ENDED):
            raise SessionStateError("No active session to end")

        session = self._session
        self.speech.stop()
        self._session = None
        self._personality = None
        self._detach_pending()

        self._set_state(SessionStatus.ENDED, session)
        await self._persist(session)
        logger.info("Session ended", data={"session_id": session.id, "turns": len(session.turns)})
        self._set_state(SessionStatus.IDLE)
        return session

    # -- Turns -------------------------------------------------------------

    def submit_utterance(self, text: str, confidence: Optional[float] = None) -> Optional[asyncio.Task]:
        """
        Record a finalized user utterance and start producing the reply.

        Returns the task driving the turn, or None when the utterance is
        blank (nothing is recorded in that case).

        Raises:
            SessionBusyError: a previous turn is still processing or speaking
            SessionStateError: no active session
        """
        if self._state in BUSY_STATES:
            raise SessionBusyError(f"Session is {self._state.value}; wait for the current turn")
        if self._state != SessionStatus.AWAITING_USER_TURN:
            raise SessionStateError(f"Cannot submit while {self._state.value}")
        if text is None or not text.strip():
            logger.debug("Ignoring blank utterance")
            return None

        session = self._session
        user_turn = Turn(role=ROLE_USER, text=text.strip(), confidence=confidence)
        history = session.turns
        session.append(user_turn)
        self._set_state(SessionStatus.PROCESSING_TURN)

        self._pending = asyncio.create_task(self._process_turn(session, self._personality, user_turn, history))
        return self._pending

    async def wait_for_turn(self) -> None:
        """Await the in-flight turn, if any."""
        if self._pending is not None:
            await self._pending

    def _detach_pending(self) -> None:
        """Let an in-flight turn finish on its own without leaking its outcome."""
        task = self._pending
        self._pending = None
        if task is not None:
            task.add_done_callback(_log_detached_turn)

    async def _process_turn(
        self,
        session: Session,
        personality: Personality,
        user_turn: Turn,
        history: Tuple[Turn, ...],
    ) -> None:
        try:
            agent_turn = await self.connection_manager.send(
                user_turn.text, history, personality, session_id=session.id
            )
        except Exception:
            if session is self._session:
                self._set_state(SessionStatus.AWAITING_USER_TURN)
            raise

        if session is not self._session:
            logger.info("Discarding reply for a session that has ended", data={"session_id": session.id})
            return

        session.append(agent_turn)
        session.mode = self.connection_manager.mode
        self._set_state(SessionStatus.SPEAKING_RESPONSE)

        try:
            if self.autosave:
                await self._persist(session)

            if session is self._session:
                await self.speech.speak(agent_turn.text, personality)
        finally:
            # The agent turn is final; the learner can always continue
            if session is self._session and self._state == SessionStatus.SPEAKING_RESPONSE:
                self._pending = None
                self._set_state(SessionStatus.AWAITING_USER_TURN)

    async def _persist(self, session: Session) -> None:
        if self.store is None:
            return
        if not await self.store.save(session):
            logger.warning("Session kept in memory only; history could not be saved",
                           data={"session_id": session.id})

    # -- Extras ------------------------------------------------------------

    def greeting(self) -> str:
        """Opening line for the active agent (not recorded as a turn)."""
        if self._personality is None:
            raise SessionStateError("No active session")
        return self._personality.greeting_text()

    def suggest_topic(self) -> str:
        if self._personality is None:
            raise SessionStateError("No active session")
        return self.connection_manager.synthesizer.suggest_topic(self._personality)

    @property
    def is_local(self) -> bool:
        return self.mode == MODE_LOCAL

    async def list_recent(self, limit: int = 10) -> List[SessionSummary]:
        if self.store is None:
            return []
        return await self.store.list_recent(limit)
