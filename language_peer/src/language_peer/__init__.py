"""Resilient conversation engine for spoken language practice"""
from .connection_manager import ConnectionManager
from .connectivity import ConnectivityMonitor, ConnectivityState, get_connectivity_monitor
from .conversation_session import ConversationSession, SessionChange, SessionStatus
from .conversation_store import ConversationStore
from .errors import (
    InternalSynthesisError,
    InvalidAgentError,
    LanguagePeerError,
    SessionBusyError,
    SessionStateError,
)
from .models import Feedback, Session, SessionSummary, Turn
from .personalities import Personality, PersonalityCatalog, VoiceParams, get_default_catalog
from .response_synthesizer import ResponseSynthesizer
from .speech_output import SpeechOutputDriver

__all__ = [
    "ConnectionManager",
    "ConnectivityMonitor",
    "ConnectivityState",
    "get_connectivity_monitor",
    "ConversationSession",
    "SessionChange",
    "SessionStatus",
    "ConversationStore",
    "InternalSynthesisError",
    "InvalidAgentError",
    "LanguagePeerError",
    "SessionBusyError",
    "SessionStateError",
    "Feedback",
    "Session",
    "SessionSummary",
    "Turn",
    "Personality",
    "PersonalityCatalog",
    "VoiceParams",
    "get_default_catalog",
    "ResponseSynthesizer",
    "SpeechOutputDriver",
]
