"""
Exception types for the conversation engine.

Recoverable conditions (remote unreachable, speech unsupported, storage
failures) are absorbed inside the engine; the types for those exist so the
layers below can signal them precisely. Programming/invariant errors
(unknown agent, busy session, malformed personality) reach the caller.
"""


class LanguagePeerError(Exception):
    """Base exception for all engine errors."""

    pass


class InvalidAgentError(LanguagePeerError):
    """Agent id is not registered in the personality catalog."""

    def __init__(self, agent_id: str):
        self.agent_id = agent_id
        super().__init__(f"Unknown agent personality: {agent_id!r}")


class SessionBusyError(LanguagePeerError):
    """An utterance was submitted while the previous turn is still in flight."""

    pass


class SessionStateError(LanguagePeerError):
    """Operation is not valid in the session's current state."""

    pass


class InternalSynthesisError(LanguagePeerError):
    """Local synthesis could not run because its inputs are malformed."""

    pass


class MalformedPersonalityError(InternalSynthesisError):
    """Personality data failed validation."""

    pass


class RemoteServiceError(LanguagePeerError):
    """The remote reasoning service failed, timed out or returned a bad body."""

    pass


class SpeechBackendError(LanguagePeerError):
    """The speech facility could not start an utterance."""

    pass


class StorageError(LanguagePeerError):
    """A key-value storage backend failed to read or write."""

    pass


class ConfigurationError(LanguagePeerError):
    """Configuration values are missing or invalid."""

    pass
