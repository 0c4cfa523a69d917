"""
Conversation Data Model

Defines Session, Turn and Feedback dataclasses plus their JSON-ready
dict conversions (camelCase keys, ISO timestamps).
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

ROLE_USER = "user"
ROLE_AGENT = "agent"

MODE_CONNECTED = "connected"
MODE_LOCAL = "local"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def clamp_score(value: float) -> int:
    """Clamp a score into [0, 100]."""
    return int(max(0, min(100, round(value))))


@dataclass(frozen=True)
class Feedback:
    """Language feedback attached to a turn. Scores are 0-100."""
    grammar_score: int
    fluency_score: int
    vocabulary_score: int
    suggestions: Tuple[str, ...] = ()
    corrections: Tuple[str, ...] = ()
    encouragement: str = ""

    def __post_init__(self):
        object.__setattr__(self, "grammar_score", clamp_score(self.grammar_score))
        object.__setattr__(self, "fluency_score", clamp_score(self.fluency_score))
        object.__setattr__(self, "vocabulary_score", clamp_score(self.vocabulary_score))
        object.__setattr__(self, "suggestions", tuple(self.suggestions))
        object.__setattr__(self, "corrections", tuple(self.corrections))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "grammarScore": self.grammar_score,
            "fluencyScore": self.fluency_score,
            "vocabularyScore": self.vocabulary_score,
            "suggestions": list(self.suggestions),
            "corrections": list(self.corrections),
            "encouragement": self.encouragement,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Feedback":
        return cls(
            grammar_score=data.get("grammarScore", 0),
            fluency_score=data.get("fluencyScore", 0),
            vocabulary_score=data.get("vocabularyScore", 0),
            suggestions=tuple(data.get("suggestions") or ()),
            corrections=tuple(data.get("corrections") or ()),
            encouragement=data.get("encouragement") or "",
        )


@dataclass(frozen=True)
class Turn:
    """One finalized utterance (user) or generated response (agent)."""
    role: str
    text: str
    id: str = field(default_factory=lambda: new_id("turn"))
    timestamp: datetime = field(default_factory=utcnow)
    confidence: Optional[float] = None
    feedback: Optional[Feedback] = None
    audio_ref: Optional[str] = None

    def __post_init__(self):
        if self.role not in (ROLE_USER, ROLE_AGENT):
            raise ValueError(f"Invalid turn role: {self.role!r}")
        if self.confidence is not None and not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"Confidence must be within [0, 1], got {self.confidence}")

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "role": self.role,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.confidence is not None:
            data["confidence"] = self.confidence
        if self.feedback is not None:
            data["feedback"] = self.feedback.to_dict()
        if self.audio_ref is not None:
            data["audioRef"] = self.audio_ref
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Turn":
        feedback = data.get("feedback")
        return cls(
            id=data["id"],
            role=data["role"],
            text=data["text"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
            confidence=data.get("confidence"),
            feedback=Feedback.from_dict(feedback) if feedback else None,
            audio_ref=data.get("audioRef"),
        )

    def as_history_entry(self) -> Dict[str, str]:
        """Compact {role, text} form sent to the remote reasoning service."""
        return {"role": self.role, "text": self.text}


@dataclass
class Session:
    """One continuous practice conversation with one agent."""
    agent_id: str
    id: str = field(default_factory=lambda: new_id("session"))
    started_at: datetime = field(default_factory=utcnow)
    mode: str = MODE_CONNECTED
    _turns: List[Turn] = field(default_factory=list, repr=False)

    @property
    def turns(self) -> Tuple[Turn, ...]:
        """Read-only view; turns are only ever appended."""
        return tuple(self._turns)

    def append(self, turn: Turn) -> None:
        if not isinstance(turn, Turn):
            raise TypeError(f"Expected Turn, got {type(turn).__name__}")
        self._turns.append(turn)

    @property
    def last_activity(self) -> datetime:
        return self._turns[-1].timestamp if self._turns else self.started_at

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "agentId": self.agent_id,
            "startedAt": self.started_at.isoformat(),
            "mode": self.mode,
            "turns": [turn.to_dict() for turn in self._turns],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        session = cls(
            id=data["id"],
            agent_id=data["agentId"],
            started_at=datetime.fromisoformat(data["startedAt"]),
            mode=data.get("mode", MODE_CONNECTED),
        )
        for turn_data in data.get("turns", []):
            session.append(Turn.from_dict(turn_data))
        return session


@dataclass(frozen=True)
class SessionSummary:
    """Lightweight listing entry for stored sessions."""
    session_id: str
    agent_id: str
    started_at: datetime
    last_activity: datetime
    turn_count: int
    mode: str

    @property
    def duration_seconds(self) -> int:
        return int((self.last_activity - self.started_at).total_seconds())

    @classmethod
    def from_session(cls, session: Session) -> "SessionSummary":
        return cls(
            session_id=session.id,
            agent_id=session.agent_id,
            started_at=session.started_at,
            last_activity=session.last_activity,
            turn_count=len(session.turns),
            mode=session.mode,
        )
