"""
Local Response Synthesis

Produces personality-consistent replies and per-turn feedback on-device,
used whenever the remote reasoning service is skipped or fails.

Classification is a pure function of the utterance (and the personality's
signature rule). Only template/suggestion selection is randomized, through
an injectable random.Random.
"""

import random
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence

from language_peer.errors import MalformedPersonalityError
from language_peer.logger import get_logger
from language_peer.models import ROLE_AGENT, Feedback, Turn
from language_peer.personalities import DEFAULT_CATEGORY, Personality, validate_personality

logger = get_logger("language_peer.synthesizer")

CATEGORY_GREETINGS = "greetings"
CATEGORY_PRACTICE = "practice"
CATEGORY_QUESTIONS = "questions"

# Evaluated in order against the lower-cased utterance; first match wins.
# The personality's signature rule is checked after these.
CATEGORY_RULES = [
    (CATEGORY_GREETINGS, re.compile(
        r"\b(hello|hi|hey|hiya|howdy|greetings|good (morning|afternoon|evening))\b"
    )),
    (CATEGORY_PRACTICE, re.compile(
        r"\b(practi[cs]e|exercises?|drills?|teach me|quiz me|help me (learn|improve|with)|let'?s (learn|study))\b"
    )),
    (CATEGORY_QUESTIONS, re.compile(
        r"\?|^\s*(what|how|why|when|where|who|which|can|could|would|should|do|does|did|is|are|will)\b"
    )),
]

# Number of recent agent replies to avoid repeating
RECENT_REPLY_WINDOW = 3

LONG_WORD_LENGTH = 6
WORD_PATTERN = re.compile(r"[^\W\d_]+(?:'[^\W\d_]+)?")

SUGGESTION_POOL = (
    "Try using more varied vocabulary",
    "Consider using transition words like 'however' or 'therefore'",
    "Practice speaking at a steady pace",
    "Try combining short sentences into longer ones",
    "Add a detail or example to support your point",
    "Experiment with a different tense in your next sentence",
    "Pause briefly between ideas to sound more natural",
)

ENCOURAGEMENT_POOL = (
    "You're doing great! Keep practicing and you'll see improvement.",
    "Every conversation is a step forward in your language journey.",
    "Remember, making mistakes is part of learning. Keep going!",
    "I can see your confidence growing with every sentence.",
    "Every word you practice brings you closer to fluency.",
)


def classify_utterance(utterance: str, personality: Optional[Personality] = None) -> str:
    """Map an utterance to a response category. Deterministic."""
    text = (utterance or "").lower()
    for category, pattern in CATEGORY_RULES:
        if pattern.search(text):
            return category
    if personality is not None and personality.signature_pattern:
        if re.search(personality.signature_pattern, text):
            return personality.signature_category
    return DEFAULT_CATEGORY


def score_utterance(utterance: str) -> tuple:
    """Deterministic (grammar, fluency, vocabulary) scores from word structure."""
    words = WORD_PATTERN.findall(utterance or "")
    word_count = len(words)
    long_words = sum(1 for word in words if len(word) > LONG_WORD_LENGTH)

    grammar = 70 + min(word_count, 15) * 2        # 70-100
    fluency = 75 + min(word_count, 25)            # 75-100
    vocabulary = 80 + min(long_words * 5, 20)     # 80-100
    return grammar, fluency, vocabulary


@dataclass(frozen=True)
class SynthesisResult:
    """Locally generated reply."""
    text: str
    feedback: Feedback
    category: str


class ResponseSynthesizer:
    """
    Generates replies without the remote service.

    Args:
        rng: Random source for template and suggestion selection.
             Pass random.Random(seed) for reproducible output.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self.rng = rng or random.Random()

    def synthesize(
        self,
        utterance: str,
        history: Sequence[Turn],
        personality: Personality
    ) -> SynthesisResult:
        """
        Produce a reply and feedback for one user utterance.

        Raises:
            InternalSynthesisError: personality data cannot drive synthesis
        """
        validate_personality(personality)

        category = classify_utterance(utterance, personality)
        candidates = personality.responses_for(category)
        if not candidates:
            raise MalformedPersonalityError(f"{personality.id}: no templates for '{category}'")

        text = self._pick_reply(candidates, history)
        feedback = self.build_feedback(utterance)

        logger.debug(
            "Synthesized local reply",
            data={"agent": personality.id, "category": category, "candidates": len(candidates)},
        )
        return SynthesisResult(text=text, feedback=feedback, category=category)

    def _pick_reply(self, candidates: Sequence[str], history: Sequence[Turn]) -> str:
        """Uniform choice, skipping replies the agent used very recently."""
        recent = [turn.text for turn in history if turn.role == ROLE_AGENT][-RECENT_REPLY_WINDOW:]
        fresh: List[str] = [c for c in candidates if c not in recent]
        return self.rng.choice(fresh or list(candidates))

    def build_feedback(self, utterance: str) -> Feedback:
        grammar, fluency, vocabulary = score_utterance(utterance)
        suggestion_count = self.rng.randint(1, 3)
        return Feedback(
            grammar_score=grammar,
            fluency_score=fluency,
            vocabulary_score=vocabulary,
            suggestions=tuple(self.rng.sample(SUGGESTION_POOL, suggestion_count)),
            # No linguistic analysis offline
            corrections=(),
            encouragement=self.rng.choice(ENCOURAGEMENT_POOL),
        )

    def suggest_topic(self, personality: Personality) -> str:
        """Pick a conversation starter from the personality's topic pool."""
        if not personality.topics:
            return "What would you like to talk about next?"
        return self.rng.choice(personality.topics)
