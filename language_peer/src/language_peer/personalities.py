"""
Agent Personality Catalog

Static, validated registry of the agents a learner can practice with.
Each personality carries its response templates per category, the
pattern for its own signature category, and voice rendering hints.
"""

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from language_peer.errors import InvalidAgentError, MalformedPersonalityError

DEFAULT_CATEGORY = "default"


@dataclass(frozen=True)
class VoiceParams:
    """Voice rendering hints passed to the speech facility."""
    pitch: float = 1.0
    rate: float = 1.0
    voice_preference_list: Tuple[str, ...] = ()
    language: str = "en-US"


@dataclass(frozen=True)
class Personality:
    """Fixed behavioral and voice profile of an agent."""
    id: str
    display_name: str
    tone_categories: Mapping[str, Tuple[str, ...]]
    voice_params: VoiceParams
    signature_category: Optional[str] = None
    signature_pattern: Optional[str] = None
    description: str = ""
    traits: Tuple[str, ...] = ()
    specialties: Tuple[str, ...] = ()
    difficulty: str = "all"
    greeting: str = "Hello! I'm {name}. Let's start practicing!"
    topics: Tuple[str, ...] = field(default_factory=tuple)

    def responses_for(self, category: str) -> Tuple[str, ...]:
        """Candidates for a category, falling back to the default category."""
        return self.tone_categories.get(category) or self.tone_categories.get(DEFAULT_CATEGORY, ())

    def greeting_text(self) -> str:
        return self.greeting.format(name=self.display_name)


def validate_personality(personality: Personality) -> None:
    """Raise MalformedPersonalityError if the personality cannot drive synthesis."""
    if not isinstance(personality, Personality):
        raise MalformedPersonalityError(f"Not a Personality: {personality!r}")
    if not personality.id or not personality.display_name:
        raise MalformedPersonalityError("Personality requires an id and a display name")

    defaults = personality.tone_categories.get(DEFAULT_CATEGORY)
    if not defaults:
        raise MalformedPersonalityError(f"{personality.id}: missing non-empty '{DEFAULT_CATEGORY}' category")
    for category, templates in personality.tone_categories.items():
        if not all(isinstance(t, str) and t.strip() for t in templates):
            raise MalformedPersonalityError(f"{personality.id}: blank template in category '{category}'")

    if (personality.signature_category is None) != (personality.signature_pattern is None):
        raise MalformedPersonalityError(f"{personality.id}: signature category and pattern go together")
    if personality.signature_pattern is not None:
        try:
            re.compile(personality.signature_pattern)
        except re.error as e:
            raise MalformedPersonalityError(f"{personality.id}: bad signature pattern: {e}") from e

    voice = personality.voice_params
    if not 0.0 < voice.pitch <= 2.0:
        raise MalformedPersonalityError(f"{personality.id}: pitch must be in (0, 2], got {voice.pitch}")
    if not 0.1 <= voice.rate <= 10.0:
        raise MalformedPersonalityError(f"{personality.id}: rate must be in [0.1, 10], got {voice.rate}")


class PersonalityCatalog:
    """Closed registry mapping agent ids to personalities."""

    def __init__(self, personalities: Iterable[Personality]):
        entries: Dict[str, Personality] = {}
        for personality in personalities:
            validate_personality(personality)
            if personality.id in entries:
                raise MalformedPersonalityError(f"Duplicate personality id: {personality.id}")
            entries[personality.id] = personality
        self._entries = MappingProxyType(entries)

    def get(self, agent_id: str) -> Personality:
        try:
            return self._entries[agent_id]
        except KeyError:
            raise InvalidAgentError(agent_id) from None

    def __contains__(self, agent_id: object) -> bool:
        return agent_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def ids(self) -> List[str]:
        return list(self._entries)

    def all(self) -> List[Personality]:
        return list(self._entries.values())


def _categories(**categories: List[str]) -> Mapping[str, Tuple[str, ...]]:
    return MappingProxyType({name: tuple(items) for name, items in categories.items()})


FRIENDLY_TUTOR = Personality(
    id="friendly-tutor",
    display_name="Emma",
    description="A patient and encouraging tutor who makes learning fun and stress-free.",
    traits=("Patient", "Encouraging", "Supportive", "Positive"),
    specialties=("Grammar", "Vocabulary", "Conversation"),
    difficulty="beginner",
    greeting=(
        "Hi there! I'm {name}, your friendly language tutor. I'm excited to help you "
        "practice today! What would you like to talk about?"
    ),
    signature_category="encouragement",
    signature_pattern=r"\b(nervous|scared|afraid|worried|difficult|hard|confus\w*|frustrat\w*|give up)\b",
    tone_categories=_categories(
        greetings=[
            "Hello! It's so lovely to hear from you. How has your day been so far?",
            "Hi there! I'm really happy you're here. What shall we chat about today?",
            "Hey! Great to see you practicing. Tell me a little about your day!",
        ],
        practice=[
            "I'd love to practice with you! Let's start by describing your morning routine.",
            "Wonderful idea! Try telling me about your favorite place in your town.",
            "Let's do it! Can you tell me three things you enjoy doing on weekends?",
        ],
        questions=[
            "Great question! Let's work through it together, step by step.",
            "I'm so glad you asked! Let me explain it in a simple way.",
            "That's a really thoughtful question. Here's a friendly way to think about it.",
        ],
        encouragement=[
            "Don't worry at all! Every mistake is a step forward, and you're doing great.",
            "It's completely normal to feel that way. Let's take it slowly together.",
            "You're braver than you think! Practicing like this is exactly how you improve.",
        ],
        default=[
            "That's great! I can see you're making progress. Tell me a bit more about that.",
            "Wonderful! Your sentences are getting smoother. What happened next?",
            "I love your enthusiasm! Let's explore that topic a little further.",
        ],
    ),
    topics=(
        "How about we practice talking about your hobbies? I'd love to hear what you enjoy doing!",
        "Would you like to practice ordering food at a restaurant? It's super practical and fun!",
        "Let's try describing your daily routine. It's great for practicing different tenses!",
        "How about we practice talking about travel? Even if it's just dream destinations!",
    ),
    voice_params=VoiceParams(pitch=1.0, rate=1.0, voice_preference_list=("Joanna", "Samantha", "Zira")),
)

STRICT_TEACHER = Personality(
    id="strict-teacher",
    display_name="Professor Chen",
    description="A disciplined educator focused on precision and proper language structure.",
    traits=("Precise", "Detailed", "Structured", "Professional"),
    specialties=("Grammar", "Pronunciation", "Formal Speech"),
    difficulty="advanced",
    greeting=(
        "Good day. I am {name}. We will focus on proper grammar and pronunciation today. "
        "Please speak clearly and I will provide detailed feedback."
    ),
    signature_category="grammar",
    signature_pattern=r"\b(grammar|tense|tenses|verb|verbs|conjugat\w*|article|articles|preposition\w*)\b",
    tone_categories=_categories(
        greetings=[
            "Good day. Let us begin without delay. State the topic you wish to practice.",
            "Greetings. Please answer in complete sentences for the rest of this session.",
            "Hello. Punctuality and precision matter. Shall we begin with a formal introduction?",
        ],
        practice=[
            "Very well. Describe your last weekend using only the simple past tense.",
            "We will practice formal requests. Ask me for something using 'Would you mind'.",
            "Construct three sentences using the present perfect. Begin when ready.",
        ],
        questions=[
            "A reasonable question. Attend carefully to the following explanation.",
            "Precisely asked. The rule is strict, so note it down.",
            "Before I answer, rephrase your question as a complete, formal sentence.",
        ],
        grammar=[
            "Pay attention to your verb tenses. Let me explain the proper usage.",
            "Grammar is the foundation. Identify the subject and the verb in your sentence first.",
            "Consistency of tense is essential. Revise your sentence and try again.",
        ],
        default=[
            "I notice some structural issues in your sentence. Let us correct them.",
            "Acceptable, but imprecise. Repeat the sentence with more careful word choice.",
            "Your answer requires more detail. Expand it into two complete sentences.",
        ],
    ),
    topics=(
        "We will discuss formal correspondence. Describe how you would open a business letter.",
        "Explain the difference between the present perfect and the simple past with examples.",
        "Present a short argument for or against homework, using formal connectors.",
    ),
    voice_params=VoiceParams(pitch=0.9, rate=0.9, voice_preference_list=("Matthew", "Daniel", "David")),
)

CONVERSATION_PARTNER = Personality(
    id="conversation-partner",
    display_name="Alex",
    description="A friendly conversation partner for natural, everyday language practice.",
    traits=("Casual", "Friendly", "Relatable", "Natural"),
    specialties=("Casual Conversation", "Idioms", "Cultural Context"),
    difficulty="intermediate",
    greeting=(
        "Hey! I'm {name}. Let's have a natural conversation, just like talking with a friend. "
        "What's on your mind today?"
    ),
    signature_category="sharing",
    signature_pattern=r"\b(i like|i love|i enjoy|my favou?rite|yesterday|last weekend|last night)\b",
    tone_categories=_categories(
        greetings=[
            "Hey, hey! Good to hear from you. What have you been up to?",
            "Hi! Perfect timing, I was just hoping for a good chat. What's new?",
            "Hello there! How's everything going on your end?",
        ],
        practice=[
            "Sure thing! Let's just chat. What's something fun you did recently?",
            "Let's keep it casual. Tell me about a movie or show you've been watching.",
            "Cool, let's practice! Imagine we just met at a coffee shop. You start!",
        ],
        questions=[
            "Ooh, good one. Honestly, I'd say it depends. What do you think?",
            "Hmm, let me think about that. Have you ever wondered about it before?",
            "Great question! People ask me that a lot, actually.",
        ],
        sharing=[
            "Oh, that's interesting! I had a similar experience once.",
            "No way, that sounds awesome! What was the best part?",
            "I totally get that. It reminds me of something that happened to me.",
        ],
        default=[
            "I totally understand what you mean. Have you ever tried looking at it differently?",
            "That reminds me of something. Tell me more!",
            "Ha, nice! So what happened after that?",
        ],
    ),
    topics=(
        "So, what's the best trip you've ever taken?",
        "If you could eat only one food for a week, what would it be?",
        "What's a hobby you've always wanted to try?",
    ),
    voice_params=VoiceParams(pitch=1.0, rate=1.1, voice_preference_list=("Joey", "Alex", "Mark")),
)

PRONUNCIATION_COACH = Personality(
    id="pronunciation-coach",
    display_name="Dr. Martinez",
    description="A specialized coach focused on perfecting pronunciation and accent.",
    traits=("Focused", "Technical", "Methodical", "Expert"),
    specialties=("Pronunciation", "Accent Training", "Phonetics"),
    difficulty="all",
    greeting=(
        "Hello! I'm {name}, your pronunciation coach. I'll help you perfect your speech "
        "patterns. Let's start with some practice sentences."
    ),
    signature_category="pronunciation",
    signature_pattern=r"\b(pronounc\w*|accent|sound|sounds|intonation|stress|syllable\w*|vowel\w*)\b",
    tone_categories=_categories(
        greetings=[
            "Hello! Let's warm up. Say 'The quick brown fox jumps over the lazy dog' slowly.",
            "Welcome back! Let's begin with a few breathing exercises, then some vowels.",
            "Hi! Today we'll focus on rhythm. Repeat after me: 'I'd like a cup of tea.'",
        ],
        practice=[
            "Let's drill the 'th' sound. Repeat: 'think, thank, through, three.'",
            "Try this minimal pair: 'ship' and 'sheep'. Feel the vowel length change.",
            "Read this aloud with rising intonation: 'Are you coming to the party?'",
        ],
        questions=[
            "Good question. Watch the position of your tongue as I explain.",
            "Let's break that word into syllables first, then find the stressed one.",
            "Great thing to ask. Pronunciation rules have patterns, so let's find this one.",
        ],
        pronunciation=[
            "Good attempt! Let's focus on the 'th' sound in that word.",
            "I can hear improvement in your intonation. Now let's work on word stress.",
            "Excellent! Your rhythm is getting much better. Try stretching the long vowels.",
        ],
        default=[
            "Good attempt! Now say it again a little slower, stressing the key words.",
            "Nice. Let's record that sentence once more and listen for the final consonants.",
            "Excellent! Your rhythm is getting much better. Try this next sentence.",
        ],
    ),
    topics=(
        "Let's practice tongue twisters. Try: 'She sells seashells by the seashore.'",
        "Let's work on the 'r' and 'l' sounds with 'really lovely rural road'.",
        "Read a short paragraph aloud and we'll mark the stressed syllables together.",
    ),
    voice_params=VoiceParams(pitch=1.0, rate=0.8, voice_preference_list=("Lupe", "Monica", "Paulina")),
)

BUILTIN_PERSONALITIES = (FRIENDLY_TUTOR, STRICT_TEACHER, CONVERSATION_PARTNER, PRONUNCIATION_COACH)

_default_catalog: Optional[PersonalityCatalog] = None


def get_default_catalog() -> PersonalityCatalog:
    """Get or create the shared catalog of built-in agents."""
    global _default_catalog
    if _default_catalog is None:
        _default_catalog = PersonalityCatalog(BUILTIN_PERSONALITIES)
    return _default_catalog
