"""Conversation pattern tracker: a cheap staleness detector.

Every observed chat line contributes its word bigrams and trigrams to a
rolling phrase buffer. When enough phrases keep recurring and nobody has
changed the topic for a while, the tracker occasionally proposes a
topic-change system message. Greetings and join/part chatter are ignored
so that onboarding noise does not look like repetition.

State is per process and never persisted.
"""

from __future__ import annotations

import logging
import random
import re
import time
from collections import Counter, deque
from collections.abc import Callable
from dataclasses import dataclass

from station_v.models import Message

logger = logging.getLogger(__name__)

PHRASE_LIMIT = 50
TOPIC_HISTORY_LIMIT = 10
REPEAT_THRESHOLD = 2      # a phrase "recurs" when seen more than this
RECURRING_PHRASES = 3     # suggest when more than this many phrases recur
TOPIC_COOLDOWN = 300.0    # seconds since the last topic change
SUGGEST_CHANCE = 0.3
SUGGEST_DELAY = (2.0, 5.0)

TOPIC_SUGGESTIONS = (
    "Let's talk about something completely different!",
    "This conversation is getting repetitive, how about a new topic?",
    "Anyone want to change the subject?",
    "We've been going in circles, let's try something fresh!",
    "Time for a topic change, what should we discuss?",
)

_SKIPPED_TYPES = frozenset({"system", "join", "part", "quit"})

# Whole-word greeting phrases, by language.
GREETING_PHRASES = (
    # English
    "welcome", "hello", "hi", "hey", "greetings", "howdy", "sup", "what's up", "whats up",
    "good morning", "good afternoon", "good evening", "how are you", "how's it going",
    "nice to meet", "good to see", "glad to see", "great to see", "welcome back",
    # Spanish
    "hola", "buenos días", "buenas tardes", "buenas noches", "saludos", "bienvenido",
    "bienvenida", "bienvenidos", "qué tal", "cómo estás",
    # French
    "bonjour", "bonsoir", "salut", "bienvenue", "comment ça va", "comment allez-vous",
    # German and Dutch
    "hallo", "guten tag", "guten morgen", "guten abend", "willkommen", "wie geht's",
    "goedemorgen", "goedenavond", "welkom", "hoe gaat het",
    # Italian and Portuguese
    "ciao", "buongiorno", "buonasera", "benvenuto", "benvenuti", "come stai",
    "olá", "bom dia", "boa tarde", "boa noite", "bem-vindo", "bem-vindos",
    # Nordic
    "hej", "hei", "moi", "terve", "god morgon", "god morgen", "välkommen", "velkommen",
    "tervetuloa", "mitä kuuluu",
    # Russian and Arabic
    "привет", "здравствуйте", "доброе утро", "добрый день", "добро пожаловать",
    "مرحبا", "السلام عليكم", "أهلا وسهلا",
)

# Scripts without word separators are matched as plain substrings.
GREETING_FRAGMENTS = (
    "こんにちは", "こんばんは", "おはよう", "ようこそ",
    "你好", "您好", "大家好", "早上好", "晚上好", "欢迎",
    "안녕하세요", "안녕", "환영합니다",
)

_GREETING_RE = re.compile(
    r"(?<!\w)(?:" + "|".join(re.escape(p) for p in GREETING_PHRASES) + r")(?!\w)"
)


def is_greeting(content: str) -> bool:
    text = content.lower()
    return bool(_GREETING_RE.search(text)) or any(f in text for f in GREETING_FRAGMENTS)


def extract_phrases(content: str) -> list[str]:
    """Contiguous word bigrams and trigrams longer than three characters."""
    words = content.lower().split()
    phrases = []
    for i in range(len(words) - 1):
        for length in (2, 3):
            if i + length > len(words):
                break
            phrase = " ".join(words[i:i + length])
            if len(phrase) > 3:
                phrases.append(phrase)
    return phrases


@dataclass(frozen=True)
class TopicSuggestion:
    """A topic-change system message to post to ``channel`` after ``delay`` seconds."""

    channel: str
    text: str
    delay: float


class PatternTracker:
    def __init__(
        self,
        rng: random.Random | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._rng = rng or random.Random()
        self._clock = clock
        self.phrases: deque[str] = deque(maxlen=PHRASE_LIMIT)
        self.topic_history: deque[str] = deque(maxlen=TOPIC_HISTORY_LIMIT)
        # None until the first topic message; no cooldown applies before it.
        self.last_topic_change: float | None = None

    def recurring_phrases(self) -> list[str]:
        counts = Counter(self.phrases)
        return [phrase for phrase, n in counts.items() if n > REPEAT_THRESHOLD]

    def _topic_cooldown_over(self) -> bool:
        if self.last_topic_change is None:
            return True
        return self._clock() - self.last_topic_change > TOPIC_COOLDOWN

    def observe(self, message: Message, channel: str) -> TopicSuggestion | None:
        """Feed one channel message; return a suggestion when one should be posted."""
        if message.type in _SKIPPED_TYPES:
            return None

        if message.type == "topic":
            self.topic_history.append(message.content)
            self.last_topic_change = self._clock()
            return None

        if is_greeting(message.content):
            return None

        self.phrases.extend(extract_phrases(message.content))

        recurring = self.recurring_phrases()
        if len(recurring) <= RECURRING_PHRASES or not self._topic_cooldown_over():
            return None
        if self._rng.random() >= SUGGEST_CHANCE:
            return None

        suggestion = TopicSuggestion(
            channel=channel,
            text=self._rng.choice(TOPIC_SUGGESTIONS),
            delay=self._rng.uniform(*SUGGEST_DELAY),
        )
        logger.debug(
            "suggesting topic change in %s (%d recurring phrases)", channel, len(recurring)
        )
        return suggestion
