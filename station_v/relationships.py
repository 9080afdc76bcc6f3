"""Relationship memory: what each synthetic actor remembers about others.

Records are created lazily on first contact and updated on every
interaction after that. The level is recomputed on each update from the
interaction count, time known and time since last contact:

    gap since last contact > 7 days → demote one tier
    count ≥ 50 and known ≥ 3 days   → close
    count ≥ 20 and known ≥ 1 day    → friendly
    count ≥ 5                       → acquaintance
    otherwise                       → stranger

``enemy`` is set explicitly and never changed by progression or decay.
All functions here return new models; nothing is mutated in place.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta

from station_v.models import (
    Actor,
    InteractionKind,
    InteractionRecord,
    Message,
    RelationshipLevel,
    RelationshipRecord,
    Sentiment,
)

HISTORY_LIMIT = 20
TOPIC_LIMIT = 10
CONTEXT_LENGTH = 100
DECAY_AFTER_DAYS = 7  # whole days of silence before a level drops

_DEMOTE: dict[RelationshipLevel, RelationshipLevel] = {
    "close": "friendly",
    "friendly": "acquaintance",
    "acquaintance": "stranger",
    "stranger": "stranger",
    "enemy": "enemy",
}

POSITIVE_WORDS = (
    "thanks", "thank you", "great", "awesome", "cool", "nice", "good", "love",
    "like", "appreciate", "helpful", "amazing", "wonderful", "excellent", "fantastic",
)
NEGATIVE_WORDS = (
    "hate", "stupid", "bad", "terrible", "awful", "annoying", "boring", "wrong",
    "disagree", "angry", "mad", "frustrated", "disappointed",
)

TOPIC_KEYWORDS: dict[str, tuple[str, ...]] = {
    "programming": ("code", "programming", "coding", "developer", "software", "bug", "debug",
                    "function", "variable", "api", "javascript", "python", "react", "node"),
    "gaming": ("game", "gaming", "play", "player", "level", "score", "quest", "rpg", "fps",
               "multiplayer", "steam", "console"),
    "music": ("music", "song", "band", "album", "concert", "guitar", "piano", "drum",
              "spotify", "youtube", "sound"),
    "movies": ("movie", "film", "cinema", "actor", "director", "netflix", "hulu", "disney",
               "marvel", "dc"),
    "sports": ("sport", "football", "basketball", "soccer", "tennis", "golf", "team",
               "player", "match", "game"),
    "food": ("food", "eat", "restaurant", "cooking", "recipe", "pizza", "burger", "coffee",
             "tea", "breakfast", "lunch", "dinner"),
    "travel": ("travel", "trip", "vacation", "hotel", "flight", "airplane", "city",
               "country", "beach", "mountain"),
    "technology": ("tech", "technology", "computer", "phone", "internet", "ai",
                   "machine learning", "data", "cloud", "server"),
    "books": ("book", "reading", "novel", "author", "story", "chapter", "library", "kindle",
              "ebook"),
    "art": ("art", "painting", "drawing", "artist", "gallery", "museum", "creative", "design",
            "color", "canvas"),
}


def _keyword_pattern(words: tuple[str, ...]) -> re.Pattern[str]:
    # Whole words only, with an optional plural "s" ("games", "songs").
    alternatives = "|".join(re.escape(w) for w in words)
    return re.compile(rf"\b(?:{alternatives})s?\b", re.IGNORECASE)


_POSITIVE_RE = _keyword_pattern(POSITIVE_WORDS)
_NEGATIVE_RE = _keyword_pattern(NEGATIVE_WORDS)
_TOPIC_RES = {topic: _keyword_pattern(words) for topic, words in TOPIC_KEYWORDS.items()}


# ── Classification ────────────────────────────────────────


def classify_sentiment(content: str) -> Sentiment:
    positive = len(_POSITIVE_RE.findall(content))
    negative = len(_NEGATIVE_RE.findall(content))
    if positive > negative:
        return "positive"
    if negative > positive:
        return "negative"
    return "neutral"


def extract_topics(content: str) -> list[str]:
    """Topic categories mentioned in ``content``, in category order."""
    return [topic for topic, pattern in _TOPIC_RES.items() if pattern.search(content)]


# ── Level rule ────────────────────────────────────────────


def next_level(
    current: RelationshipLevel,
    count: int,
    first_seen: datetime,
    last_seen: datetime,
    now: datetime,
) -> RelationshipLevel:
    if current == "enemy":
        return "enemy"
    if (now - last_seen).days > DECAY_AFTER_DAYS:
        return _DEMOTE[current]

    days_known = (now - first_seen) / timedelta(days=1)
    if count >= 50 and days_known >= 3:
        return "close"
    if count >= 20 and days_known >= 1:
        return "friendly"
    if count >= 5:
        return "acquaintance"
    return "stranger"


def relationship_level(record: RelationshipRecord, now: datetime) -> RelationshipLevel:
    """The level ``record`` would have if it were recomputed at ``now``."""
    return next_level(
        record.level, record.interaction_count, record.first_seen, record.last_seen, now
    )


# ── Update ────────────────────────────────────────────────


def update(
    owner: Actor,
    other: str,
    channel: str,
    message: Message,
    now: datetime | None = None,
    kind: InteractionKind = "message_exchange",
) -> Actor:
    """Record that ``owner`` saw ``message`` from ``other`` in ``channel``.

    Returns ``owner`` unchanged when it is not a synthetic actor or when it
    would be recording an interaction with itself.
    """
    if not owner.is_synthetic or other == owner.name:
        return owner
    now = now or message.timestamp

    previous = owner.relationships.get(other) or RelationshipRecord(
        other=other, first_seen=now, last_seen=now
    )
    count = previous.interaction_count + 1

    channels = previous.shared_channels
    if channel not in channels:
        channels = [*channels, channel]

    interaction = InteractionRecord(
        timestamp=now,
        channel=channel,
        kind=kind,
        context=message.content[:CONTEXT_LENGTH],
        sentiment=classify_sentiment(message.content),
    )

    topics = list(previous.shared_topics)
    for topic in extract_topics(message.content):
        if topic not in topics:
            topics.append(topic)

    record = previous.model_copy(update={
        "interaction_count": count,
        "shared_channels": channels,
        "history": [*previous.history, interaction][-HISTORY_LIMIT:],
        "shared_topics": topics[-TOPIC_LIMIT:],
        "level": next_level(previous.level, count, previous.first_seen, previous.last_seen, now),
        "last_seen": now,
    })
    return owner.model_copy(update={"relationships": {**owner.relationships, other: record}})


# ── Prompt digest ─────────────────────────────────────────


def context_summary(owner: Actor, other: str, channel: str, now: datetime) -> str:
    """Short natural-language digest of a relationship, for generation prompts.

    Returns an empty string when ``owner`` has never interacted with ``other``.
    """
    record = owner.relationships.get(other)
    if record is None:
        return ""

    parts = [
        f"Relationship Level: {record.level}",
        f"Interactions: {record.interaction_count} total",
    ]
    if channel in record.shared_channels:
        parts.append(f"You've interacted with {other} in {channel} before")
    else:
        parts.append(f"This is your first interaction with {other} in {channel}")

    recent = record.history[-3:]
    if recent:
        parts.append("Recent interactions: " + ", ".join(i.context[:50] for i in recent))
    if record.shared_topics:
        parts.append("Shared interests: " + ", ".join(record.shared_topics))

    days = (now - record.last_seen).days
    if days > 0:
        parts.append(f"Last interaction: {days} day{'s' if days > 1 else ''} ago")
    else:
        parts.append("Last interaction: today")
    return ". ".join(parts) + "."
