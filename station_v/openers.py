"""Rule-based conversation openers for autonomous direct messages.

Before a synthetic actor writes to the human, the DM engine needs a line
to reply to. ``contextual_opener`` picks one from phrase banks without
calling the generation backend, steering away from topics the
conversation has already worn out, then adapts it to the actor's
personality and writing style.
"""

from __future__ import annotations

import random
import re

from station_v.models import Actor, Message, WritingStyle

OPENERS = (
    "Hey there! How's it going?",
    "Hi! I was just thinking about you",
    "Hello! Hope you're having a good day",
    "Hey! I wanted to share something with you",
    "Hi there! I have a question for you",
    "Hello! I've been meaning to talk to you",
    "Hi! I had an interesting thought today",
    "Hey there! I wanted to get your opinion on something",
)

REPLIES_TO_PARTNER = (
    "That's really interesting! I hadn't thought of it that way",
    "I see what you mean. That makes a lot of sense",
    "That's a great point! I agree with you on that",
    "Tell me more about that - I'm curious",
    "That's cool! I love learning new things",
    "That's fascinating! I've been thinking about something similar",
    "I see what you mean. That reminds me of something",
    "That's cool! I've been thinking about that too",
)

QUESTIONS = (
    "That's interesting! What made you think of that?",
    "I see what you mean. How did that happen?",
    "That's cool! What's your experience with that been like?",
    "That's fascinating! Have you always felt that way?",
    "I see your point. What would you do in that situation?",
    "That's helpful! How did you figure that out?",
)

STORIES = (
    "That reminds me of something that happened to me...",
    "I had a similar experience once...",
    "I can relate to that. I remember when...",
    "That's cool! I've had a similar situation...",
    "That's fascinating! I remember...",
    "I agree. I remember when...",
)

OBSERVATIONS = (
    "I've been noticing something interesting lately...",
    "I had a random thought today...",
    "I noticed something curious...",
    "I had an interesting realization...",
    "I noticed something that made me think...",
    "I've been reflecting on...",
)

TOPIC_SHIFTS = (
    "Speaking of that, I've been thinking about something else...",
    "That reminds me, I wanted to ask you about...",
    "On a different note, I've been wondering...",
    "Changing the subject a bit, I've been thinking...",
    "That's cool! I also wanted to mention...",
    "I agree. I also wanted to share...",
)

EARLY = (
    "That's really interesting! I'm enjoying our conversation",
    "I see what you mean. This is fascinating",
    "That's a good point! I hadn't thought of that",
    "That's helpful! I appreciate you sharing",
)

MIDDLE = (
    "I've been thinking about what you said earlier",
    "That reminds me of something we discussed",
    "I have a question about what you mentioned",
    "That's interesting! I've been thinking about that too",
)

DEEP = (
    "I've been thinking deeply about what you said",
    "That reminds me of our earlier conversation about...",
    "That's a profound point! I've been reflecting on that",
    "That's fascinating! I've been exploring that idea",
)

TOPIC_KEYWORDS: dict[str, tuple[str, ...]] = {
    "work": ("work", "job", "career", "office", "business", "company", "profession",
             "employment"),
    "tech": ("tech", "computer", "programming", "code", "software", "technology", "coding",
             "development", "ai", "artificial intelligence"),
    "personal": ("family", "friend", "relationship", "personal", "life", "myself", "me",
                 "i am", "i feel", "i think"),
    "hobby": ("hobby", "game", "music", "movie", "book", "sport", "art", "creative", "fun",
              "entertainment"),
    "travel": ("travel", "trip", "vacation", "journey", "visit", "place", "country", "city",
               "adventure"),
    "food": ("food", "eat", "cook", "restaurant", "meal", "recipe", "taste", "delicious",
             "hungry"),
    "weather": ("weather", "rain", "sunny", "cold", "hot", "temperature", "climate", "season"),
    "health": ("health", "exercise", "fitness", "doctor", "medical", "wellness", "sick",
               "healthy"),
    "education": ("school", "university", "college", "study", "learn", "education",
                  "student", "teacher", "class"),
}

TOPIC_LINES: dict[str, tuple[str, ...]] = {
    "work": ("Work has been on my mind too lately", "What's your work environment like?",
             "I've been considering a career change",
             "What's the most challenging part of your job?"),
    "tech": ("Technology is evolving so fast these days",
             "What's your favorite programming language?",
             "What do you think about AI developments?",
             "I've been exploring new software tools"),
    "personal": ("I've been thinking about my relationships", "What's your family like?",
                 "What's most important to you in life?",
                 "I've been thinking about my priorities"),
    "hobby": ("I've been getting into new hobbies lately", "What do you do for fun?",
              "What's your favorite way to relax?", "What brings you joy?"),
    "travel": ("I've been thinking about traveling lately",
               "What's your favorite place you've visited?",
               "I love exploring new places", "What's your dream destination?"),
    "food": ("I've been trying new recipes lately", "What's your favorite type of cuisine?",
             "Food brings people together", "What's your go-to comfort food?"),
    "weather": ("The weather has been so unpredictable lately", "I love this time of year",
                "What's your favorite season?", "What's the weather like where you are?"),
    "health": ("I've been focusing on my health lately", "What do you do to stay healthy?",
               "I've been trying to exercise more", "What's your approach to wellness?"),
    "education": ("I've been learning so much lately",
                  "What's something new you've learned recently?",
                  "I love the process of learning", "What's your favorite subject to study?"),
}

_TOPIC_RES = {
    topic: [re.compile(rf"\b{re.escape(word)}\b") for word in words]
    for topic, words in TOPIC_KEYWORDS.items()
}

# personality → replacements for "I've been", "That's cool", "That's interesting", "What's"
PERSONALITY_PHRASES: dict[str, tuple[str, str, str, str]] = {
    "shy": ("I've been quietly", "That's nice", "That's interesting, I think", "What's"),
    "confident": ("I've definitely been", "That's awesome", "That's fascinating", "What's"),
    "curious": ("I've been really curious about", "That's so interesting",
                "That's incredibly interesting", "I'm really curious - what's"),
    "philosophical": ("I've been contemplating", "That's thought-provoking",
                      "That's deeply interesting", "What do you think about"),
    "humorous": ("I've been hilariously", "That's pretty cool, not gonna lie",
                 "That's interesting... and by interesting I mean weird",
                 "What's the deal with"),
    "supportive": ("I've been thinking about how you", "That's really cool",
                   "That's really interesting", "How are you feeling about"),
    "analytical": ("I've been analyzing", "That's logically sound",
                   "That's analytically interesting", "What's the data on"),
    "creative": ("I've been creatively exploring", "That's artistically cool",
                 "That's creatively interesting", "What's your creative take on"),
    "energetic": ("I've been enthusiastically", "That's AMAZING", "That's SO interesting",
                  "What's the most exciting thing about"),
    "calm": ("I've been peacefully", "That's nice", "That's quite interesting",
             "What's your peaceful perspective on"),
    "sarcastic": ("I've been 'enjoying'", "That's... cool", "That's... interesting",
                  "What's the deal with"),
    "optimistic": ("I've been positively", "That's wonderful", "That's fascinating",
                   "What's the best thing about"),
    "pessimistic": ("I've been thinking about how", "That's... okay",
                    "That's... interesting, I guess", "What's the worst thing about"),
    "mysterious": ("I've been quietly observing", "That's intriguing", "That's mysterious",
                   "What secrets do you know about"),
    "cynical": ("I've been cynically", "That's... cool, I guess",
                "That's... interesting, if you say so", "What's the catch with"),
}

_EXPANSIONS = (
    ("I've been", "I have been"),
    ("That's", "That is"),
    ("What's", "What is"),
    ("I'm", "I am"),
    ("I'll", "I will"),
    ("I'd", "I would"),
    ("don't", "do not"),
    ("won't", "will not"),
    ("can't", "cannot"),
)


def _topic_hits(topic: str, text: str) -> int:
    return sum(1 for pattern in _TOPIC_RES[topic] if pattern.search(text))


def personalize(text: str, personality: str, style: WritingStyle) -> str:
    """Adapt a bank line to an actor's personality and writing style."""
    phrases = PERSONALITY_PHRASES.get(personality)
    if phrases is not None:
        been, cool, interesting, whats = phrases
        text = text.replace("I've been", been)
        text = text.replace("That's cool", cool)
        text = text.replace("That's interesting", interesting)
        if whats != "What's":
            text = text.replace("What's", whats)

    if style.formality == "ultra_formal":
        for short, long in _EXPANSIONS:
            text = text.replace(short, long)
    elif style.formality == "ultra_casual":
        for short, long in _EXPANSIONS:
            text = text.replace(long, short)

    if style.emoji_usage in ("frequent", "excessive"):
        text += " 😊"
    elif style.emoji_usage == "emoji_only":
        text = f"😊 {text} 😊"
    return text


def contextual_opener(
    actor: Actor, history: list[Message], human: str, rng: random.Random
) -> str:
    """A line for ``actor`` to answer, chosen from the DM ``history`` with ``human``."""

    def pick(bank: tuple[str, ...]) -> str:
        return personalize(rng.choice(bank), actor.personality, actor.writing_style)

    if not history:
        return pick(OPENERS)
    if history[-1].author != human:
        return pick(REPLIES_TO_PARTNER)

    if rng.random() < 0.3:
        return pick(QUESTIONS)
    if rng.random() < 0.25:
        return pick(STORIES)

    texts = [m.content.lower() for m in history]
    total = {t: sum(_topic_hits(t, text) for text in texts) for t in TOPIC_KEYWORDS}
    recent = {t: sum(_topic_hits(t, text) for text in texts[-3:]) for t in TOPIC_KEYWORDS}
    overused = {t for t in TOPIC_KEYWORDS if recent[t] > 2 or total[t] > 5}
    undiscussed = [t for t in TOPIC_KEYWORDS if recent[t] == 0 and total[t] < 3]

    for topic in TOPIC_KEYWORDS:
        in_play = any(_topic_hits(topic, text) for text in texts[-5:])
        if in_play and topic not in overused and rng.random() < 0.4:
            return pick(TOPIC_LINES[topic])

    if undiscussed and rng.random() < 0.3:
        return pick(TOPIC_LINES[rng.choice(undiscussed)])
    if rng.random() < 0.2:
        return pick(OBSERVATIONS)
    if rng.random() < 0.15:
        return pick(TOPIC_SHIFTS)

    if len(history) < 3:
        return pick(EARLY)
    if len(history) < 8:
        return pick(MIDDLE)
    return pick(DEEP)
