"""Core domain models.

Every simulation component reads and writes these types. Pydantic is used
for validation and serialisation at every data boundary, so timestamps
that went through a JSON round-trip come back as real datetimes at load
time and are never re-probed later.

Messages are frozen: once a message is appended to a log it is only ever
superseded, never edited. Channels and conversations are replaced as a
whole (``model_copy``) whenever their log or membership changes.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

MAX_LOG_LENGTH = 1000

ActorType = Literal["human", "synthetic", "bot", "remote"]

MessageType = Literal[
    "system",
    "user",
    "ai",
    "pm",
    "action",
    "notice",
    "topic",
    "join",
    "part",
    "quit",
    "kick",
    "ban",
    "bot",
]

RelationshipLevel = Literal["stranger", "acquaintance", "friendly", "close", "enemy"]

Sentiment = Literal["positive", "neutral", "negative"]

InteractionKind = Literal["message_exchange", "topic_discussion", "reaction", "quote", "pm"]


class WritingStyle(BaseModel):
    """How an actor writes; fed into prompts and opener personalisation."""

    formality: str = "casual"
    verbosity: str = "moderate"
    humor: str = "none"
    emoji_usage: str = "rare"
    punctuation: str = "standard"


class InteractionRecord(BaseModel):
    timestamp: datetime
    channel: str
    kind: InteractionKind = "message_exchange"
    context: str  # first 100 chars of the message
    sentiment: Sentiment = "neutral"


class RelationshipRecord(BaseModel):
    """What one synthetic actor remembers about another identity."""

    other: str
    level: RelationshipLevel = "stranger"
    shared_channels: list[str] = Field(default_factory=list)
    interaction_count: int = 0
    first_seen: datetime
    last_seen: datetime
    history: list[InteractionRecord] = Field(default_factory=list)
    shared_topics: list[str] = Field(default_factory=list)


class Actor(BaseModel):
    """A chat participant: the human, a synthetic persona, a bot or a remote user."""

    name: str
    type: ActorType = "synthetic"
    personality: str = "friendly"
    writing_style: WritingStyle = Field(default_factory=WritingStyle)
    pm_probability: int | None = Field(default=None, ge=0, le=100)
    relationships: dict[str, RelationshipRecord] = Field(default_factory=dict)

    @property
    def is_synthetic(self) -> bool:
        return self.type == "synthetic"


class Message(BaseModel):
    """A single, immutable chat line."""

    model_config = ConfigDict(frozen=True)

    id: int
    author: str
    content: str
    timestamp: datetime
    type: MessageType
    command: str | None = None
    links: list[str] | None = None
    images: list[str] | None = None


def append_capped(log: list[Message], message: Message) -> list[Message]:
    """Return a new log with ``message`` appended, keeping the newest entries."""
    return [*log, message][-MAX_LOG_LENGTH:]


class Channel(BaseModel):
    """A named room with members, a bounded log, a topic and operators."""

    name: str
    topic: str = ""
    members: list[str] = Field(default_factory=list)
    messages: list[Message] = Field(default_factory=list)
    operators: list[str] = Field(default_factory=list)

    @field_validator("members")
    @classmethod
    def _unique_members(cls, members: list[str]) -> list[str]:
        return list(dict.fromkeys(members))

    @field_validator("messages")
    @classmethod
    def _cap_messages(cls, messages: list[Message]) -> list[Message]:
        return messages[-MAX_LOG_LENGTH:]

    def has_message(self, message_id: int) -> bool:
        return any(m.id == message_id for m in self.messages)


class DirectConversation(BaseModel):
    """A private conversation between the human and one other actor."""

    with_actor: str
    messages: list[Message] = Field(default_factory=list)

    @field_validator("messages")
    @classmethod
    def _cap_messages(cls, messages: list[Message]) -> list[Message]:
        return messages[-MAX_LOG_LENGTH:]

    def has_message(self, message_id: int) -> bool:
        return any(m.id == message_id for m in self.messages)


class ChannelRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["channel"] = "channel"
    name: str

    @property
    def key(self) -> str:
        return self.name


class DirectRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["dm"] = "dm"
    with_actor: str

    @property
    def key(self) -> str:
        # DM logs are persisted under a namespace distinct from channel names
        return f"pm_{self.with_actor}"


# A message target, and also the "what is the human looking at" context.
Target = Union[ChannelRef, DirectRef]
