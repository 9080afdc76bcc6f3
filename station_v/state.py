"""In-memory simulation state.

One ``SimulationState`` object owns everything the scheduler, DM engine and
ingestion pipeline read and write. Updates replace whole model instances
(``model_copy``); a reader that grabbed a channel before an ``await`` keeps
a consistent snapshot even if the channel is replaced meanwhile.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

from station_v.models import (
    Actor,
    Channel,
    DirectConversation,
    Message,
    MessageType,
    Target,
)


class SimulationState:
    def __init__(
        self,
        human: str,
        actors: list[Actor] | None = None,
        channels: list[Channel] | None = None,
        clock: Callable[[], datetime] = datetime.now,
        conversations: list[DirectConversation] | None = None,
    ) -> None:
        self.clock = clock
        self.human = human
        self.actors: dict[str, Actor] = {a.name: a for a in actors or []}
        if human not in self.actors:
            self.actors[human] = Actor(name=human, type="human")
        self.channels: dict[str, Channel] = {c.name: c for c in channels or []}
        self.conversations: dict[str, DirectConversation] = {
            c.with_actor: c for c in conversations or []
        }
        self.active: Target | None = None
        self.unread: set[str] = set()
        self.typing: dict[str, set[str]] = {}
        self.last_human_message: datetime | None = None
        self._last_id = 0

    # ── Messages ──────────────────────────────────────────

    def next_message_id(self) -> int:
        """Monotonic id: wall-clock milliseconds, bumped past the previous id."""
        now_ms = int(self.clock().timestamp() * 1000)
        self._last_id = max(now_ms, self._last_id + 1)
        return self._last_id

    def new_message(
        self, author: str, content: str, type: MessageType, **extra: Any
    ) -> Message:
        return Message(
            id=self.next_message_id(),
            author=author,
            content=content,
            timestamp=self.clock(),
            type=type,
            **extra,
        )

    # ── Lookups ───────────────────────────────────────────

    def actor(self, name: str) -> Actor | None:
        return self.actors.get(name)

    def synthetic_members(self, channel: Channel) -> list[Actor]:
        members = (self.actors.get(name) for name in channel.members)
        return [a for a in members if a is not None and a.is_synthetic]

    def non_human_members(self, channel: Channel) -> list[str]:
        return [
            name for name in channel.members
            if name in self.actors and self.actors[name].type != "human"
        ]

    def synthetic_actors_in_channels(self) -> list[Actor]:
        """Synthetic actors that are a member of at least one channel."""
        seen: dict[str, Actor] = {}
        for channel in self.channels.values():
            for actor in self.synthetic_members(channel):
                seen.setdefault(actor.name, actor)
        return list(seen.values())

    def is_active(self, target: Target) -> bool:
        return self.active is not None and self.active == target

    # ── Copy-on-write updates ─────────────────────────────

    def put_channel(self, channel: Channel) -> None:
        self.channels[channel.name] = channel

    def put_conversation(self, conversation: DirectConversation) -> None:
        self.conversations[conversation.with_actor] = conversation

    def put_actor(self, actor: Actor) -> None:
        self.actors[actor.name] = actor

    def conversation(self, name: str) -> DirectConversation:
        """The conversation with ``name``, created empty on first use."""
        conversation = self.conversations.get(name)
        if conversation is None:
            conversation = DirectConversation(with_actor=name)
            self.conversations[name] = conversation
        return conversation

    def view(self, target: Target | None) -> None:
        """Make ``target`` the active context and clear its unread mark."""
        self.active = target
        if target is not None:
            self.unread.discard(target.key)

    def set_typing(self, target: Target, name: str, typing: bool) -> None:
        names = set(self.typing.get(target.key, set()))
        if typing:
            names.add(name)
        else:
            names.discard(name)
        self.typing[target.key] = names
