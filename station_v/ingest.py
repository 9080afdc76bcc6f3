"""Message ingestion: the single funnel every chat line goes through.

``MessagePipeline.ingest`` performs, for one message:

  1. link/image extraction (unsafe URLs dropped, content cleaned)
  2. id-deduplicated append to the channel or DM log, capped at 1000
  3. relationship-memory updates for synthetic members other than the author
  4. pattern tracking (channel messages only)
  5. unread marking
  6. cross-context broadcast of synthetic-authored channel messages
  7. fire-and-forget persistence

Steps 1–5 complete synchronously before the call returns. Broadcast and
persistence are best effort; their failures are logged and never reach
the caller.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from typing import Any, Protocol

from pydantic import ValidationError

from station_v import relationships
from station_v.broadcast import BroadcastChannel, BroadcastClosedError, Envelope
from station_v.links import extract_links, strip_urls
from station_v.models import ChannelRef, Message, Target, append_capped
from station_v.patterns import PatternTracker, TopicSuggestion
from station_v.state import SimulationState

logger = logging.getLogger(__name__)

SEEN_CAPACITY = 1000
BROADCAST_SPACING = 0.1


class Persistence(Protocol):
    async def save_message(self, target: Target, message: Message) -> None: ...


class SeenIds:
    """Fixed-capacity set of message ids; the oldest id is evicted first."""

    def __init__(self, capacity: int = SEEN_CAPACITY) -> None:
        self.capacity = capacity
        self._ids: OrderedDict[int, None] = OrderedDict()

    def __contains__(self, message_id: int) -> bool:
        return message_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def add(self, message_id: int) -> None:
        if message_id in self._ids:
            return
        self._ids[message_id] = None
        while len(self._ids) > self.capacity:
            self._ids.popitem(last=False)


class MessagePipeline:
    def __init__(
        self,
        state: SimulationState,
        tracker: PatternTracker | None = None,
        persistence: Persistence | None = None,
        broadcast: BroadcastChannel | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.state = state
        self.tracker = tracker
        self.persistence = persistence
        self.broadcast = broadcast
        self.processed = SeenIds()
        self._clock = clock
        self._last_broadcast: float | None = None
        self._tasks: set[asyncio.Task] = set()
        if broadcast is not None:
            broadcast.subscribe(self.receive)

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest(self, message: Message, target: Target, *, local: bool = True) -> Message | None:
        """Add ``message`` to ``target``. Returns the stored message, or None if dropped."""
        message = self._with_links(message)

        if isinstance(target, ChannelRef):
            if not self._append_to_channel(message, target):
                return None
        elif not self._append_to_conversation(message, target.with_actor):
            return None

        if message.author != self.state.human and not self.state.is_active(target):
            self.state.unread.add(target.key)

        if local:
            self._broadcast(message, target)
        self._persist(target, message)
        return message

    def _with_links(self, message: Message) -> Message:
        extracted = extract_links(message.content)
        if not extracted.urls:
            return message
        update: dict[str, Any] = {}
        if message.links is None and message.images is None:
            update["content"] = strip_urls(message.content, extracted.urls)
        if extracted.links:
            update["links"] = extracted.links
        if message.images is None and extracted.images:
            update["images"] = extracted.images
        return message.model_copy(update=update)

    def _append_to_channel(self, message: Message, target: ChannelRef) -> bool:
        channel = self.state.channels.get(target.name)
        if channel is None:
            logger.warning("dropping message %d for unknown channel %s", message.id, target.name)
            return False
        if channel.has_message(message.id):
            logger.debug("duplicate message %d in %s, skipping", message.id, target.name)
            return False

        self.state.put_channel(
            channel.model_copy(update={"messages": append_capped(channel.messages, message)})
        )
        now = self.state.clock()
        for actor in self.state.synthetic_members(channel):
            if actor.name != message.author:
                self.state.put_actor(
                    relationships.update(actor, message.author, channel.name, message, now)
                )

        if self.tracker is not None:
            suggestion = self.tracker.observe(message, channel.name)
            if suggestion is not None:
                self._spawn(self._post_suggestion(suggestion))
        return True

    def _append_to_conversation(self, message: Message, partner: str) -> bool:
        conversation = self.state.conversation(partner)
        if conversation.has_message(message.id):
            logger.debug("duplicate message %d in DM with %s, skipping", message.id, partner)
            return False

        self.state.put_conversation(
            conversation.model_copy(
                update={"messages": append_capped(conversation.messages, message)}
            )
        )
        actor = self.state.actor(partner)
        if actor is not None and message.author != partner:
            self.state.put_actor(relationships.update(
                actor, message.author, f"pm_{partner}", message, self.state.clock(), kind="pm"
            ))
        return True

    async def _post_suggestion(self, suggestion: TopicSuggestion) -> None:
        await asyncio.sleep(suggestion.delay)
        message = self.state.new_message("system", suggestion.text, "system")
        self.ingest(message, ChannelRef(name=suggestion.channel))

    # ------------------------------------------------------------------
    # Broadcast
    # ------------------------------------------------------------------

    def _broadcast(self, message: Message, target: Target) -> None:
        if self.broadcast is None or not isinstance(target, ChannelRef):
            return
        author = self.state.actor(message.author)
        if author is None or not author.is_synthetic:
            return
        if message.id in self.processed:
            return

        now = self._clock()
        if self._last_broadcast is not None and now - self._last_broadcast < BROADCAST_SPACING:
            logger.debug("broadcast of %d skipped, too soon after the previous one", message.id)
            return

        self.processed.add(message.id)
        try:
            self.broadcast.post(Envelope.for_message(message, target.name).to_wire())
        except BroadcastClosedError:
            logger.warning("broadcast channel closed; continuing without cross-context sync")
            self.broadcast = None
            return
        self._last_broadcast = now

    def receive(self, payload: dict[str, Any]) -> None:
        """Ingest a message broadcast by another context, at most once."""
        if payload.get("type") != "virtualMessage":
            return
        try:
            envelope = Envelope.model_validate(payload)
        except ValidationError:
            logger.warning("ignoring malformed broadcast payload")
            return

        message = envelope.data.message
        if message.id in self.processed:
            return
        self.processed.add(message.id)
        self.ingest(message, ChannelRef(name=envelope.data.channel_name), local=False)

    # ------------------------------------------------------------------
    # Persistence and background tasks
    # ------------------------------------------------------------------

    def _persist(self, target: Target, message: Message) -> None:
        if self.persistence is None:
            return
        task = self._spawn(self.persistence.save_message(target, message))
        task.add_done_callback(_log_persistence_failure)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def drain(self) -> None:
        """Wait for pending persistence writes and topic suggestions."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self) -> None:
        for task in list(self._tasks):
            task.cancel()


def _log_persistence_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("failed to persist message: %s", exc)
