"""Composition root: one ``Simulation`` per running network.

Wires state, limiter, pattern tracker, ingestion pipeline, DM engine and
scheduler together from an ``AppConfig``, and exposes the actions the
human can take.
"""

from __future__ import annotations

import logging
import random
from collections.abc import Callable
from datetime import datetime

from station_v.bots import BotHandler
from station_v.broadcast import BroadcastChannel
from station_v.config import AppConfig
from station_v.dm import DirectMessageEngine
from station_v.ingest import MessagePipeline, Persistence
from station_v.limiter import ConcurrencyLimiter
from station_v.llm import LLM, EchoLLM, HttpLLM
from station_v.models import (
    Actor,
    Channel,
    ChannelRef,
    DirectConversation,
    DirectRef,
    Message,
    Target,
)
from station_v.patterns import PatternTracker
from station_v.prompts import Generator
from station_v.scheduler import Scheduler
from station_v.state import SimulationState

logger = logging.getLogger(__name__)


class UnknownTargetError(LookupError):
    """Raised for a channel or actor that does not exist."""


def llm_from_config(config: AppConfig) -> LLM:
    if not config.llm.provider_url:
        logger.warning("no LLM provider configured, using EchoLLM")
        return EchoLLM()
    return HttpLLM(
        provider_url=config.llm.provider_url,
        api_key=config.llm.api_key,
        provider_format=config.llm.provider_format,
        model=config.llm.model or config.ai_model,
        timeout=config.llm.timeout,
    )


class Simulation:
    def __init__(
        self,
        config: AppConfig,
        actors: list[Actor] | None = None,
        channels: list[Channel] | None = None,
        llm: LLM | None = None,
        persistence: Persistence | None = None,
        broadcast: BroadcastChannel | None = None,
        bots: BotHandler | None = None,
        rng: random.Random | None = None,
        clock: Callable[[], datetime] = datetime.now,
        conversations: list[DirectConversation] | None = None,
    ) -> None:
        self.config = config
        rng = rng or random.Random()
        self.state = SimulationState(
            config.nickname, actors, channels, clock=clock, conversations=conversations
        )
        self.limiter = ConcurrencyLimiter()
        self.tracker = PatternTracker(rng=rng)
        self.pipeline = MessagePipeline(
            self.state, tracker=self.tracker, persistence=persistence, broadcast=broadcast
        )
        self.generator = Generator(llm or llm_from_config(config), self.state)
        self.dm_engine = DirectMessageEngine(
            self.state, self.generator, self.limiter, self.pipeline, tuning=config.tuning, rng=rng
        )
        self.scheduler = Scheduler(
            self.state,
            self.generator,
            self.limiter,
            self.pipeline,
            self.dm_engine,
            speed=config.simulation_speed,
            typing=config.typing_delay,
            tuning=config.tuning,
            bots=bots,
            model=config.ai_model,
            image_config=config.image,
            rng=rng,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        self.scheduler.start()

    async def stop(self) -> None:
        await self.scheduler.stop()
        self.pipeline.close()

    def apply_config(self, config: AppConfig) -> None:
        """Take over pacing, typing and image settings from an updated config."""
        self.config = config
        self.scheduler.typing = config.typing_delay
        self.scheduler.tuning = config.tuning
        self.scheduler.image_config = config.image
        self.dm_engine.tuning = config.tuning
        if config.simulation_speed != self.scheduler.speed:
            self.scheduler.set_speed(config.simulation_speed)

    # ------------------------------------------------------------------
    # Human actions
    # ------------------------------------------------------------------

    def _channel(self, name: str) -> Channel:
        channel = self.state.channels.get(name)
        if channel is None:
            raise UnknownTargetError(f"unknown channel {name}")
        return channel

    def view(self, target: Target | None) -> None:
        if isinstance(target, ChannelRef):
            self._channel(target.name)
        elif isinstance(target, DirectRef) and self.state.actor(target.with_actor) is None:
            raise UnknownTargetError(f"unknown actor {target.with_actor}")
        self.state.view(target)

    def send_human_message(self, channel: str, text: str) -> Message | None:
        """Post as the human; starts a burst of heightened activity."""
        self._channel(channel)
        message = self.state.new_message(self.state.human, text, "user")
        self.state.last_human_message = self.state.clock()
        return self.pipeline.ingest(message, ChannelRef(name=channel))

    async def send_human_dm(self, name: str, text: str) -> tuple[Message | None, Message | None]:
        """DM an actor as the human; a synthetic actor replies in character."""
        if self.state.actor(name) is None:
            raise UnknownTargetError(f"unknown actor {name}")
        message = self.state.new_message(self.state.human, text, "pm")
        sent = self.pipeline.ingest(message, DirectRef(with_actor=name))
        try:
            reply = await self.dm_engine.reply_to_human(name)
        except Exception:
            logger.exception("reply from %s failed", name)
            reply = None
        return sent, reply

    def join_channel(self, name: str) -> Message | None:
        channel = self._channel(name)
        if self.state.human in channel.members:
            return None
        self.state.put_channel(
            channel.model_copy(update={"members": [*channel.members, self.state.human]})
        )
        message = self.state.new_message(self.state.human, f"joined {name}", "join")
        return self.pipeline.ingest(message, ChannelRef(name=name))

    def leave_channel(self, name: str) -> Message | None:
        channel = self._channel(name)
        if self.state.human not in channel.members:
            return None
        message = self.state.new_message(self.state.human, f"left {name}", "part")
        stored = self.pipeline.ingest(message, ChannelRef(name=name))
        channel = self._channel(name)
        self.state.put_channel(channel.model_copy(
            update={"members": [m for m in channel.members if m != self.state.human]}
        ))
        if self.state.active == ChannelRef(name=name):
            self.state.view(None)
        return stored

    def set_topic(self, name: str, topic: str) -> Message | None:
        channel = self._channel(name)
        self.state.put_channel(channel.model_copy(update={"topic": topic}))
        message = self.state.new_message(self.state.human, topic, "topic")
        return self.pipeline.ingest(message, ChannelRef(name=name))
