"""Autonomous direct messages from synthetic actors to the human.

Once per scheduler tick the engine may have one synthetic actor open (or
continue) a private conversation. Each message is produced in two steps:
a rule-based opener stands in for the human's side of the exchange, then
the generation backend writes the actor's in-character reply to it.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable

from station_v.activity import dm_probability, is_afterhours
from station_v.config import SimulationTuning
from station_v.ingest import MessagePipeline
from station_v.limiter import ConcurrencyLimiter
from station_v.models import Actor, DirectRef, Message
from station_v.openers import contextual_opener
from station_v.prompts import Generator, strip_speaker_prefix
from station_v.state import SimulationState

logger = logging.getLogger(__name__)


class DirectMessageEngine:
    def __init__(
        self,
        state: SimulationState,
        generator: Generator,
        limiter: ConcurrencyLimiter,
        pipeline: MessagePipeline,
        tuning: SimulationTuning | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.state = state
        self.generator = generator
        self.limiter = limiter
        self.pipeline = pipeline
        self.tuning = tuning or SimulationTuning()
        self.rng = rng or random.Random()
        self._sleep = sleep

    def _trigger_probability(self, actor: Actor) -> float:
        base = actor.pm_probability
        if base is None:
            base = self.tuning.default_pm_probability
        return dm_probability(
            base,
            self.state.clock(),
            multiplier=self.tuning.afterhours_pm_multiplier,
            cap=self.tuning.afterhours_pm_cap,
        )

    def candidates(self) -> list[Actor]:
        return self.state.synthetic_actors_in_channels()

    def _viewed_partner(self) -> Actor | None:
        active = self.state.active
        if not isinstance(active, DirectRef):
            return None
        actor = self.state.actor(active.with_actor)
        if actor is None or not actor.is_synthetic:
            return None
        return actor

    def tick_gate(self) -> float:
        """Chance that this tick considers sending a DM at all."""
        afterhours = is_afterhours(self.state.clock())
        if self._viewed_partner() is not None:
            return self.tuning.dm_gate_viewing[1 if afterhours else 0]
        return self.tuning.dm_gate_idle[1 if afterhours else 0]

    def select_actor(self) -> Actor | None:
        """Pick who writes, honouring each actor's trigger probability."""
        partner = self._viewed_partner()
        if partner is not None:
            if self.rng.random() < self._trigger_probability(partner) / 100:
                return partner

        eligible = [
            actor for actor in self.candidates()
            if self.rng.random() < self._trigger_probability(actor) / 100
        ]
        if not eligible:
            return None
        return self.rng.choice(eligible)

    async def maybe_trigger_dm(self) -> list[Message]:
        """Run the tick gate and, if it passes, have one actor send 1–2 messages."""
        candidates = self.candidates()
        if not any(self._trigger_probability(a) > 0 for a in candidates):
            return []
        if self.rng.random() >= self.tick_gate():
            return []

        actor = self.select_actor()
        if actor is None:
            return []

        count = 1 if self.rng.random() < 0.7 else 2
        sent: list[Message] = []
        for i in range(count):
            try:
                message = await self._send_one(actor)
            except Exception:
                logger.exception("autonomous DM %d from %s failed", i + 1, actor.name)
                message = None
            if message is not None:
                sent.append(message)
            if i < count - 1:
                await self._sleep(self.rng.uniform(2.0, 5.0))
        return sent

    async def _send_one(self, actor: Actor) -> Message | None:
        history = self.state.conversation(actor.name).messages
        opener = contextual_opener(actor, history, self.state.human, self.rng)
        logger.debug("DM opener for %s: %r", actor.name, opener)
        return await self._reply(actor, history, opener)

    async def reply_to_human(self, name: str) -> Message | None:
        """Answer the human's latest DM to ``name`` in character."""
        actor = self.state.actor(name)
        if actor is None or not actor.is_synthetic:
            return None
        history = self.state.conversation(name).messages
        if not history or history[-1].author != self.state.human:
            return None
        return await self._reply(actor, history[:-1], history[-1].content)

    async def _reply(self, actor: Actor, history: list[Message], trigger: str) -> Message | None:
        text = await self.limiter.run(
            lambda: self.generator.private_message(actor, history, trigger),
            label=f"dm:{actor.name}",
        )
        if text is None:
            return None
        content = strip_speaker_prefix(text, actor.name)
        if not content:
            return None
        message = self.state.new_message(actor.name, content, "pm")
        return self.pipeline.ingest(message, DirectRef(with_actor=actor.name))
