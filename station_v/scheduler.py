"""The simulation scheduler: a timed loop that keeps the channels alive.

States:

    IDLE       no timer armed (stopped, speed "off", hidden, or settings open)
    SCHEDULED  timer armed, waiting for the next tick
    RUNNING    a tick is executing

Every activation change (speed, visibility, settings surface) clears the
current timer before possibly arming a new one. The timer period is the
speed's base interval scaled by the time-of-day activity multiplier and is
recomputed each time the timer is armed.

A tick never raises. Generation failures become at most one system notice
per channel per error window; everything else is logged. A tick already
waiting on the backend when the scheduler is deactivated is left to
finish, but its result is discarded.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import random
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta

from station_v.activity import adjusted_interval
from station_v.bots import BotHandler, command_name, is_known_command
from station_v.config import (
    SIMULATION_INTERVALS,
    ImageSettings,
    SimulationSpeed,
    SimulationTuning,
    TypingDelay,
)
from station_v.dm import DirectMessageEngine
from station_v.ingest import MessagePipeline
from station_v.limiter import ConcurrencyLimiter
from station_v.llm import FAILURE_MESSAGES, classify_generation_error
from station_v.models import MAX_LOG_LENGTH, Actor, Channel, ChannelRef, Message
from station_v.prompts import Generator, parse_channel_line, strip_speaker_prefix
from station_v.state import SimulationState

logger = logging.getLogger(__name__)

TYPING_MINIMUM = 0.2
_NOT_CONVERSATION = ("system", "join", "part", "quit")


class SchedulerStatus(str, enum.Enum):
    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"


class Scheduler:
    def __init__(
        self,
        state: SimulationState,
        generator: Generator,
        limiter: ConcurrencyLimiter,
        pipeline: MessagePipeline,
        dm_engine: DirectMessageEngine,
        speed: SimulationSpeed = "normal",
        typing: TypingDelay | None = None,
        tuning: SimulationTuning | None = None,
        bots: BotHandler | None = None,
        model: str = "",
        image_config: ImageSettings | None = None,
        rng: random.Random | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.state = state
        self.generator = generator
        self.limiter = limiter
        self.pipeline = pipeline
        self.dm_engine = dm_engine
        self.speed = speed
        self.typing = typing or TypingDelay()
        self.tuning = tuning or SimulationTuning()
        self.bots = bots
        self.model = model
        self.image_config = image_config or ImageSettings()
        self.rng = rng or random.Random()
        self._sleep = sleep

        self.visible = True
        self.settings_open = False
        self.status = SchedulerStatus.IDLE
        self._started = False
        self._timer: asyncio.Task | None = None
        # Bumped on every deactivation; work started under an older epoch is discarded.
        self._epoch = 0
        self._tasks: set[asyncio.Task] = set()
        self._last_error: dict[str, datetime] = {}
        self._stale_at: dict[str, datetime] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def active(self) -> bool:
        return self._started and self.speed != "off" and self.visible and not self.settings_open

    def start(self) -> None:
        self._started = True
        self._rearm()

    async def stop(self) -> None:
        self._started = False
        self._rearm()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("scheduler stopped")

    def set_speed(self, speed: SimulationSpeed) -> None:
        self.speed = speed
        self._rearm()

    def set_visible(self, visible: bool) -> None:
        self.visible = visible
        self._rearm()

    def set_settings_open(self, settings_open: bool) -> None:
        self.settings_open = settings_open
        self._rearm()

    def interval(self) -> float | None:
        base = SIMULATION_INTERVALS.get(self.speed)
        if base is None:
            return None
        return adjusted_interval(base * 1000, self.state.clock()) / 1000

    def _rearm(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        if not self.active:
            self._epoch += 1
            if self.status is not SchedulerStatus.RUNNING:
                self.status = SchedulerStatus.IDLE
            return
        self._timer = asyncio.get_running_loop().create_task(self._run())
        if self.status is not SchedulerStatus.RUNNING:
            self.status = SchedulerStatus.SCHEDULED

    async def _run(self) -> None:
        while self.active:
            interval = self.interval()
            if interval is None:
                return
            logger.info("next tick in %.1fs (speed=%s)", interval, self.speed)
            self.status = SchedulerStatus.SCHEDULED
            await self._sleep(interval)
            self.status = SchedulerStatus.RUNNING
            tick = self._spawn(self.tick())
            try:
                # Deactivation cancels the timer, never the tick itself.
                await asyncio.shield(tick)
            finally:
                self.status = SchedulerStatus.SCHEDULED if self.active else SchedulerStatus.IDLE

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def in_burst(self) -> bool:
        last = self.state.last_human_message
        if last is None:
            return False
        return (self.state.clock() - last).total_seconds() < self.tuning.burst_window

    async def tick(self) -> None:
        """One pass of the simulation. Never raises."""
        try:
            await self._tick()
        except Exception:
            logger.exception("simulation tick failed")
        try:
            await self.dm_engine.maybe_trigger_dm()
        except Exception:
            logger.exception("autonomous DM evaluation failed")

    async def _tick(self) -> None:
        self.auto_join()
        if not self.state.channels:
            return

        burst = self.in_burst()
        if not burst and self.rng.random() < self.tuning.quiet_chance:
            await self._quiet_tick()
            return

        name = self._target_channel()
        self._check_staleness(name)
        logger.debug("tick: channel=%s burst=%s", name, burst)

        try:
            message = await self._generate_line(name, self._epoch)
        except Exception as exc:
            self._surface_error(name, exc)
            return
        if message is not None:
            self._schedule_follow_ups(name, message, burst)

    async def _quiet_tick(self) -> None:
        channel = self.rng.choice(list(self.state.channels.values()))
        if self.rng.random() >= self.tuning.quiet_reaction_chance:
            logger.debug("quiet tick: nothing to do in %s", channel.name)
            return
        recent = [m for m in channel.messages if m.type not in _NOT_CONVERSATION][-3:]
        if not recent:
            return
        logger.debug("quiet tick: reacting in %s", channel.name)
        try:
            await self.react(channel.name, self.rng.choice(recent), self._epoch)
        except Exception as exc:
            self._surface_error(channel.name, exc)

    def _target_channel(self) -> str:
        active = self.state.active
        if isinstance(active, ChannelRef) and active.name in self.state.channels:
            return active.name
        return self.rng.choice(list(self.state.channels))

    def _check_staleness(self, name: str) -> None:
        now = self.state.clock()
        due = self._stale_at.get(name)
        if due is None or now >= due:
            if due is not None:
                channel = self.state.channels[name]
                self.state.put_channel(
                    channel.model_copy(update={"messages": channel.messages[-MAX_LOG_LENGTH:]})
                )
                logger.debug("staleness reset for %s", name)
            period = self.rng.uniform(*self.tuning.staleness_period)
            self._stale_at[name] = now + timedelta(seconds=period)

    # ------------------------------------------------------------------
    # Auto-join
    # ------------------------------------------------------------------

    def auto_join(self) -> None:
        """Populate every channel that has no members besides the human."""
        for name in list(self.state.channels):
            channel = self.state.channels[name]
            if self.state.non_human_members(channel):
                continue

            busy = {
                member
                for other in self.state.channels.values() if other.name != name
                for member in other.members
            }
            available = [
                a for a in self.state.actors.values() if a.is_synthetic and a.name not in busy
            ]
            if not available:
                continue
            self.rng.shuffle(available)
            joiners = available[:min(self.rng.randint(2, 4), len(available))]

            self.state.put_channel(channel.model_copy(
                update={"members": [*channel.members, *(a.name for a in joiners)]}
            ))
            for actor in joiners:
                join = self.state.new_message(actor.name, f"joined {name}", "join")
                self.pipeline.ingest(join, ChannelRef(name=name))
            logger.info("auto-joined %s to %s", ", ".join(a.name for a in joiners), name)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def _stale(self, epoch: int) -> bool:
        return epoch != self._epoch

    async def _generate_line(self, name: str, epoch: int) -> Message | None:
        channel = self.state.channels[name]
        text = await self.limiter.run(
            lambda: self.generator.channel_activity(channel), label=f"channel:{name}"
        )
        if text is None:
            return None
        parsed = parse_channel_line(text)
        if parsed is None:
            logger.debug("unparseable reply for %s: %r", name, text[:80])
            return None

        author, content = parsed
        channel = self.state.channels.get(name)
        actor = self.state.actor(author)
        if channel is None or actor is None or not actor.is_synthetic or author not in channel.members:
            logger.debug("reply names %r, who is not a synthetic member of %s", author, name)
            return None
        if self._stale(epoch):
            logger.debug("discarding reply for %s, scheduler was deactivated", name)
            return None

        target = ChannelRef(name=name)
        if is_known_command(content):
            message = self.state.new_message(author, content, "ai", command=command_name(content))
            stored = self.pipeline.ingest(message, target)
            await self._dispatch_bot_command(channel, content)
            return stored

        self.state.set_typing(target, author, True)
        try:
            await self._sleep(TYPING_MINIMUM)
            await self._sleep(self.typing.seconds_for(content))
        finally:
            self.state.set_typing(target, author, False)
        if self._stale(epoch):
            return None
        return self.pipeline.ingest(self.state.new_message(author, content, "ai"), target)

    async def _dispatch_bot_command(self, channel: Channel, command: str) -> None:
        if self.bots is None:
            return
        bot = next(
            (a for a in map(self.state.actor, channel.members) if a is not None and a.type == "bot"),
            None,
        )
        if bot is None:
            logger.debug("no bot in %s to handle %s", channel.name, command_name(command))
            return
        response = await self.bots(command, bot, channel.name, self.model, self.image_config)
        if response is not None:
            self.pipeline.ingest(response, ChannelRef(name=channel.name))

    async def react(self, name: str, target: Message, epoch: int | None = None) -> Message | None:
        """Have a random synthetic member other than the author react to ``target``."""
        if epoch is None:
            epoch = self._epoch
        channel = self.state.channels[name]
        reactors = [a for a in self.state.synthetic_members(channel) if a.name != target.author]
        if not reactors:
            return None
        actor: Actor = self.rng.choice(reactors)
        text = await self.limiter.run(
            lambda: self.generator.reaction(channel, actor, target), label=f"reaction:{name}"
        )
        if text is None or self._stale(epoch):
            return None
        content = strip_speaker_prefix(text, actor.name)
        if not content:
            return None
        return self.pipeline.ingest(
            self.state.new_message(actor.name, content, "ai"), ChannelRef(name=name)
        )

    # ------------------------------------------------------------------
    # Follow-ups
    # ------------------------------------------------------------------

    def _schedule_follow_ups(self, name: str, message: Message, burst: bool) -> None:
        t = self.tuning
        if burst:
            plan = [
                (t.burst_reaction_chance, t.burst_delay, True),
                (t.burst_second_chance, t.burst_delay, False),
            ]
        else:
            plan = [
                (t.reaction_chance, t.reaction_delay, True),
                (t.extra_chatter_chance, t.extra_chatter_delay, False),
            ]
        for chance, delay, is_reaction in plan:
            if self.rng.random() < chance:
                self._spawn(self._follow_up(
                    name, message, self.rng.uniform(*delay), is_reaction, self._epoch
                ))

    async def _follow_up(
        self, name: str, message: Message, delay: float, is_reaction: bool, epoch: int
    ) -> None:
        await self._sleep(delay)
        if self._stale(epoch) or name not in self.state.channels:
            return
        try:
            if is_reaction:
                await self.react(name, message, epoch)
            else:
                await self._generate_line(name, epoch)
        except Exception as exc:
            self._surface_error(name, exc)

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    def _surface_error(self, name: str, exc: Exception) -> None:
        category = classify_generation_error(exc)
        now = self.state.clock()
        last = self._last_error.get(name)
        if last is not None and (now - last).total_seconds() < self.tuning.error_window:
            logger.warning("generation failed in %s (%s), notice suppressed: %s", name, category, exc)
            return
        self._last_error[name] = now
        logger.warning("generation failed in %s (%s): %s", name, category, exc)
        if name in self.state.channels:
            notice = self.state.new_message("system", FAILURE_MESSAGES[category], "system")
            self.pipeline.ingest(notice, ChannelRef(name=name))
