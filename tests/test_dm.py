"""Tests for station_v.dm: autonomous direct messages."""

import random
from datetime import datetime
from unittest.mock import AsyncMock

import pytest

from station_v.config import SimulationTuning
from station_v.dm import DirectMessageEngine
from station_v.ingest import MessagePipeline
from station_v.limiter import ConcurrencyLimiter
from station_v.llm import LLMError
from station_v.models import Actor, Channel, DirectRef
from station_v.prompts import Generator
from station_v.state import SimulationState

WEEKDAY_AFTERNOON = datetime(2024, 1, 9, 14, 0)   # Tuesday
SATURDAY_NIGHT = datetime(2024, 1, 6, 23, 30)


class StubLLM:
    def __init__(self, reply: str = "hey you!") -> None:
        self.reply = reply
        self.calls: list[tuple[str, str]] = []

    async def __call__(self, stage: str, prompt: str) -> str:
        self.calls.append((stage, prompt))
        if isinstance(self.reply, Exception):
            raise self.reply
        return self.reply


class SequenceRandom:
    def __init__(self, *values: float) -> None:
        self.values = list(values)

    def random(self) -> float:
        if len(self.values) > 1:
            return self.values.pop(0)
        return self.values[0]

    def choice(self, seq):
        return seq[0]

    def uniform(self, a: float, b: float) -> float:
        return a


def _engine(llm=None, rng=None, now=WEEKDAY_AFTERNOON, pm_nova=100, sleep=None):
    state = SimulationState(
        "you",
        actors=[
            Actor(name="nova", pm_probability=pm_nova),
            Actor(name="sable", pm_probability=0),
            Actor(name="glitch", pm_probability=25),
            Actor(name="loner"),
        ],
        channels=[Channel(name="#general", members=["you", "nova", "sable", "glitch"])],
        clock=lambda: now,
    )
    llm = llm or StubLLM()
    engine = DirectMessageEngine(
        state,
        Generator(llm, state),
        ConcurrencyLimiter(min_interval=0),
        MessagePipeline(state),
        tuning=SimulationTuning(),
        rng=rng or SequenceRandom(0.0),
        sleep=sleep or AsyncMock(),
    )
    return engine, state, llm


class TestCandidates:
    def test_only_synthetic_actors_in_channels(self) -> None:
        engine, _, _ = _engine()
        assert [a.name for a in engine.candidates()] == ["nova", "sable", "glitch"]

    def test_gate_values(self) -> None:
        engine, state, _ = _engine()
        assert engine.tick_gate() == 0.10
        state.view(DirectRef(with_actor="glitch"))
        assert engine.tick_gate() == 0.30

    def test_afterhours_gates(self) -> None:
        engine, state, _ = _engine(now=SATURDAY_NIGHT)
        assert engine.tick_gate() == 0.08
        state.view(DirectRef(with_actor="glitch"))
        assert engine.tick_gate() == 0.40

    def test_viewing_a_non_synthetic_dm_counts_as_idle(self) -> None:
        engine, state, _ = _engine()
        state.view(DirectRef(with_actor="you"))
        assert engine.tick_gate() == 0.10


class TestSelection:
    def test_zero_probability_never_selected(self) -> None:
        engine, _, _ = _engine(rng=random.Random(1234), pm_nova=50)
        picks = {getattr(engine.select_actor(), "name", None) for _ in range(1000)}
        assert "sable" not in picks
        assert "nova" in picks

    def test_viewed_partner_has_priority(self) -> None:
        engine, state, _ = _engine()
        state.view(DirectRef(with_actor="glitch"))
        assert engine.select_actor().name == "glitch"

    def test_default_probability_used_when_unset(self) -> None:
        engine, state, _ = _engine()
        assert engine._trigger_probability(state.actor("loner")) == 25

    def test_afterhours_boost_capped(self) -> None:
        engine, state, _ = _engine(now=SATURDAY_NIGHT)
        assert engine._trigger_probability(state.actor("glitch")) == 37.5
        assert engine._trigger_probability(state.actor("nova")) == 50.0


class TestMaybeTriggerDM:
    async def test_sends_one_message(self) -> None:
        engine, state, llm = _engine(llm=StubLLM("nova: hey you!"))
        sent = await engine.maybe_trigger_dm()
        assert [m.content for m in sent] == ["hey you!"]
        assert sent[0].author == "nova"
        assert sent[0].type == "pm"
        assert state.conversations["nova"].messages == sent
        assert "pm_nova" in state.unread
        assert llm.calls[0][0] == "private_message"

    async def test_sends_two_messages_with_pause(self) -> None:
        sleep = AsyncMock()
        # gate, nova, sable, glitch draws, then the two-message draw
        rng = SequenceRandom(0.0, 0.0, 0.0, 0.0, 0.9)
        engine, state, _ = _engine(rng=rng, sleep=sleep)
        sent = await engine.maybe_trigger_dm()
        assert len(sent) == 2
        assert len(state.conversations["nova"].messages) == 2
        sleep.assert_awaited_once_with(2.0)

    async def test_gate_blocks(self) -> None:
        engine, _, llm = _engine(rng=SequenceRandom(0.5))
        assert await engine.maybe_trigger_dm() == []
        assert llm.calls == []

    async def test_no_eligible_actor(self) -> None:
        engine, state, llm = _engine(pm_nova=0)
        state.put_actor(state.actor("glitch").model_copy(update={"pm_probability": 0}))
        assert await engine.maybe_trigger_dm() == []
        assert llm.calls == []

    async def test_failure_is_logged_not_raised(self, caplog) -> None:
        engine, state, _ = _engine(llm=StubLLM(LLMError("LLM backend returned HTTP 503")))
        assert await engine.maybe_trigger_dm() == []
        assert "autonomous DM 1 from nova failed" in caplog.text
        assert state.conversations["nova"].messages == []

    async def test_blank_reply_sends_nothing(self) -> None:
        engine, state, _ = _engine(llm=StubLLM("   "))
        assert await engine.maybe_trigger_dm() == []


class TestReplyToHuman:
    async def test_replies_in_character(self) -> None:
        engine, state, llm = _engine(llm=StubLLM("Nova: sure thing"))
        engine.pipeline.ingest(
            state.new_message("you", "want to grab coffee?", "pm"), DirectRef(with_actor="nova")
        )
        reply = await engine.reply_to_human("nova")
        assert reply.content == "sure thing"
        stage, prompt = llm.calls[-1]
        assert stage == "private_message"
        assert prompt.endswith("you: want to grab coffee?")

    async def test_nothing_to_reply_to(self) -> None:
        engine, _, llm = _engine()
        assert await engine.reply_to_human("nova") is None
        assert llm.calls == []

    @pytest.mark.parametrize("name", ["you", "nobody"])
    async def test_only_synthetic_actors_reply(self, name: str) -> None:
        engine, _, _ = _engine()
        assert await engine.reply_to_human(name) is None
