"""Tests for station_v.ingest: the message pipeline and cross-context sync."""

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock, patch

import pytest

from station_v.broadcast import BroadcastHub, Envelope
from station_v.ingest import MessagePipeline, SeenIds
from station_v.models import Actor, Channel, ChannelRef, DirectRef, Message
from station_v.patterns import TOPIC_SUGGESTIONS, PatternTracker
from station_v.state import SimulationState

NOW = datetime(2024, 1, 9, 14, 0)
GENERAL = ChannelRef(name="#general")


class StubRandom:
    def __init__(self, value: float) -> None:
        self.value = value

    def random(self) -> float:
        return self.value

    def choice(self, seq):
        return seq[0]

    def uniform(self, a: float, b: float) -> float:
        return a


def _state() -> SimulationState:
    return SimulationState(
        "you",
        actors=[Actor(name="nova"), Actor(name="glitch"), Actor(name="oracle-bot", type="bot")],
        channels=[Channel(name="#general", members=["you", "nova", "glitch", "oracle-bot"])],
        clock=lambda: NOW,
    )


@pytest.fixture
def state() -> SimulationState:
    return _state()


@pytest.fixture
def pipeline(state: SimulationState) -> MessagePipeline:
    return MessagePipeline(state)


# ---------------------------------------------------------------------------
# Channel ingestion
# ---------------------------------------------------------------------------

class TestChannelIngest:
    def test_appends_and_returns_message(self, state, pipeline) -> None:
        message = state.new_message("nova", "anyone around?", "ai")
        assert pipeline.ingest(message, GENERAL) == message
        assert state.channels["#general"].messages == [message]

    def test_duplicate_id_dropped(self, state, pipeline) -> None:
        message = state.new_message("nova", "anyone around?", "ai")
        pipeline.ingest(message, GENERAL)
        assert pipeline.ingest(message, GENERAL) is None
        assert len(state.channels["#general"].messages) == 1

    def test_unknown_channel_dropped(self, state, pipeline, caplog) -> None:
        message = state.new_message("nova", "hello?", "ai")
        assert pipeline.ingest(message, ChannelRef(name="#nowhere")) is None
        assert "unknown channel #nowhere" in caplog.text

    def test_log_capped_at_1000(self, state, pipeline) -> None:
        old = [
            Message(id=i, author="nova", content=f"line {i}", timestamp=NOW, type="ai")
            for i in range(1, 1001)
        ]
        state.put_channel(state.channels["#general"].model_copy(update={"messages": old}))
        message = state.new_message("glitch", "one more", "ai")
        pipeline.ingest(message, GENERAL)
        log = state.channels["#general"].messages
        assert len(log) == 1000
        assert log[0].id == 2
        assert log[-1] == message

    def test_ids_are_unique_within_a_millisecond(self, state) -> None:
        ids = [state.new_message("nova", "x", "ai").id for _ in range(5)]
        assert len(set(ids)) == 5
        assert ids == sorted(ids)

    def test_links_extracted_and_content_cleaned(self, state, pipeline) -> None:
        message = state.new_message("nova", "see https://example.com/x now", "ai")
        stored = pipeline.ingest(message, GENERAL)
        assert stored.content == "see now"
        assert stored.links == ["https://example.com/x"]
        assert stored.images is None

    def test_existing_links_keep_content(self, state, pipeline) -> None:
        message = state.new_message(
            "nova", "see https://example.com/x", "ai", links=["https://example.com/x"]
        )
        stored = pipeline.ingest(message, GENERAL)
        assert stored.content == "see https://example.com/x"


class TestUnread:
    def test_other_authors_mark_unread(self, state, pipeline) -> None:
        pipeline.ingest(state.new_message("nova", "psst", "ai"), GENERAL)
        assert "#general" in state.unread

    def test_human_messages_never_unread(self, state, pipeline) -> None:
        pipeline.ingest(state.new_message("you", "hello all", "user"), GENERAL)
        assert state.unread == set()

    def test_active_context_not_marked(self, state, pipeline) -> None:
        state.view(GENERAL)
        pipeline.ingest(state.new_message("nova", "psst", "ai"), GENERAL)
        assert state.unread == set()

    def test_view_clears_unread(self, state, pipeline) -> None:
        pipeline.ingest(state.new_message("nova", "psst", "ai"), GENERAL)
        state.view(GENERAL)
        assert "#general" not in state.unread


class TestRelationshipUpdates:
    def test_synthetic_members_remember_author(self, state, pipeline) -> None:
        pipeline.ingest(state.new_message("nova", "great work on the api", "ai"), GENERAL)
        glitch = state.actor("glitch")
        assert glitch.relationships["nova"].interaction_count == 1
        assert glitch.relationships["nova"].shared_topics == ["programming"]
        assert "nova" not in state.actor("nova").relationships
        assert state.actor("oracle-bot").relationships == {}

    def test_human_message_remembered_by_everyone_synthetic(self, state, pipeline) -> None:
        pipeline.ingest(state.new_message("you", "evening all", "user"), GENERAL)
        assert "you" in state.actor("nova").relationships
        assert "you" in state.actor("glitch").relationships


# ---------------------------------------------------------------------------
# Direct messages
# ---------------------------------------------------------------------------

class TestDirectIngest:
    def test_conversation_created_on_first_message(self, state, pipeline) -> None:
        message = state.new_message("you", "hey nova", "pm")
        pipeline.ingest(message, DirectRef(with_actor="nova"))
        assert state.conversations["nova"].messages == [message]
        assert state.unread == set()

    def test_partner_records_pm_interaction(self, state, pipeline) -> None:
        pipeline.ingest(state.new_message("you", "hey nova", "pm"), DirectRef(with_actor="nova"))
        record = state.actor("nova").relationships["you"]
        assert record.shared_channels == ["pm_nova"]
        assert record.history[-1].kind == "pm"

    def test_partner_message_marks_unread(self, state, pipeline) -> None:
        pipeline.ingest(state.new_message("nova", "you there?", "pm"), DirectRef(with_actor="nova"))
        assert "pm_nova" in state.unread
        assert state.actor("nova").relationships == {}

    def test_dm_duplicate_dropped(self, state, pipeline) -> None:
        message = state.new_message("you", "hey nova", "pm")
        target = DirectRef(with_actor="nova")
        pipeline.ingest(message, target)
        assert pipeline.ingest(message, target) is None


# ---------------------------------------------------------------------------
# Persistence and topic suggestions
# ---------------------------------------------------------------------------

class TestBackgroundWork:
    async def test_message_persisted(self, state) -> None:
        persistence = AsyncMock()
        pipeline = MessagePipeline(state, persistence=persistence)
        stored = pipeline.ingest(state.new_message("nova", "saved?", "ai"), GENERAL)
        await pipeline.drain()
        persistence.save_message.assert_awaited_once_with(GENERAL, stored)

    async def test_persistence_failure_is_logged_not_raised(self, state, caplog) -> None:
        persistence = AsyncMock()
        persistence.save_message.side_effect = OSError("disk full")
        pipeline = MessagePipeline(state, persistence=persistence)
        stored = pipeline.ingest(state.new_message("nova", "saved?", "ai"), GENERAL)
        await pipeline.drain()
        assert stored is not None
        assert state.channels["#general"].messages == [stored]
        assert "failed to persist message: disk full" in caplog.text

    async def test_repetition_posts_topic_suggestion(self, state) -> None:
        tracker = PatternTracker(rng=StubRandom(0.0))
        pipeline = MessagePipeline(state, tracker=tracker)
        for _ in range(3):
            pipeline.ingest(state.new_message("nova", "we should fix the build pipeline", "ai"),
                            GENERAL)
        with patch("station_v.ingest.asyncio.sleep", AsyncMock()):
            await pipeline.drain()
        last = state.channels["#general"].messages[-1]
        assert last.type == "system"
        assert last.content in TOPIC_SUGGESTIONS


class TestSeenIds:
    def test_oldest_evicted_first(self) -> None:
        seen = SeenIds(capacity=3)
        for message_id in (1, 2, 3, 4):
            seen.add(message_id)
        assert 1 not in seen
        assert all(i in seen for i in (2, 3, 4))
        assert len(seen) == 3

    def test_readding_does_not_refresh(self) -> None:
        seen = SeenIds(capacity=2)
        seen.add(1)
        seen.add(2)
        seen.add(1)
        seen.add(3)
        assert 1 not in seen
        assert 2 in seen and 3 in seen


# ---------------------------------------------------------------------------
# Cross-context broadcast
# ---------------------------------------------------------------------------

async def _settle() -> None:
    for _ in range(3):
        await asyncio.sleep(0)


class TestBroadcast:
    @pytest.fixture
    def tabs(self) -> tuple[SimulationState, MessagePipeline, SimulationState, MessagePipeline]:
        hub = BroadcastHub()
        state_a, state_b = _state(), _state()
        tab_a = MessagePipeline(state_a, broadcast=hub.open())
        tab_b = MessagePipeline(state_b, broadcast=hub.open())
        return state_a, tab_a, state_b, tab_b

    async def test_synthetic_message_arrives_once_in_other_tab(self, tabs) -> None:
        state_a, tab_a, state_b, _ = tabs
        message = state_a.new_message("nova", "synced?", "ai")
        tab_a.ingest(message, GENERAL)
        await _settle()
        assert state_a.channels["#general"].messages == [message]
        assert [m.id for m in state_b.channels["#general"].messages] == [message.id]

    async def test_replayed_payload_ignored(self, tabs) -> None:
        state_a, tab_a, state_b, tab_b = tabs
        message = state_a.new_message("nova", "synced?", "ai")
        tab_a.ingest(message, GENERAL)
        await _settle()
        tab_b.receive(Envelope.for_message(message, "#general").to_wire())
        assert len(state_b.channels["#general"].messages) == 1

    async def test_human_messages_not_broadcast(self, tabs) -> None:
        state_a, tab_a, state_b, _ = tabs
        tab_a.ingest(state_a.new_message("you", "local only", "user"), GENERAL)
        await _settle()
        assert state_b.channels["#general"].messages == []

    async def test_dm_not_broadcast(self, tabs) -> None:
        state_a, tab_a, state_b, _ = tabs
        tab_a.ingest(state_a.new_message("nova", "just us", "pm"), DirectRef(with_actor="nova"))
        await _settle()
        assert state_b.conversations == {}

    async def test_rapid_broadcasts_spaced(self) -> None:
        hub = BroadcastHub()
        state_a, state_b = _state(), _state()
        tab_a = MessagePipeline(state_a, broadcast=hub.open(), clock=lambda: 5.0)
        MessagePipeline(state_b, broadcast=hub.open())
        tab_a.ingest(state_a.new_message("nova", "one", "ai"), GENERAL)
        tab_a.ingest(state_a.new_message("glitch", "two", "ai"), GENERAL)
        await _settle()
        assert len(state_a.channels["#general"].messages) == 2
        assert [m.content for m in state_b.channels["#general"].messages] == ["one"]

    async def test_closed_channel_degrades_to_local(self, caplog) -> None:
        hub = BroadcastHub()
        state = _state()
        channel = hub.open()
        pipeline = MessagePipeline(state, broadcast=channel)
        channel.close()
        stored = pipeline.ingest(state.new_message("nova", "still here", "ai"), GENERAL)
        assert stored is not None
        assert pipeline.broadcast is None
        assert "broadcast channel closed" in caplog.text

    def test_malformed_payload_ignored(self, state, pipeline, caplog) -> None:
        pipeline.receive({"type": "virtualMessage", "data": {"channelName": "#general"}})
        pipeline.receive({"type": "somethingElse"})
        assert state.channels["#general"].messages == []
        assert "malformed broadcast payload" in caplog.text

    def test_envelope_wire_shape(self) -> None:
        message = Message(id=7, author="nova", content="hi", timestamp=NOW, type="ai")
        wire = Envelope.for_message(message, "#general").to_wire()
        assert wire["type"] == "virtualMessage"
        assert wire["data"]["channelName"] == "#general"
        assert wire["data"]["message"]["id"] == 7
        assert wire["data"]["message"]["timestamp"] == NOW.isoformat()
