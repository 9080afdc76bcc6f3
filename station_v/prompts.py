"""Handlebars prompts for the generation backend, and reply parsing.

Three generation stages exist:

    channel_activity  - the next line of a channel, as "name: content"
    reaction          - one named member reacting to a given message
    private_message   - an actor's in-character reply in a DM

``Generator`` renders the stage template from simulation state, calls the
injected LLM and turns blank replies into None. Parsing the reply into an
author and content is left to the caller, via the helpers at the bottom.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from datetime import datetime
from typing import Any

import pybars

from station_v import relationships
from station_v.activity import is_afterhours
from station_v.llm import LLM
from station_v.models import Actor, Channel, Message
from station_v.state import SimulationState

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 20

_compiler = pybars.Compiler()
_cache: dict[str, Callable] = {}


class PromptError(Exception):
    """Raised when a Handlebars template fails to compile or render."""


# ── Custom Handlebars helpers ────────────────────────────


def _helper_last(this, options, items, count):
    """{{#last array N}}...{{/last}} - iterate over the last N items."""
    result = []
    for item in list(items)[-int(count):]:
        result.extend(options["fn"](item))
    return result


_HELPERS: dict[str, Callable] = {
    "last": _helper_last,
}


def render_prompt(template_str: str, context: dict[str, Any]) -> str:
    """Compile and render a Handlebars template with the given context.

    Templates are cached by source string to avoid recompilation.
    """
    try:
        compiled = _cache.get(template_str)
        if compiled is None:
            compiled = _compiler.compile(template_str)
            _cache[template_str] = compiled
        return str(compiled(context, helpers=_HELPERS))
    except Exception as e:
        raise PromptError(f"Template error: {e}") from e


# ── Templates ────────────────────────────────────────────

CHANNEL_ACTIVITY_TEMPLATE = """\
You are simulating an IRC channel, #{{channel}}.
{{#if topic}}Channel topic: {{{topic}}}
{{/if}}{{#if afterhours}}It is late at night; the regulars are chatty and informal.
{{/if}}
Members:
{{#each members}}- {{name}}: {{personality}}, {{{style}}}
{{/each}}
{{#each memories}}{{owner}} remembers {{other}}: {{{summary}}}
{{/each}}
Write the next line of the conversation as "name: message", spoken by one of
the members above. Keep it short and in character.

{{#last messages 20}}{{author}}: {{{content}}}
{{/last}}"""

REACTION_TEMPLATE = """\
You are {{actor.name}} in the IRC channel #{{channel}}. Personality: {{actor.personality}}.
Writing style: {{{actor.style}}}.
{{#if memory}}What you remember about {{target.author}}: {{{memory}}}
{{/if}}
Recent conversation:
{{#last messages 20}}{{author}}: {{{content}}}
{{/last}}
React briefly to this message from {{target.author}}: {{{target.content}}}
{{actor.name}}:"""

PRIVATE_MESSAGE_TEMPLATE = """\
You are {{actor.name}}, chatting privately with {{human}}.
Personality: {{actor.personality}}. Writing style: {{{actor.style}}}.
{{#if memory}}What you remember about {{human}}: {{{memory}}}
{{/if}}{{#if afterhours}}It is late at night.
{{/if}}
Reply with a single message, without your name in front.

{{#last messages 20}}{{author}}: {{{content}}}
{{/last}}{{human}}: {{{trigger}}}"""


# ── Context builders ─────────────────────────────────────


def _style(actor: Actor) -> str:
    s = actor.writing_style
    return (
        f"{s.formality} formality, {s.verbosity} verbosity, {s.humor} humor, "
        f"{s.emoji_usage} emoji, {s.punctuation} punctuation"
    )


def _messages(messages: list[Message]) -> list[dict[str, str]]:
    return [
        {"author": m.author, "content": m.content}
        for m in messages[-HISTORY_WINDOW:]
        if m.type not in ("join", "part", "quit")
    ]


def build_channel_context(state: SimulationState, channel: Channel, now: datetime) -> dict[str, Any]:
    members = state.synthetic_members(channel)
    memories = []
    for actor in members:
        summary = relationships.context_summary(actor, state.human, channel.name, now)
        if summary:
            memories.append({"owner": actor.name, "other": state.human, "summary": summary})
    return {
        "channel": channel.name,
        "topic": channel.topic,
        "afterhours": is_afterhours(now),
        "members": [
            {"name": a.name, "personality": a.personality, "style": _style(a)} for a in members
        ],
        "memories": memories,
        "messages": _messages(channel.messages),
    }


# ── Generator ────────────────────────────────────────────


class Generator:
    """Turns simulation state into prompts and LLM replies into text (or None)."""

    def __init__(self, llm: LLM, state: SimulationState) -> None:
        self.llm = llm
        self.state = state

    async def _call(self, stage: str, prompt: str) -> str | None:
        text = (await self.llm(stage, prompt)).strip()
        if not text:
            logger.debug("empty %s reply", stage)
            return None
        return text

    async def channel_activity(self, channel: Channel) -> str | None:
        context = build_channel_context(self.state, channel, self.state.clock())
        return await self._call("channel_activity", render_prompt(CHANNEL_ACTIVITY_TEMPLATE, context))

    async def reaction(self, channel: Channel, actor: Actor, target: Message) -> str | None:
        now = self.state.clock()
        context = {
            "channel": channel.name,
            "actor": {"name": actor.name, "personality": actor.personality, "style": _style(actor)},
            "memory": relationships.context_summary(actor, target.author, channel.name, now),
            "messages": _messages(channel.messages),
            "target": {"author": target.author, "content": target.content},
        }
        return await self._call("reaction", render_prompt(REACTION_TEMPLATE, context))

    async def private_message(
        self, actor: Actor, history: list[Message], trigger: str
    ) -> str | None:
        now = self.state.clock()
        context = {
            "human": self.state.human,
            "actor": {"name": actor.name, "personality": actor.personality, "style": _style(actor)},
            "memory": relationships.context_summary(
                actor, self.state.human, f"pm_{actor.name}", now
            ),
            "afterhours": is_afterhours(now),
            "messages": _messages(history),
            "trigger": trigger,
        }
        return await self._call("private_message", render_prompt(PRIVATE_MESSAGE_TEMPLATE, context))


# ── Reply parsing ────────────────────────────────────────


def parse_channel_line(text: str) -> tuple[str, str] | None:
    """Split a "name: content" reply. Returns None when the shape is wrong."""
    for line in text.splitlines():
        if not line.strip():
            continue
        if ":" not in line:
            return None
        name, content = line.split(":", 1)
        name = name.strip().strip("<>*").strip()
        content = content.strip()
        if not name or not content or " " in name:
            return None
        return name, content
    return None


def strip_speaker_prefix(text: str, name: str) -> str:
    """Remove a leading "name:", "name -" or "name " echo from a reply."""
    pattern = re.compile(rf"^\s*<?{re.escape(name)}>?(?:\s*:|\s+-|\s)\s*", re.IGNORECASE)
    return pattern.sub("", text, count=1).strip()
