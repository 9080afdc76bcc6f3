"""Bot commands posted into channels ("!weather london", "!joke").

Command handling itself lives outside the simulation; it only needs to
recognise a command and hand it to whichever handler is installed.
"""

from __future__ import annotations

from typing import Protocol

from station_v.config import ImageSettings
from station_v.models import Actor, Message

KNOWN_COMMANDS = (
    "!image", "!img", "!weather", "!time", "!info", "!help",
    "!quote", "!joke", "!fact", "!translate", "!calc", "!search",
)


def is_bot_command(text: str) -> bool:
    """A bot command is "!" followed by at least one more character."""
    trimmed = text.strip()
    return trimmed.startswith("!") and len(trimmed) > 1


def command_name(text: str) -> str:
    """The lower-cased command word, e.g. "!weather" for "!Weather Oslo"."""
    return text.strip().split(maxsplit=1)[0].lower()


def is_known_command(text: str) -> bool:
    """A bot command whose name is one of ``KNOWN_COMMANDS``."""
    return is_bot_command(text) and command_name(text) in KNOWN_COMMANDS


class BotHandler(Protocol):
    async def __call__(
        self, command: str, bot: Actor, channel: str, model: str, image_config: ImageSettings
    ) -> Message | None: ...
