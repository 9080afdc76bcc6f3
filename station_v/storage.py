"""JSON file storage.

All persistent state is kept in flat JSON files under a configurable base
directory. Reads and writes go through plain helper methods that load and
dump JSON; pydantic validates everything on the way back in, so
timestamps are typed once at load time.

Directory layout:

    {base}/
      config.json             ← AppConfig (see station_v.config)
      actors.json             ← list of Actor objects, relationship memory included
      channels.json           ← list of Channel objects (topic, members, operators, log)
      logs/
        channels/{channel}.json  ← chat log of a channel, last 1000 messages
        dms/{name}.json          ← DM log with {name}, last 1000 messages
"""

from __future__ import annotations

import asyncio
import json
import re
from pathlib import Path
from typing import Any

from station_v.models import (
    MAX_LOG_LENGTH,
    Actor,
    Channel,
    ChannelRef,
    DirectConversation,
    DirectRef,
    Message,
    Target,
)


def safe_filename(key: str) -> str:
    """Make a log key filesystem-safe: "#dev/ops" → "dev_ops"."""
    return re.sub(r"[^A-Za-z0-9_.-]+", "_", key.lstrip("#")).strip("._") or "_"


class Storage:
    def __init__(self, base_path: Path) -> None:
        self._base = base_path
        self._channel_logs = base_path / "logs" / "channels"
        self._dm_logs = base_path / "logs" / "dms"
        self._channel_logs.mkdir(parents=True, exist_ok=True)
        self._dm_logs.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    @property
    def base_path(self) -> Path:
        return self._base

    # ------------------------------------------------------------------
    # Internal path helpers
    # ------------------------------------------------------------------

    def _log_file(self, target: Target) -> Path:
        if isinstance(target, DirectRef):
            return self._dm_logs / f"{safe_filename(target.with_actor)}.json"
        return self._channel_logs / f"{safe_filename(target.name)}.json"

    def _read_json(self, path: Path) -> Any:
        return json.loads(path.read_text())

    def _write_json(self, path: Path, data: Any) -> None:
        path.write_text(json.dumps(data, indent=2))

    # ------------------------------------------------------------------
    # Chat logs
    # ------------------------------------------------------------------

    def get_log(self, target: Target) -> list[Message]:
        path = self._log_file(target)
        if not path.exists():
            return []
        return [Message.model_validate(m) for m in self._read_json(path)]

    def append_log(self, target: Target, message: Message) -> None:
        """Append to a log file, skipping ids already present."""
        log = self.get_log(target)
        if any(m.id == message.id for m in log):
            return
        log = [*log, message][-MAX_LOG_LENGTH:]
        self._write_json(self._log_file(target), [m.model_dump(mode="json") for m in log])

    async def save_message(self, target: Target, message: Message) -> None:
        # One writer at a time per storage; the file work runs off the event loop.
        async with self._lock:
            await asyncio.to_thread(self.append_log, target, message)

    # ------------------------------------------------------------------
    # Actors and channels
    # ------------------------------------------------------------------

    def save_actors(self, actors: list[Actor]) -> None:
        self._write_json(self._base / "actors.json", [a.model_dump(mode="json") for a in actors])

    def get_actors(self) -> list[Actor]:
        path = self._base / "actors.json"
        if not path.exists():
            return []
        return [Actor.model_validate(a) for a in self._read_json(path)]

    def save_channels(self, channels: list[Channel]) -> None:
        self._write_json(
            self._base / "channels.json", [c.model_dump(mode="json") for c in channels]
        )

    def get_channels(self) -> list[Channel]:
        path = self._base / "channels.json"
        if not path.exists():
            return []
        return [Channel.model_validate(c) for c in self._read_json(path)]

    def save_state(self, actors: list[Actor], channels: list[Channel]) -> None:
        self.save_actors(actors)
        self.save_channels(channels)

    def load_state(self) -> tuple[list[Actor], list[Channel], list[DirectConversation]]:
        """Actors, channels and DM conversations.

        Channel logs are taken from logs/channels/ when present; a DM
        conversation is rebuilt for every actor with a log under logs/dms/.
        """
        actors = self.get_actors()
        channels = []
        for channel in self.get_channels():
            log = self.get_log(ChannelRef(name=channel.name))
            if log:
                channel = channel.model_copy(update={"messages": log})
            channels.append(channel)

        conversations = []
        for actor in actors:
            log = self.get_log(DirectRef(with_actor=actor.name))
            if log:
                conversations.append(DirectConversation(with_actor=actor.name, messages=log))
        return actors, channels, conversations
