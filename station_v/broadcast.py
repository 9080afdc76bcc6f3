"""Same-origin publish/subscribe between simulation contexts ("tabs").

A ``BroadcastHub`` stands in for the browser's origin: every
``BroadcastChannel`` opened on it under the same name receives what the
others post, never its own posts. Delivery happens on a later event-loop
iteration and carries a JSON copy of the payload, so receivers can never
share objects with the sender.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from station_v.models import Message

logger = logging.getLogger(__name__)

CHANNEL_NAME = "station-v-sync"


class BroadcastClosedError(RuntimeError):
    """Raised when posting to a channel that has been closed."""


class EnvelopeData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: Message
    channel_name: str = Field(alias="channelName")


class Envelope(BaseModel):
    """``{"type": "virtualMessage", "data": {"message": ..., "channelName": ...}}``"""

    type: Literal["virtualMessage"] = "virtualMessage"
    data: EnvelopeData

    @classmethod
    def for_message(cls, message: Message, channel_name: str) -> Envelope:
        return cls(data=EnvelopeData(message=message, channel_name=channel_name))

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


Listener = Callable[[dict[str, Any]], None]


class BroadcastChannel:
    def __init__(self, hub: BroadcastHub, name: str) -> None:
        self._hub = hub
        self.name = name
        self.closed = False
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def post(self, payload: dict[str, Any]) -> None:
        if self.closed:
            raise BroadcastClosedError(f"broadcast channel {self.name!r} is closed")
        self._hub._deliver(self, json.dumps(payload))

    def close(self) -> None:
        self.closed = True
        self._hub._detach(self)

    def _dispatch(self, raw: str) -> None:
        if self.closed:
            return
        for listener in list(self._listeners):
            listener(json.loads(raw))


class BroadcastHub:
    def __init__(self) -> None:
        self._channels: dict[str, list[BroadcastChannel]] = {}

    def open(self, name: str = CHANNEL_NAME) -> BroadcastChannel:
        channel = BroadcastChannel(self, name)
        self._channels.setdefault(name, []).append(channel)
        return channel

    def _detach(self, channel: BroadcastChannel) -> None:
        peers = self._channels.get(channel.name, [])
        if channel in peers:
            peers.remove(channel)

    def _deliver(self, sender: BroadcastChannel, raw: str) -> None:
        loop = asyncio.get_running_loop()
        for peer in self._channels.get(sender.name, []):
            if peer is not sender:
                loop.call_soon(peer._dispatch, raw)
