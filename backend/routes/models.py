"""Pydantic request/response models for API endpoints."""

from pydantic import BaseModel, Field

from station_v.config import SimulationSpeed


class PostMessage(BaseModel):
    content: str = Field(min_length=1)


class SetTopic(BaseModel):
    topic: str


class UpdateSimulation(BaseModel):
    speed: SimulationSpeed | None = None
    visible: bool | None = None
    settings_open: bool | None = None


class ChannelSummary(BaseModel):
    name: str
    topic: str
    members: list[str]
    operators: list[str]
    unread: bool
    typing: list[str]


class ConversationSummary(BaseModel):
    name: str
    unread: bool
    message_count: int
