"""Shared lookups for route handlers."""

from fastapi import HTTPException, Request

from station_v.models import Channel
from station_v.simulation import Simulation


def get_simulation(request: Request) -> Simulation:
    return request.app.state.simulation


def resolve_channel(simulation: Simulation, name: str) -> Channel:
    """Find a channel by name; the leading "#" may be omitted in URLs."""
    channels = simulation.state.channels
    for candidate in (name, f"#{name}"):
        if candidate in channels:
            return channels[candidate]
    raise HTTPException(404, "Channel not found")


def require_actor(simulation: Simulation, name: str) -> None:
    if simulation.state.actor(name) is None:
        raise HTTPException(404, "User not found")
