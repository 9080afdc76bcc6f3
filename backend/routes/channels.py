"""Channel endpoints: list, messages, posting, viewing, topic, join/leave."""

from fastapi import APIRouter, Depends

from station_v.models import ChannelRef
from station_v.simulation import Simulation

from .deps import get_simulation, resolve_channel
from .models import ChannelSummary, PostMessage, SetTopic

router = APIRouter()


@router.get("/channels")
async def list_channels(sim: Simulation = Depends(get_simulation)) -> list[ChannelSummary]:
    """List channels with members, unread flag and who is typing."""
    state = sim.state
    return [
        ChannelSummary(
            name=c.name,
            topic=c.topic,
            members=c.members,
            operators=c.operators,
            unread=c.name in state.unread,
            typing=sorted(state.typing.get(c.name, set())),
        )
        for c in state.channels.values()
    ]


@router.get("/channels/{name}/messages")
async def channel_messages(name: str, limit: int = 100, sim: Simulation = Depends(get_simulation)):
    """Most recent messages of a channel, oldest first."""
    channel = resolve_channel(sim, name)
    return channel.messages[-limit:] if limit > 0 else []


@router.post("/channels/{name}/messages", status_code=201)
async def post_channel_message(
    name: str, body: PostMessage, sim: Simulation = Depends(get_simulation)
):
    """Post a message as the human."""
    channel = resolve_channel(sim, name)
    return sim.send_human_message(channel.name, body.content)


@router.post("/channels/{name}/view")
async def view_channel(name: str, sim: Simulation = Depends(get_simulation)):
    """Make a channel the active context and clear its unread flag."""
    channel = resolve_channel(sim, name)
    sim.view(ChannelRef(name=channel.name))
    return {"active": channel.name}


@router.put("/channels/{name}/topic")
async def set_topic(name: str, body: SetTopic, sim: Simulation = Depends(get_simulation)):
    """Change the channel topic."""
    channel = resolve_channel(sim, name)
    return sim.set_topic(channel.name, body.topic)


@router.post("/channels/{name}/join")
async def join_channel(name: str, sim: Simulation = Depends(get_simulation)):
    channel = resolve_channel(sim, name)
    return {"message": sim.join_channel(channel.name)}


@router.post("/channels/{name}/leave")
async def leave_channel(name: str, sim: Simulation = Depends(get_simulation)):
    channel = resolve_channel(sim, name)
    return {"message": sim.leave_channel(channel.name)}
