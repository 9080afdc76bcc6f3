"""Direct message endpoints."""

from fastapi import APIRouter, Depends

from station_v.models import DirectRef
from station_v.simulation import Simulation

from .deps import get_simulation, require_actor
from .models import ConversationSummary, PostMessage

router = APIRouter()


@router.get("/dms")
async def list_conversations(sim: Simulation = Depends(get_simulation)) -> list[ConversationSummary]:
    state = sim.state
    return [
        ConversationSummary(
            name=name,
            unread=DirectRef(with_actor=name).key in state.unread,
            message_count=len(conversation.messages),
        )
        for name, conversation in state.conversations.items()
    ]


@router.get("/dms/{name}")
async def conversation_messages(name: str, sim: Simulation = Depends(get_simulation)):
    require_actor(sim, name)
    conversation = sim.state.conversations.get(name)
    return conversation.messages if conversation else []


@router.post("/dms/{name}", status_code=201)
async def send_dm(name: str, body: PostMessage, sim: Simulation = Depends(get_simulation)):
    """Send a DM as the human; the reply (if any) is returned alongside."""
    require_actor(sim, name)
    sent, reply = await sim.send_human_dm(name, body.content)
    return {"sent": sent, "reply": reply}


@router.post("/dms/{name}/view")
async def view_conversation(name: str, sim: Simulation = Depends(get_simulation)):
    require_actor(sim, name)
    sim.view(DirectRef(with_actor=name))
    return {"active": name}
