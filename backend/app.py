import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

from dotenv import load_dotenv
from fastapi import FastAPI

from backend.routes import router
from station_v.broadcast import BroadcastHub
from station_v.config import get_config
from station_v.llm import LLM
from station_v.simulation import Simulation
from station_v.storage import Storage

load_dotenv(Path(__file__).parent.parent / ".env")

logger = logging.getLogger(__name__)

DEFAULT_DATA_DIR = Path(__file__).parent.parent / "data"


def create_app(
    data_dir: Path | None = None,
    llm: LLM | None = None,
    run_scheduler: bool = True,
) -> FastAPI:
    resolved = data_dir or Path(os.getenv("DATA_DIR", str(DEFAULT_DATA_DIR)))
    storage = Storage(resolved)

    config = get_config(resolved)
    if not config.llm.provider_url and os.getenv("LLM_PROVIDER_URL"):
        config = config.model_copy(update={"llm": config.llm.model_copy(update={
            "provider_url": os.environ["LLM_PROVIDER_URL"],
            "api_key": os.getenv("LLM_API_KEY", ""),
        })})

    actors, channels, conversations = storage.load_state()
    hub = BroadcastHub()
    simulation = Simulation(
        config, actors, channels, llm=llm, persistence=storage, broadcast=hub.open(),
        conversations=conversations,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if run_scheduler:
            simulation.start()
        yield
        await simulation.stop()
        storage.save_state(
            list(simulation.state.actors.values()), list(simulation.state.channels.values())
        )
        logger.info("simulation state saved to %s", resolved)

    app = FastAPI(title="Station V", lifespan=lifespan)
    app.state.data_dir = resolved
    app.state.storage = storage
    app.state.hub = hub
    app.state.simulation = simulation
    app.include_router(router, prefix="/api")
    return app


# Default app instance for uvicorn (uses DATA_DIR env var or default)
app = create_app()
