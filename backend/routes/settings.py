"""Health check and settings endpoints."""

from fastapi import APIRouter, HTTPException, Request
from pydantic import ValidationError

from station_v.config import get_config, update_config

router = APIRouter()


@router.get("/health")
async def health():
    """Health check."""
    return {"status": "ok"}


@router.get("/settings")
async def get_settings(request: Request):
    """Get app settings (nickname, speed, typing delay, LLM connection, tuning)."""
    return get_config(request.app.state.data_dir)


@router.patch("/settings")
async def update_settings(body: dict, request: Request):
    """Update app settings (partial merge) and apply them to the running simulation."""
    try:
        config = update_config(request.app.state.data_dir, body)
    except ValidationError as e:
        raise HTTPException(422, [err["msg"] for err in e.errors()])
    request.app.state.simulation.apply_config(config)
    return config
