"""FastAPI API endpoints under /api.

Endpoint groups: health and settings, channels (messages, view, topic,
join/leave), direct messages, and simulation control.
"""

from fastapi import APIRouter

from .channels import router as channels_router
from .dms import router as dms_router
from .settings import router as settings_router
from .simulation import router as simulation_router

router = APIRouter()
router.include_router(settings_router)
router.include_router(channels_router)
router.include_router(dms_router)
router.include_router(simulation_router)
