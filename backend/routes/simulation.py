"""Simulation status and control."""

from fastapi import APIRouter, Depends

from station_v.activity import activity_multiplier, is_afterhours
from station_v.simulation import Simulation

from .deps import get_simulation
from .models import UpdateSimulation

router = APIRouter()


def _status(sim: Simulation) -> dict:
    scheduler = sim.scheduler
    now = sim.state.clock()
    return {
        "status": scheduler.status.value,
        "speed": scheduler.speed,
        "visible": scheduler.visible,
        "settings_open": scheduler.settings_open,
        "interval": scheduler.interval(),
        "afterhours": is_afterhours(now),
        "multiplier": activity_multiplier(now),
        "burst": scheduler.in_burst(),
        "in_flight": sim.limiter.in_flight,
    }


@router.get("/simulation")
async def get_simulation_status(sim: Simulation = Depends(get_simulation)):
    return _status(sim)


@router.patch("/simulation")
async def update_simulation(body: UpdateSimulation, sim: Simulation = Depends(get_simulation)):
    """Change speed, visibility or the settings-open flag; the timer is re-armed."""
    scheduler = sim.scheduler
    if body.speed is not None:
        scheduler.set_speed(body.speed)
    if body.visible is not None:
        scheduler.set_visible(body.visible)
    if body.settings_open is not None:
        scheduler.set_settings_open(body.settings_open)
    return _status(sim)
