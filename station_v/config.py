"""Application configuration (connection, nickname, pacing, tuning).

Settings live in ``{data_dir}/config.json``. ``get_config`` returns the
defaults merged with whatever is stored; ``update_config`` applies a
partial update (nested groups merged key by key) and persists the result.
Unknown keys are rejected by validation rather than silently stored.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

logger = logging.getLogger(__name__)

SimulationSpeed = Literal["fast", "normal", "slow", "off"]

# Base tick interval per speed, in seconds.
SIMULATION_INTERVALS: dict[str, float] = {
    "fast": 15.0,
    "normal": 30.0,
    "slow": 60.0,
}


class TypingDelay(BaseModel):
    model_config = ConfigDict(extra="forbid")

    enabled: bool = True
    base_delay_ms: int = 500
    max_delay_ms: int = 3000
    per_char_ms: int = 30

    def seconds_for(self, content: str) -> float:
        """How long a typing indicator shows before ``content`` appears."""
        if not self.enabled:
            return 0.5
        ms = min(self.max_delay_ms, self.base_delay_ms + self.per_char_ms * len(content))
        return ms / 1000


class LLMSettings(BaseModel):
    model_config = ConfigDict(extra="forbid")

    provider_url: str = ""
    api_key: str = ""
    provider_format: Literal["koboldcpp", "openai"] = "koboldcpp"
    model: str = ""
    timeout: float = 60.0


class ImageSettings(BaseModel):
    """Passed to bot commands that produce images (!image, !img)."""

    model_config = ConfigDict(extra="forbid")

    provider_url: str = ""
    api_key: str = ""
    width: int = Field(default=512, ge=64, le=2048)
    height: int = Field(default=512, ge=64, le=2048)


class SimulationTuning(BaseModel):
    """Empirically tuned pacing constants. Probabilities are 0–1 unless noted."""

    model_config = ConfigDict(extra="forbid")

    quiet_chance: float = 0.30
    quiet_reaction_chance: float = 0.40
    burst_window: float = 30.0
    reaction_chance: float = 0.20
    reaction_delay: tuple[float, float] = (1.0, 4.0)
    extra_chatter_chance: float = 0.10
    extra_chatter_delay: tuple[float, float] = (2.0, 7.0)
    burst_reaction_chance: float = 0.30
    burst_second_chance: float = 0.30
    burst_delay: tuple[float, float] = (1.0, 4.0)
    error_window: float = 300.0
    staleness_period: tuple[float, float] = (7200.0, 10800.0)
    # (standard, afterhours)
    dm_gate_viewing: tuple[float, float] = (0.30, 0.40)
    dm_gate_idle: tuple[float, float] = (0.10, 0.08)
    default_pm_probability: int = Field(default=25, ge=0, le=100)  # percent
    afterhours_pm_multiplier: float = 1.5
    afterhours_pm_cap: float = 50.0  # percent


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    nickname: str = "you"
    simulation_speed: SimulationSpeed = "normal"
    ai_model: str = ""
    typing_delay: TypingDelay = Field(default_factory=TypingDelay)
    llm: LLMSettings = Field(default_factory=LLMSettings)
    tuning: SimulationTuning = Field(default_factory=SimulationTuning)
    image: ImageSettings = Field(default_factory=ImageSettings)

    @property
    def base_interval(self) -> float | None:
        return SIMULATION_INTERVALS.get(self.simulation_speed)


_GROUPS = ("typing_delay", "llm", "tuning", "image")


def _config_path(data_dir: Path) -> Path:
    return data_dir / "config.json"


def _merge(config: dict[str, Any], fields: dict[str, Any]) -> dict[str, Any]:
    merged = dict(config)
    for key, value in fields.items():
        if key in _GROUPS and isinstance(value, dict):
            merged[key] = {**merged.get(key, {}), **value}
        else:
            merged[key] = value
    return merged


def get_config(data_dir: Path) -> AppConfig:
    """Read config, returning defaults merged with stored values."""
    defaults = AppConfig().model_dump()
    path = _config_path(data_dir)
    if not path.is_file():
        return AppConfig()
    stored = json.loads(path.read_text())
    return AppConfig.model_validate(_merge(defaults, stored))


def update_config(data_dir: Path, fields: dict[str, Any]) -> AppConfig:
    """Merge fields into config and persist. Returns the full config.

    Raises pydantic.ValidationError if the merged result is invalid; nothing
    is written in that case.
    """
    current = get_config(data_dir).model_dump()
    config = AppConfig.model_validate(_merge(current, fields))
    data_dir.mkdir(parents=True, exist_ok=True)
    _config_path(data_dir).write_text(config.model_dump_json(indent=2))
    logger.info("config updated: %s", ", ".join(sorted(fields)) or "(no fields)")
    return config
