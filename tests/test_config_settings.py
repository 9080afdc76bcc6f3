"""Tests for config.json handling: defaults, nested merge, validation."""

import json

import pytest
from pydantic import ValidationError

from station_v.config import AppConfig, TypingDelay, get_config, update_config


def test_get_config_empty(data_dir):
    """Returns defaults when no config file exists."""
    config = get_config(data_dir)
    assert config.nickname == "you"
    assert config.simulation_speed == "normal"
    assert config.base_interval == 30.0
    assert config.tuning.quiet_chance == 0.3
    assert config.tuning.dm_gate_idle == (0.10, 0.08)


def test_update_config_persists(data_dir):
    """Scalar updates are written and read back."""
    update_config(data_dir, {"nickname": "zero", "simulation_speed": "fast"})
    config = get_config(data_dir)
    assert config.nickname == "zero"
    assert config.base_interval == 15.0


def test_update_config_merges_groups(data_dir):
    """Partial group updates keep the other keys of the group."""
    update_config(data_dir, {"llm": {"provider_url": "http://localhost:5001"}})
    update_config(data_dir, {"llm": {"api_key": "secret"}})
    update_config(data_dir, {"tuning": {"reaction_chance": 0.5}})

    config = get_config(data_dir)
    assert config.llm.provider_url == "http://localhost:5001"
    assert config.llm.api_key == "secret"
    assert config.llm.provider_format == "koboldcpp"
    assert config.tuning.reaction_chance == 0.5
    assert config.tuning.quiet_chance == 0.3


def test_stored_file_is_plain_json(data_dir):
    update_config(data_dir, {"typing_delay": {"enabled": False}})
    stored = json.loads((data_dir / "config.json").read_text())
    assert stored["typing_delay"]["enabled"] is False


@pytest.mark.parametrize("fields", [
    {"simulation_speed": "ludicrous"},
    {"unknown_key": 1},
    {"tuning": {"not_a_knob": 1}},
    {"tuning": {"default_pm_probability": 150}},
])
def test_invalid_update_rejected_and_not_written(data_dir, fields):
    """Invalid merges raise and leave the stored config untouched."""
    update_config(data_dir, {"nickname": "zero"})
    with pytest.raises(ValidationError):
        update_config(data_dir, fields)
    assert get_config(data_dir).nickname == "zero"
    assert get_config(data_dir).simulation_speed == "normal"


def test_off_has_no_interval():
    assert AppConfig(simulation_speed="off").base_interval is None


class TestTypingDelay:
    def test_scales_with_length(self):
        assert TypingDelay().seconds_for("abcd") == 0.62

    def test_capped(self):
        assert TypingDelay().seconds_for("x" * 500) == 3.0

    def test_disabled_is_fixed(self):
        assert TypingDelay(enabled=False).seconds_for("x" * 500) == 0.5


def test_image_settings_group(data_dir):
    """Image settings for bot commands merge like the other groups."""
    assert get_config(data_dir).image.width == 512
    update_config(data_dir, {"image": {"provider_url": "http://localhost:7860"}})
    update_config(data_dir, {"image": {"height": 768}})
    image = get_config(data_dir).image
    assert (image.provider_url, image.width, image.height) == ("http://localhost:7860", 512, 768)
