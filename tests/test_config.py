"""Tests for ~/.flowgraph/configuration.json handling."""

import json

import pytest

from flowgraph import config
from flowgraph.config import RuntimeConfig


@pytest.fixture
def config_file(tmp_path, monkeypatch):
    path = tmp_path / "configuration.json"
    monkeypatch.setattr(config, "FLOWGRAPH_CONFIG_FILE", path)
    return path


def test_missing_file_uses_defaults(config_file):
    assert config.get_flowgraph_config() == {}
    assert config.get_preferred_model() == "openai/gpt-4o"
    assert config.get_image_model() == "dall-e-3"
    assert config.get_max_tokens() == 2000
    assert config.get_api_key() is None


def test_invalid_file_is_ignored(config_file):
    config_file.write_text("{not json")

    assert config.get_flowgraph_config() == {}


def test_values_from_file(config_file, monkeypatch):
    config_file.write_text(
        json.dumps(
            {
                "llm": {
                    "provider": "anthropic",
                    "model": "claude-3-5-haiku-latest",
                    "max_tokens": 512,
                    "api_key_env_var": "FLOWGRAPH_TEST_KEY",
                }
            }
        )
    )
    monkeypatch.setenv("FLOWGRAPH_TEST_KEY", "sk-test")

    runtime = RuntimeConfig()

    assert runtime.model == "anthropic/claude-3-5-haiku-latest"
    assert runtime.max_tokens == 512
    assert runtime.api_key == "sk-test"
    assert runtime.image_model == "dall-e-3"
    assert runtime.temperature == 0.7
