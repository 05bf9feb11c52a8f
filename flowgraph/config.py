"""Shared flowgraph configuration utilities.

Centralises reading of ~/.flowgraph/configuration.json so that every
provider and entry point shares one implementation.

Example file:
    {
        "llm": {
            "provider": "openai",
            "model": "gpt-4o",
            "image_model": "dall-e-3",
            "max_tokens": 2000,
            "api_key_env_var": "OPENAI_API_KEY"
        }
    }
"""

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

DEFAULT_MODEL = "openai/gpt-4o"
DEFAULT_IMAGE_MODEL = "dall-e-3"
DEFAULT_MAX_TOKENS = 2000

# ---------------------------------------------------------------------------
# Low-level config file access
# ---------------------------------------------------------------------------

FLOWGRAPH_CONFIG_FILE = Path.home() / ".flowgraph" / "configuration.json"


def get_flowgraph_config() -> dict[str, Any]:
    """Load configuration from ~/.flowgraph/configuration.json."""
    if not FLOWGRAPH_CONFIG_FILE.exists():
        return {}
    try:
        with open(FLOWGRAPH_CONFIG_FILE, encoding="utf-8-sig") as f:
            return json.load(f)
    except (json.JSONDecodeError, OSError):
        return {}


# ---------------------------------------------------------------------------
# Derived helpers
# ---------------------------------------------------------------------------


def get_preferred_model() -> str:
    """Return the preferred completion model string (e.g. 'openai/gpt-4o')."""
    llm = get_flowgraph_config().get("llm", {})
    if llm.get("provider") and llm.get("model"):
        return f"{llm['provider']}/{llm['model']}"
    return DEFAULT_MODEL


def get_image_model() -> str:
    """Return the model used by text-to-image nodes."""
    return get_flowgraph_config().get("llm", {}).get("image_model", DEFAULT_IMAGE_MODEL)


def get_max_tokens() -> int:
    """Return the configured max_tokens, falling back to DEFAULT_MAX_TOKENS."""
    return get_flowgraph_config().get("llm", {}).get("max_tokens", DEFAULT_MAX_TOKENS)


def get_api_key() -> str | None:
    """Return the API key from the environment variable specified in configuration."""
    llm = get_flowgraph_config().get("llm", {})
    api_key_env_var = llm.get("api_key_env_var")
    if api_key_env_var:
        return os.environ.get(api_key_env_var)
    return None


# ---------------------------------------------------------------------------
# RuntimeConfig
# ---------------------------------------------------------------------------


@dataclass
class RuntimeConfig:
    """Model runtime configuration loaded from ~/.flowgraph/configuration.json."""

    model: str = field(default_factory=get_preferred_model)
    image_model: str = field(default_factory=get_image_model)
    temperature: float = 0.7
    max_tokens: int = field(default_factory=get_max_tokens)
    api_key: str | None = field(default_factory=get_api_key)
    api_base: str | None = None
