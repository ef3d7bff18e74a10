"""Configuration manager for CodeIntel CLI using TOML files."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict

import toml

BASE_DIR = Path(os.environ.get("CODEINTEL_HOME", str(Path.home() / ".codeintel"))).expanduser()
CONFIG_FILE = BASE_DIR / "config.toml"


# Default configurations for each provider
DEFAULT_CONFIGS = {
    "ollama": {
        "provider": "ollama",
        "model": "qwen2.5-coder:7b",
        "endpoint": "http://127.0.0.1:11434/api/generate",
    },
    "openai": {
        "provider": "openai",
        "model": "gpt-4",
        "api_key": "",
    },
    "anthropic": {
        "provider": "anthropic",
        "model": "claude-3-5-sonnet-20241022",
        "api_key": "",
    },
}


def load_full_config() -> Dict[str, Any]:
    """Load the entire TOML config (all sections)."""
    if not CONFIG_FILE.exists():
        return {}
    try:
        with open(CONFIG_FILE, "r") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError):
        return {}


def _save_full_config(config: Dict[str, Any]) -> bool:
    """Write entire config dict to TOML file, preserving all sections."""
    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(CONFIG_FILE, "w") as f:
            toml.dump(config, f)
        return True
    except OSError:
        return False


def load_config() -> Dict[str, Any]:
    """Load the ``[llm]`` section.

    Returns:
        Configuration dictionary with provider settings.
        Falls back to Ollama defaults if the file or section is missing.
    """
    return load_full_config().get("llm", DEFAULT_CONFIGS["ollama"].copy())


def save_config(provider: str, model: str, api_key: str = "", endpoint: str = "") -> bool:
    """Save LLM configuration to TOML file.

    Preserves other sections (e.g. ``[knowledge]``) in the file.

    Args:
        provider: Provider name (ollama, openai, anthropic)
        model: Model name
        api_key: API key for cloud providers
        endpoint: Custom endpoint

    Returns:
        True if saved successfully, False otherwise
    """
    config = load_full_config()

    config["llm"] = {
        "provider": provider,
        "model": model,
    }
    if api_key:
        config["llm"]["api_key"] = api_key
    if endpoint:
        config["llm"]["endpoint"] = endpoint

    return _save_full_config(config)


# ------------------------------------------------------------------
# Knowledge-source configuration
# ------------------------------------------------------------------

def load_knowledge_config() -> Dict[str, Any]:
    """Load the ``[knowledge]`` section (endpoint / api_key), or an empty dict."""
    return load_full_config().get("knowledge", {})


def save_knowledge_config(endpoint: str, api_key: str = "") -> bool:
    """Save the knowledge-source endpoint, preserving ``[llm]``."""
    config = load_full_config()
    config["knowledge"] = {"endpoint": endpoint}
    if api_key:
        config["knowledge"]["api_key"] = api_key
    return _save_full_config(config)


def get_provider_config(provider: str) -> Dict[str, Any]:
    """Get default configuration for a specific provider."""
    return DEFAULT_CONFIGS.get(provider, DEFAULT_CONFIGS["ollama"]).copy()
