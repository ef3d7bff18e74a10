"""Paths, constants and settings for CodeIntel analysis."""

from __future__ import annotations

import os
from typing import Set

from .config_manager import BASE_DIR, CONFIG_FILE, load_config, load_knowledge_config

SUPPORTED_EXTENSIONS: Set[str] = {".ts", ".tsx", ".js", ".jsx", ".py", ".go", ".rs", ".java"}

IGNORE_DIRS: Set[str] = {
    "node_modules", "dist", "build", ".git", "target", "__pycache__",
    ".next", "vendor", ".venv", "venv", ".tox", ".pytest_cache", ".mypy_cache",
}

LANGUAGE_MAP = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".go": "go",
    ".rs": "rust",
    ".java": "java",
}

LOG_LEVEL = os.environ.get("CODEINTEL_LOG_LEVEL", "WARNING").upper()

# Seconds allowed for one refactoring-enhancement call
ENHANCEMENT_TIMEOUT = 15.0

_toml_config = load_config()
_knowledge_config = load_knowledge_config()

# LLM provider — loaded from ~/.codeintel/config.toml (set via `codeintel set-llm`)
LLM_PROVIDER = _toml_config.get("provider", "ollama")
LLM_API_KEY = _toml_config.get("api_key", "")
LLM_MODEL = _toml_config.get("model", "qwen2.5-coder:7b")
LLM_ENDPOINT = _toml_config.get("endpoint", "http://127.0.0.1:11434/api/generate")

# Knowledge source — empty endpoint means no enrichment
KNOWLEDGE_ENDPOINT = os.environ.get("CODEINTEL_KNOWLEDGE_ENDPOINT", _knowledge_config.get("endpoint", ""))
KNOWLEDGE_API_KEY = os.environ.get("CODEINTEL_KNOWLEDGE_API_KEY", _knowledge_config.get("api_key", ""))

__all__ = [
    "BASE_DIR",
    "CONFIG_FILE",
    "ENHANCEMENT_TIMEOUT",
    "IGNORE_DIRS",
    "KNOWLEDGE_API_KEY",
    "KNOWLEDGE_ENDPOINT",
    "LANGUAGE_MAP",
    "LLM_API_KEY",
    "LLM_ENDPOINT",
    "LLM_MODEL",
    "LLM_PROVIDER",
    "LOG_LEVEL",
    "SUPPORTED_EXTENSIONS",
]
