"""Advisory text generation over local or hosted LLMs (Ollama, OpenAI, Anthropic)."""

from __future__ import annotations

import asyncio
import json
import logging
import urllib.error
import urllib.request
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from .config import LLM_API_KEY, LLM_ENDPOINT, LLM_MODEL, LLM_PROVIDER
from .config_manager import get_provider_config

logger = logging.getLogger(__name__)

_DEFAULT_LOCAL_MODEL = "qwen2.5-coder:7b"


def _post_json(url: str, payload: Dict[str, Any], headers: Dict[str, str], timeout: float) -> Optional[Dict[str, Any]]:
    req = urllib.request.Request(
        url,
        data=json.dumps(payload).encode("utf-8"),
        headers={"Content-Type": "application/json", **headers},
        method="POST",
    )
    try:
        with urllib.request.urlopen(req, timeout=timeout) as resp:
            return json.loads(resp.read().decode("utf-8"))
    except (urllib.error.URLError, TimeoutError, json.JSONDecodeError) as exc:
        logger.debug("LLM request to %s failed: %s", url, exc)
        return None


class LLMProvider:
    """Base class for LLM providers."""

    timeout: float = 30

    def generate(self, prompt: str) -> Optional[str]:
        """Completion text for *prompt*, or ``None`` on any failure."""
        raise NotImplementedError


class OllamaProvider(LLMProvider):
    def __init__(self, model: str, endpoint: str):
        self.model = model
        self.endpoint = endpoint

    def generate(self, prompt: str) -> Optional[str]:
        parsed = _post_json(
            self.endpoint,
            {"model": self.model, "prompt": prompt, "stream": False, "options": {"temperature": 0.1}},
            {},
            self.timeout,
        )
        return parsed.get("response") if parsed else None


class OpenAIProvider(LLMProvider):
    """OpenAI chat completions; any OpenAI-compatible endpoint works."""

    def __init__(self, model: str, api_key: str, endpoint: str = "https://api.openai.com/v1/chat/completions"):
        self.model = model
        self.api_key = api_key
        self.endpoint = endpoint

    def generate(self, prompt: str) -> Optional[str]:
        if not self.api_key:
            return None
        parsed = _post_json(
            self.endpoint,
            {
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": 0.1,
                "max_tokens": 1024,
            },
            {"Authorization": f"Bearer {self.api_key}"},
            self.timeout,
        )
        try:
            return parsed["choices"][0]["message"]["content"] if parsed else None
        except (KeyError, IndexError, TypeError):
            return None


class AnthropicProvider(LLMProvider):
    def __init__(self, model: str, api_key: str):
        self.model = model
        self.api_key = api_key
        self.endpoint = "https://api.anthropic.com/v1/messages"

    def generate(self, prompt: str) -> Optional[str]:
        if not self.api_key:
            return None
        parsed = _post_json(
            self.endpoint,
            {
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
                "max_tokens": 1024,
                "temperature": 0.1,
            },
            {"x-api-key": self.api_key, "anthropic-version": "2023-06-01"},
            self.timeout,
        )
        try:
            return parsed["content"][0]["text"] if parsed else None
        except (KeyError, IndexError, TypeError):
            return None


class LocalLLM:
    """Provider selection driven by ``[llm]`` in ``config.toml``."""

    def __init__(
        self,
        model: Optional[str] = None,
        provider: Optional[str] = None,
        api_key: Optional[str] = None,
        endpoint: Optional[str] = None,
    ):
        self.provider_name = (provider or LLM_PROVIDER).lower()
        self.model = model or LLM_MODEL
        self.api_key = api_key or LLM_API_KEY
        self.endpoint = endpoint or LLM_ENDPOINT
        self.provider = self._create_provider()

    def _create_provider(self) -> LLMProvider:
        if self.provider_name == "openai":
            model = self.model if self.model != _DEFAULT_LOCAL_MODEL else "gpt-4"
            endpoint = self.endpoint
            if not endpoint or endpoint == get_provider_config("ollama")["endpoint"]:
                endpoint = "https://api.openai.com/v1/chat/completions"
            return OpenAIProvider(model, self.api_key, endpoint)
        if self.provider_name == "anthropic":
            model = self.model if self.model != _DEFAULT_LOCAL_MODEL else "claude-3-5-sonnet-20241022"
            return AnthropicProvider(model, self.api_key)
        return OllamaProvider(self.model, self.endpoint)

    def generate(self, prompt: str) -> Optional[str]:
        response = self.provider.generate(prompt)
        if not response:
            logger.debug("No response from %s provider", self.provider_name)
        return response


# ===================================================================
# Advisory text service
# ===================================================================

class AdvisoryTextService(ABC):
    """Rewrites refactoring hints; a ``None`` result leaves the hint unchanged."""

    @abstractmethod
    async def suggest(self, prompt: str) -> Optional[str]:
        ...


class RefactoringEnhancer(AdvisoryTextService):
    """Runs the blocking LLM call on a worker thread."""

    def __init__(self, llm: Optional[LocalLLM] = None):
        self.llm = llm or LocalLLM()

    async def suggest(self, prompt: str) -> Optional[str]:
        text = await asyncio.to_thread(self.llm.generate, prompt)
        return text.strip() if text else None


def build_refactoring_prompt(issue_type: str, description: str, entities: list) -> str:
    return (
        "Provide specific refactoring steps for this code architecture issue:\n\n"
        f"Issue Type: {issue_type}\n"
        f"Description: {description}\n"
        f"Affected Files: {', '.join(entities[:5])}\n\n"
        "Provide 3-5 concrete, actionable steps."
    )
