"""
OpenRouter client (OpenAI-compatible) used as the text generator behind
ModelPlanner. Reads OPENROUTER_API_KEY from the environment (.env is
loaded by the CLI).

Model selection:
  - Explicit: OpenRouterClient(default_model="deepseek/deepseek-chat")
  - From env: OPENROUTER_MODEL
  - Otherwise DEFAULT_MODEL

Failures raise instead of returning an error dict: ModelPlanner turns any
exception into an AIProviderError and falls back to the rule-based planner.
"""

import logging
import os
import time
from typing import Optional

from openai import OpenAI

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "x-ai/grok-4.1-fast"
TIMEOUT_SEC = 60.0
# Plans are short JSON documents
DEFAULT_MAX_TOKENS = 1500


class OpenRouterClient:
    """Callable ``prompt -> text`` backed by OpenRouter chat completions."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = TIMEOUT_SEC,
        default_model: Optional[str] = None,
    ) -> None:
        key = api_key or os.environ.get("OPENROUTER_API_KEY")
        if not key:
            raise ValueError(
                "OPENROUTER_API_KEY not set in environment or passed to OpenRouterClient. "
                "Get a key at https://openrouter.ai/keys"
            )
        self._base_url = base_url or os.environ.get("OPENROUTER_API_BASE_URL") or DEFAULT_BASE_URL
        self._timeout = timeout
        self.model = default_model or os.environ.get("OPENROUTER_MODEL") or DEFAULT_MODEL
        self._client = OpenAI(
            api_key=key,
            base_url=self._base_url,
            default_headers={"X-Title": os.environ.get("OPENROUTER_APP_TITLE", "Cowork")},
        )
        logger.info(
            "OpenRouter client initialized (base_url=%s, model=%s)", self._base_url, self.model,
        )

    @staticmethod
    def is_available() -> bool:
        """True if OPENROUTER_API_KEY is set (the client can be constructed)."""
        return bool(os.environ.get("OPENROUTER_API_KEY"))

    def generate(
        self,
        prompt: str,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = 0.2,
    ) -> str:
        """Return the completion text for ``prompt``."""
        start = time.perf_counter()
        response = self._client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=max_tokens,
            temperature=temperature,
            timeout=self._timeout,
        )
        text = response.choices[0].message.content or ""
        usage = getattr(response, "usage", None)
        logger.info(
            "OpenRouter API [%s]: %d in + %d out in %d ms",
            getattr(response, "model", None) or self.model,
            getattr(usage, "prompt_tokens", 0) if usage else 0,
            getattr(usage, "completion_tokens", 0) if usage else 0,
            int((time.perf_counter() - start) * 1000),
        )
        return text

    __call__ = generate
