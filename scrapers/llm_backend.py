"""Text-in/text-out completion backends used by the extractor."""
from __future__ import annotations

import logging
import os
from typing import Protocol

from dotenv import load_dotenv
from openai import APIStatusError, APITimeoutError, OpenAI

load_dotenv()

logger = logging.getLogger(__name__)

OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))


class CompletionBackend(Protocol):
    """Anything that turns a prompt into a text response."""

    def complete(self, prompt: str, *, max_tokens: int = 1024) -> str:
        ...


def get_openai_api_key() -> str:
    """Load the OpenAI API key from the environment or ``~/.secret_keys``."""
    api_key = os.getenv("OPENAI_API_KEY")

    if not api_key:
        try:
            with open(os.path.expanduser("~/.secret_keys"), "r") as f:
                for line in f:
                    if line.startswith("OPENAI_API_KEY="):
                        api_key = line.split("=", 1)[1].strip()
                        break
        except FileNotFoundError:
            pass

    if not api_key:
        raise ValueError("OpenAI API key not found in environment or ~/.secret_keys")

    return api_key


def get_openai_client(timeout: float = LLM_TIMEOUT_SECONDS) -> OpenAI:
    """Get an OpenAI client with a bounded request timeout."""
    return OpenAI(api_key=get_openai_api_key(), timeout=timeout, max_retries=1)


class OpenAIBackend:
    """Chat-completions backend returning the raw assistant text."""

    def __init__(
        self,
        client: OpenAI | None = None,
        model: str | None = None,
        temperature: float = 0.1,
    ):
        self._client = client
        self.model = model or OPENAI_MODEL
        self.temperature = temperature

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            self._client = get_openai_client()
        return self._client

    def complete(self, prompt: str, *, max_tokens: int = 1024) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=self.temperature,
                max_tokens=max_tokens,
            )
        except APITimeoutError:
            logger.warning("OpenAI request timed out (model=%s)", self.model)
            raise
        except APIStatusError as exc:
            if exc.response.status_code == 429:
                raise RuntimeError(
                    "OpenAI API returned status 429: rate limited or out of credits"
                ) from exc
            raise
        return (response.choices[0].message.content or "").strip()
