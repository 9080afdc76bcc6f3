"""LLM client: HTTP connection to a text-completion backend.

The simulation injects an LLM callable matching the protocol:

    async def __call__(self, stage: str, prompt: str) -> str: ...

`stage` names the kind of generation being asked for ("channel_activity",
"reaction", "private_message"). Implementations may use it for logging or
routing; the simplest implementation ignores it.

Two implementations are provided:

    HttpLLM   - real HTTP client, supports KoboldCpp and OpenAI-compatible
                 backends. Selected by provider_format.
    EchoLLM   - answers with the last line of the prompt. Lets the whole
                 network run without a model attached.

Failures are raised as LLMError. The scheduler never lets one escape a
tick; it turns it into a user-facing notice via classify_generation_error().
"""

from __future__ import annotations

import logging
from typing import Literal, Protocol

import httpx

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Protocol: every LLM implementation must match this signature
# ---------------------------------------------------------------------------

class LLM(Protocol):
    async def __call__(self, stage: str, prompt: str) -> str: ...


# ---------------------------------------------------------------------------
# HttpLLM: connects to a real backend
# ---------------------------------------------------------------------------

ProviderFormat = Literal["koboldcpp", "openai"]


class HttpLLM:
    """Async HTTP client for text-completion backends.

    Supported formats:
      "koboldcpp"  - POST /api/v1/generate  {"prompt": ..., "max_length": ...}
                     Response: {"results": [{"text": "..."}]}
      "openai"     - POST /v1/completions   {"model": ..., "prompt": ..., "max_tokens": ...}
                     Response: {"choices": [{"text": "..."}]}

    Chat lines are short, so completions are capped at ``max_length`` tokens
    and stopped at the first newline.
    """

    def __init__(
        self,
        provider_url: str,
        api_key: str = "",
        provider_format: ProviderFormat = "koboldcpp",
        model: str = "",
        timeout: float = 60.0,
        max_length: int = 120,
    ) -> None:
        self._base_url = provider_url.rstrip("/")
        self._api_key = api_key
        self._format = provider_format
        self._model = model
        self._timeout = timeout
        self._max_length = max_length

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    def _build_request(self, prompt: str) -> tuple[str, dict]:
        if self._format == "openai":
            body: dict = {"prompt": prompt, "max_tokens": self._max_length, "stop": ["\n"]}
            if self._model:
                body["model"] = self._model
            return f"{self._base_url}/v1/completions", body

        body = {"prompt": prompt, "max_length": self._max_length, "stop_sequence": ["\n"]}
        return f"{self._base_url}/api/v1/generate", body

    def _parse_response(self, data: dict) -> str:
        key = "choices" if self._format == "openai" else "results"
        entries = data.get(key)
        if not entries or "text" not in entries[0]:
            raise LLMError(f"Unexpected response format from {self._format} backend")
        return entries[0]["text"]

    async def __call__(self, stage: str, prompt: str) -> str:
        url, body = self._build_request(prompt)
        logger.debug("llm call stage=%s url=%s prompt_len=%d", stage, url, len(prompt))

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise LLMError(f"NetworkError: cannot connect to {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise LLMError(f"LLM backend returned HTTP {e.response.status_code}") from e
        except httpx.TimeoutException as e:
            raise LLMError(f"NetworkError: backend timed out after {self._timeout}s") from e

        text = self._parse_response(resp.json())
        logger.debug("llm response stage=%s len=%d", stage, len(text))
        return text


# ---------------------------------------------------------------------------
# EchoLLM: no network; answers with the prompt's final line
# ---------------------------------------------------------------------------

class EchoLLM:
    """Returns the last non-empty line of the prompt.

    Prompt templates end with a cue line, so the echo is a well-formed
    chat line and the scheduler, DM engine and pipeline all run end to end.
    """

    async def __call__(self, stage: str, prompt: str) -> str:
        logger.debug("EchoLLM stage=%s prompt_len=%d", stage, len(prompt))
        lines = [line for line in prompt.splitlines() if line.strip()]
        return lines[-1] if lines else ""


# ---------------------------------------------------------------------------
# LLMError and failure classification
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Raised when the LLM backend cannot be reached or returns an error."""


GenerationFailure = Literal[
    "quota", "network", "permission", "invalid_argument", "unavailable", "unknown"
]

# Checked in order; the first category with a matching marker wins.
_FAILURE_MARKERS: list[tuple[GenerationFailure, tuple[str, ...]]] = [
    ("quota", ("resource_exhausted", "429", "quota", "rate limit")),
    ("permission", ("permission_denied", "403", "401")),
    ("network", ("networkerror", "network error", "cors", "fetch", "cannot connect", "timed out")),
    ("invalid_argument", ("invalid_argument", "400")),
    ("unavailable", ("unavailable", "503", "502")),
]

FAILURE_MESSAGES: dict[GenerationFailure, str] = {
    "quota": "Background simulation paused due to API rate limits. "
             "Try reducing simulation speed in Settings or wait a few minutes.",
    "permission": "Error: API key permission denied. "
                  "Please check your API key is valid and has proper permissions.",
    "network": "Error: Network error while reaching the AI service. "
               "The simulation will keep trying on its normal schedule.",
    "invalid_argument": "Error: Invalid API request. "
                        "This might be a temporary issue with the API service.",
    "unavailable": "Error: API service temporarily unavailable. "
                   "Please try again in a few moments.",
    "unknown": "Error: Could not get AI response. "
               "Please check your API key and network connection.",
}


def classify_generation_error(exc: BaseException) -> GenerationFailure:
    """Sort a generation failure into a user-facing category by its text."""
    text = str(exc).lower()
    for category, markers in _FAILURE_MARKERS:
        if any(marker in text for marker in markers):
            return category
    return "unknown"
