"""Chat-completion client for review passes using the OpenAI or OpenRouter API."""

import os
from collections.abc import Mapping
from typing import Any, Literal, Protocol

import httpx
from loguru import logger

from .exceptions import LLMError, LLMTimeoutError

# Type alias for provider
LLMProvider = Literal["openai", "openrouter"]

ChatMessage = dict[str, str]


class ChatClient(Protocol):
    """Collaborator contract used by the review engine."""

    async def stream_chat(
        self,
        messages: list[ChatMessage],
        provider: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        stream: bool = False,
    ) -> Mapping[str, Any] | str:
        """Send ``messages`` and return ``{"content": str}`` (or the bare text)."""
        ...


class LLMClient:
    """Client for OpenAI-compatible chat completions.

    Provider Selection Priority:
    1. ``provider`` passed to :meth:`stream_chat`
    2. Provider given at construction
    3. Auto-detect: OpenAI if a key is available, otherwise OpenRouter

    Keys may be supplied per call (``api_key``), at construction, or via the
    ``OPENAI_API_KEY`` / ``OPENROUTER_API_KEY`` environment variables.
    """

    DEFAULT_MODELS = {
        "openai": "gpt-4o-mini",
        "openrouter": "anthropic/claude-3-haiku",
    }

    API_ENDPOINTS = {
        "openai": "https://api.openai.com/v1/chat/completions",
        "openrouter": "https://openrouter.ai/api/v1/chat/completions",
    }

    KEY_ENV_VARS = {
        "openai": "OPENAI_API_KEY",
        "openrouter": "OPENROUTER_API_KEY",
    }

    # Per-file review prompts are large; leave headroom under the unit timeout
    TIMEOUT_SECONDS = 110.0

    def __init__(
        self,
        provider: LLMProvider | None = None,
        model: str | None = None,
        timeout: float = TIMEOUT_SECONDS,
        openai_api_key: str | None = None,
        openrouter_api_key: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize LLM client.

        Args:
            provider: Default provider ('openai' or 'openrouter')
            model: Default model (falls back to the provider default)
            timeout: Request timeout in seconds
            openai_api_key: OpenAI API key (or OPENAI_API_KEY env var)
            openrouter_api_key: OpenRouter API key (or OPENROUTER_API_KEY env var)
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        self.keys = {
            "openai": openai_api_key or os.environ.get("OPENAI_API_KEY"),
            "openrouter": openrouter_api_key or os.environ.get("OPENROUTER_API_KEY"),
        }
        if provider:
            self.provider: LLMProvider = provider
        elif self.keys["openai"]:
            self.provider = "openai"
        else:
            self.provider = "openrouter"

        self.model = model
        self.timeout = timeout
        self._transport = transport

        logger.debug(f"Initialized LLM client with default provider: {self.provider}")

    def _resolve(
        self, provider: str | None, model: str | None, api_key: str | None
    ) -> tuple[str, str, str]:
        name = provider or self.provider
        if name not in self.API_ENDPOINTS:
            raise LLMError(
                f"Unsupported LLM provider: {name} (bad request)",
                {"provider": name},
            )
        key = api_key or self.keys.get(name)
        if not key:
            raise LLMError(
                f"No API key for {name}. Set {self.KEY_ENV_VARS[name]} or pass api_key.",
                {"provider": name},
            )
        chosen_model = (
            model
            or (self.model if name == self.provider else None)
            or os.environ.get(f"{name.upper()}_MODEL")
            or self.DEFAULT_MODELS[name]
        )
        return name, chosen_model, key

    async def stream_chat(
        self,
        messages: list[ChatMessage],
        provider: str | None = None,
        model: str | None = None,
        api_key: str | None = None,
        stream: bool = False,
    ) -> dict[str, Any]:
        """Send a chat completion and return ``{"content", "model", "usage"}``.

        ``stream`` is accepted for interface compatibility; the response is
        always collected in full.

        Raises:
            LLMTimeoutError: If the request times out
            LLMError: On missing credentials, HTTP errors or malformed responses
        """
        name, chosen_model, key = self._resolve(provider, model, api_key)
        response = await self._chat_completion(messages, name, chosen_model, key)

        try:
            content = response["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise LLMError(
                f"Malformed {name} response: missing choices[0].message.content",
                {"provider": name},
            ) from e

        return {
            "content": content,
            "model": response.get("model", chosen_model),
            "usage": response.get("usage", {}),
        }

    async def _chat_completion(
        self,
        messages: list[ChatMessage],
        provider: str,
        model: str,
        api_key: str,
    ) -> dict[str, Any]:
        """Make chat completion request to OpenAI or OpenRouter API.

        Raises:
            LLMTimeoutError: If the request times out
            LLMError: If API request fails
        """
        headers = {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
        if provider == "openrouter":
            headers["X-Title"] = "RepoSpector"

        payload = {"model": model, "messages": messages, "stream": False}
        provider_name = provider.capitalize()

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    self.API_ENDPOINTS[provider], headers=headers, json=payload
                )
                response.raise_for_status()
                return response.json()

        except httpx.TimeoutException as e:
            logger.error(f"{provider_name} API timeout after {self.timeout}s")
            raise LLMTimeoutError(
                f"LLM request timed out after {self.timeout} seconds",
                {"provider": provider, "model": model},
            ) from e

        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            error_msg = f"{provider_name} API error (HTTP {status_code})"

            if status_code == 400:
                error_msg = f"{provider_name} API bad request: {e.response.text[:200]}"
            elif status_code == 401:
                error_msg = (
                    f"Invalid {provider_name} API key. "
                    f"Please check {self.KEY_ENV_VARS[provider]}."
                )
            elif status_code == 403:
                error_msg = f"{provider_name} API request forbidden for model {model}."
            elif status_code == 429:
                error_msg = f"{provider_name} API rate limit exceeded. Please wait and try again."
            elif status_code >= 500:
                error_msg = f"{provider_name} API server error. Please try again later."

            logger.error(error_msg)
            raise LLMError(
                error_msg, {"provider": provider, "status_code": status_code}
            ) from e

        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"{provider_name} API request failed: {e}")
            raise LLMError(
                f"LLM request failed: {e}", {"provider": provider}
            ) from e
