"""Azure OpenAI chat-completions client used by the AI proxy."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from mailsweep.errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_DEPLOYMENT = "gpt-4"
DEFAULT_API_VERSION = "2024-02-15-preview"
DEFAULT_TEMPERATURE = 0.3
DEFAULT_MAX_TOKENS = 500

JSON_SYSTEM_PROMPT = (
    "You are a helpful assistant that returns only valid JSON responses "
    "without markdown formatting."
)


@dataclass
class LLMResponse:
    """Text and usage returned by one completion request."""

    text: str
    model: str
    tokens_input: int = 0
    tokens_output: int = 0
    latency_ms: int = 0
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def total_tokens(self) -> int:
        """Total tokens used in this request."""
        return self.tokens_input + self.tokens_output


class AzureOpenAIClient:
    """Azure OpenAI chat-completions client.

    Args:
        endpoint: Resource endpoint, e.g. ``https://my-res.openai.azure.com``
        api_key: Resource API key
        deployment: Model deployment name
        api_version: REST API version
        client: Optional pre-built ``httpx.Client``
        timeout: Request timeout in seconds

    Raises:
        ConfigurationError: If endpoint or api_key is empty.
    """

    def __init__(
        self,
        endpoint: str,
        api_key: str,
        deployment: str = DEFAULT_DEPLOYMENT,
        api_version: str = DEFAULT_API_VERSION,
        client: httpx.Client | None = None,
        timeout: float = 30.0,
    ) -> None:
        if not endpoint or not api_key:
            raise ConfigurationError(
                "Azure OpenAI credentials not configured. "
                "Set AZURE_OPENAI_ENDPOINT and AZURE_OPENAI_API_KEY in .env"
            )

        self.endpoint = endpoint.rstrip("/")
        self.api_key = api_key
        self.deployment = deployment
        self.api_version = api_version
        self.timeout = timeout
        if client is None:
            self._client = httpx.Client(timeout=timeout)
            self._owns_client = True
        else:
            self._client = client
            self._owns_client = False

    @property
    def url(self) -> str:
        return f"{self.endpoint}/openai/deployments/{self.deployment}/chat/completions"

    def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client and self._client is not None:
            self._client.close()

    def complete(
        self,
        prompt: str,
        *,
        system_prompt: str | None = JSON_SYSTEM_PROMPT,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        json_mode: bool = True,
    ) -> LLMResponse:
        """Send a chat completion and return the first choice's text.

        Raises:
            httpx.HTTPStatusError: Upstream answered with a non-2xx status.
        """
        start_time = time.time()

        messages = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        request_body: dict[str, Any] = {
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            request_body["response_format"] = {"type": "json_object"}

        response = self._client.post(
            self.url,
            params={"api-version": self.api_version},
            headers={"api-key": self.api_key, "Content-Type": "application/json"},
            json=request_body,
        )
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise httpx.HTTPStatusError(
                f"AI API error: {e.response.status_code} - {e.response.text}",
                request=e.request,
                response=e.response,
            ) from e
        data = response.json()

        latency_ms = int((time.time() - start_time) * 1000)

        text = ""
        choices = data.get("choices", [])
        if choices:
            text = choices[0].get("message", {}).get("content") or ""

        usage = data.get("usage", {})
        logger.debug(
            "Azure OpenAI completion: %s tokens in %dms",
            usage.get("total_tokens", "?"),
            latency_ms,
        )

        return LLMResponse(
            text=text,
            model=self.deployment,
            tokens_input=usage.get("prompt_tokens", 0),
            tokens_output=usage.get("completion_tokens", 0),
            latency_ms=latency_ms,
            raw_response=data,
        )


def create_llm_client() -> AzureOpenAIClient:
    """Build a client from settings.

    Raises:
        ConfigurationError: If the Azure OpenAI credentials are missing.
    """
    from mailsweep.config import settings

    return AzureOpenAIClient(
        endpoint=settings.azure_openai_endpoint,
        api_key=settings.azure_openai_api_key,
        deployment=settings.azure_openai_deployment,
        api_version=settings.azure_api_version,
        timeout=settings.http_timeout_seconds,
    )
