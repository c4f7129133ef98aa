"""Async client for the mailsweep AI proxy."""

import logging
from collections.abc import Sequence
from typing import Any

import httpx
from pydantic import ValidationError

from mailsweep.errors import ParseError, ProxyError
from mailsweep.google.gmail import MessageSummary
from mailsweep.services.schemas import ParsedCommand, ReplySuggestion, SuggestionList

logger = logging.getLogger(__name__)


class AIProxyClient:
    """Calls ``/ai/parse`` and ``/ai/suggestReplies`` on the AI proxy.

    Args:
        base_url: Proxy URL (default: settings.ai_proxy_url)
        client: Optional pre-built ``httpx.AsyncClient``
        timeout: Request timeout in seconds
    """

    def __init__(
        self,
        base_url: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float | None = None,
    ) -> None:
        from mailsweep.config import settings

        self.base_url = (base_url or settings.ai_proxy_url).rstrip("/")
        self.timeout = timeout or settings.http_timeout_seconds
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _post(self, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_client()
        response = await client.post(f"{self.base_url}{path}", json=payload)

        if not response.is_success:
            message = response.text
            try:
                data = response.json()
                message = data.get("message") or data.get("error") or message
            except ValueError:
                pass
            raise ProxyError(response.status_code, str(message))

        try:
            data = response.json()
        except ValueError:
            logger.warning("AI proxy returned non-JSON body: %.500s", response.text)
            raise ParseError("AI proxy returned invalid JSON", raw_content=response.text) from None
        if not isinstance(data, dict):
            raise ParseError("AI proxy returned a non-object payload", raw_content=response.text)
        return data

    async def parse_command(self, command: str) -> ParsedCommand:
        """Ask the proxy to turn a natural-language command into an action.

        Raises:
            ProxyError: Non-2xx answer from the proxy.
            ParseError: Answer did not match ``{action, query, label?}``.
        """
        data = await self._post("/ai/parse", {"command": command})
        try:
            return ParsedCommand.model_validate(data)
        except ValidationError as e:
            logger.warning("Proxy parse result failed validation: %s; raw=%s", e, data)
            raise ParseError(f"Invalid parse result: {e}", raw_content=str(data)) from e

    async def suggest_replies(
        self,
        command: str,
        parsed: ParsedCommand,
        messages: Sequence[MessageSummary],
    ) -> list[ReplySuggestion]:
        """Ask the proxy for reply suggestions for the given messages."""
        data = await self._post(
            "/ai/suggestReplies",
            {
                "command": command,
                "parsed": parsed.to_wire(),
                "messages": [m.to_dict() for m in messages],
            },
        )
        try:
            return SuggestionList.model_validate(data).suggestions
        except ValidationError as e:
            logger.warning("Proxy suggestions failed validation: %s; raw=%s", e, data)
            raise ParseError(f"Invalid suggestions: {e}", raw_content=str(data)) from e
