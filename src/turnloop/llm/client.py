"""Async client for OpenAI-compatible chat-completion endpoints.

Uses ``httpx.AsyncClient``.  ``open_stream()`` sends the streaming request
and hands back the live response for the decoder; ``complete()`` is the
one-off non-streaming call used for summarisation.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from turnloop.config import AgentConfig
from turnloop.events.bus import EventBus
from turnloop.types import EventType

_logger = logging.getLogger(__name__)

_COMPLETIONS_PATH = "/chat/completions"


class LLMRequestError(Exception):
    """Transport failure or non-2xx status from the completion endpoint."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class AsyncLLMClient:
    """Client for OpenAI-compatible APIs (LM Studio, llama.cpp, vLLM, ...).

    Parameters
    ----------
    config:
        Supplies ``base_url``, model, sampling and retry settings.
    transport:
        Optional httpx transport (tests pass ``httpx.MockTransport``).
    """

    def __init__(
        self,
        config: AgentConfig,
        transport: httpx.AsyncBaseTransport | None = None,
        event_bus: EventBus | None = None,
        timeout: float = 120,
    ) -> None:
        self.config = config
        self._event_bus = event_bus
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            headers={"Content-Type": "application/json"},
            timeout=httpx.Timeout(timeout, connect=30, read=300),
            transport=transport,
        )

    # ------------------------------------------------------------------
    # Streaming
    # ------------------------------------------------------------------

    def build_payload(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "model": self.config.model,
            "messages": messages,
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
            "stream": True,
        }
        if tools:
            payload["tools"] = tools
        return payload

    async def open_stream(
        self,
        messages: list[dict[str, Any]],
        tools: list[dict[str, Any]] | None = None,
    ) -> httpx.Response:
        """POST a streaming completion request and return the open response.

        Connection errors and non-2xx statuses are retried up to
        ``retry_count`` attempts with linear backoff (``attempt *
        retry_backoff`` seconds).  The caller must ``aclose()`` the result.

        Raises
        ------
        LLMRequestError
            When every attempt failed.
        """
        payload = self.build_payload(messages, tools)
        attempts = max(1, self.config.retry_count)

        for attempt in range(1, attempts + 1):
            try:
                request = self._client.build_request("POST", _COMPLETIONS_PATH, json=payload)
                resp = await self._client.send(request, stream=True)
                if resp.is_success:
                    return resp
                await resp.aclose()
                error = LLMRequestError(f"HTTP {resp.status_code}", resp.status_code)
            except httpx.HTTPError as e:
                error = LLMRequestError(f"{type(e).__name__}: {e}")

            _logger.warning(
                "LLM request failed (attempt %d/%d): %s", attempt, attempts, error,
            )
            if self._event_bus:
                await self._event_bus.publish(
                    EventType.LLM_RETRY,
                    attempt=attempt, attempts=attempts, error=str(error),
                )
            if attempt == attempts:
                raise error
            await asyncio.sleep(attempt * self.config.retry_backoff)

        raise LLMRequestError("exhausted retries")  # unreachable with attempts >= 1

    # ------------------------------------------------------------------
    # Non-streaming
    # ------------------------------------------------------------------

    async def complete(
        self,
        messages: list[dict[str, Any]],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Single non-streaming completion; returns the message content.

        No retries: callers treat this as best-effort.
        """
        payload = {
            "model": self.config.model,
            "messages": messages,
            "temperature": self.config.temperature if temperature is None else temperature,
            "max_tokens": self.config.max_tokens if max_tokens is None else max_tokens,
            "stream": False,
        }
        try:
            resp = await self._client.post(_COMPLETIONS_PATH, json=payload)
        except httpx.HTTPError as e:
            raise LLMRequestError(f"{type(e).__name__}: {e}") from e
        if not resp.is_success:
            raise LLMRequestError(f"HTTP {resp.status_code}", resp.status_code)
        try:
            data = resp.json()
        except ValueError as e:
            raise LLMRequestError("invalid JSON response") from e

        choices = data.get("choices") or [{}]
        message = choices[0].get("message") or {}
        return message.get("content") or ""

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()
