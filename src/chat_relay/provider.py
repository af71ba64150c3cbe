"""Async adapter for the upstream Ollama chat API used by the relay service."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, AsyncIterator
import logging
import os
from typing import Any

import httpx
from ollama import AsyncClient, ResponseError

from .exceptions import (
    ChatRelayError,
    ProviderConnectionError,
    ProviderModelNotFoundError,
    ProviderStreamingError,
)
from .request_builder import ProviderRequest

LOGGER = logging.getLogger(__name__)


async def _chain_first(first: str, rest: AsyncGenerator[str, None]) -> AsyncIterator[str]:
    try:
        yield first
        async for fragment in rest:
            yield fragment
    finally:
        await rest.aclose()


async def _no_fragments() -> AsyncIterator[str]:
    return
    yield  # pragma: no cover - marks this function as an async generator


class OllamaProvider:
    """Stateless streaming client for one upstream model.

    The API key stays inside this object; it is sent upstream as a bearer
    token and never echoed to relay callers.
    """

    def __init__(
        self,
        host: str,
        model: str,
        api_key: str = "",
        timeout: int = 60,
        max_output_tokens: int = 1000,
        temperature: float = 0.7,
        client: Any | None = None,
    ) -> None:
        self.host = host
        self.model = model
        self.timeout = timeout
        self.max_output_tokens = max_output_tokens
        self.temperature = temperature

        if client is not None:
            self._client = client
        else:
            headers = {"Authorization": f"Bearer {api_key}"} if api_key else None
            self._client = AsyncClient(host=host, timeout=timeout, headers=headers)

    @classmethod
    def from_config(cls, provider_config: dict[str, Any]) -> OllamaProvider:
        """Build a provider from the ``[provider]`` config section."""
        api_key_env = str(provider_config.get("api_key_env", "OLLAMA_API_KEY"))
        api_key = os.environ.get(api_key_env, "").strip()
        if not api_key:
            LOGGER.warning(
                "provider.api_key.missing",
                extra={"event": "provider.api_key.missing", "env": api_key_env},
            )
        return cls(
            host=str(provider_config["host"]),
            model=str(provider_config["model"]),
            api_key=api_key,
            timeout=int(provider_config.get("timeout", 60)),
            max_output_tokens=int(provider_config.get("max_output_tokens", 1000)),
            temperature=float(provider_config.get("temperature", 0.7)),
        )

    def generation_options(self) -> dict[str, Any]:
        """Fixed generation budget applied to every request."""
        return {"num_predict": self.max_output_tokens, "temperature": self.temperature}

    @staticmethod
    def build_messages(request: ProviderRequest) -> list[dict[str, Any]]:
        """Seed prior context, then this turn's combined text and images."""
        messages: list[dict[str, Any]] = [
            {"role": item.role, "content": item.content} for item in request.history
        ]
        turn: dict[str, Any] = {"role": "user", "content": request.text}
        images = request.images
        if images:
            turn["images"] = [part.data for part in images]
        messages.append(turn)
        return messages

    @staticmethod
    def _extract_chunk_text(chunk: Any) -> str:
        """Extract streamed token text from an Ollama chunk payload."""
        message_obj = getattr(chunk, "message", None)
        if message_obj is not None:
            value = getattr(message_obj, "content", None)
            return value if isinstance(value, str) else ""

        if isinstance(chunk, dict):
            message = chunk.get("message")
            if isinstance(message, dict):
                value = message.get("content")
                return value if isinstance(value, str) else ""
        return ""

    def _map_exception(self, exc: Exception) -> ChatRelayError:
        if isinstance(exc, ChatRelayError):
            return exc

        if isinstance(
            exc,
            (
                httpx.ConnectError,
                httpx.ConnectTimeout,
                httpx.NetworkError,
            ),
        ):
            return ProviderConnectionError(
                f"Unable to connect to provider host {self.host}."
            )

        if isinstance(exc, ResponseError) and exc.status_code == 404:
            return ProviderModelNotFoundError(
                f"Model {self.model!r} was not found on {self.host}."
            )
        lower_message = str(exc).lower()
        if "model" in lower_message and "not found" in lower_message:
            return ProviderModelNotFoundError(
                f"Model {self.model!r} was not found on {self.host}."
            )

        return ProviderStreamingError(
            f"Failed to stream response from provider at {self.host}: {exc}"
        )

    async def stream_reply(self, request: ProviderRequest) -> AsyncGenerator[str, None]:
        """Yield text fragments in arrival order until the provider finishes.

        Raises:
            ProviderError: On any upstream failure, before or during streaming
        """
        messages = self.build_messages(request)
        LOGGER.info(
            "provider.request.start",
            extra={
                "event": "provider.request.start",
                "model": self.model,
                "history_messages": len(request.history),
                "images": len(request.images),
            },
        )
        fragments = 0
        try:
            stream = await self._client.chat(
                model=self.model,
                messages=messages,
                stream=True,
                options=self.generation_options(),
            )
            async for chunk in stream:
                text = self._extract_chunk_text(chunk)
                if text:
                    fragments += 1
                    yield text
        except asyncio.CancelledError:
            LOGGER.info(
                "provider.request.cancelled",
                extra={"event": "provider.request.cancelled", "fragments": fragments},
            )
            raise
        except Exception as exc:  # noqa: BLE001 - external API can fail in many ways.
            mapped = self._map_exception(exc)
            LOGGER.warning(
                "provider.request.failed",
                extra={
                    "event": "provider.request.failed",
                    "error_type": mapped.__class__.__name__,
                    "fragments": fragments,
                },
            )
            raise mapped from exc

        LOGGER.info(
            "provider.request.complete",
            extra={"event": "provider.request.complete", "fragments": fragments},
        )

    async def open_stream(self, request: ProviderRequest) -> AsyncIterator[str]:
        """Open the upstream stream and wait for its first fragment.

        Failures before the first fragment surface here, so the caller can
        still answer with an error status instead of a broken body.
        """
        fragments = self.stream_reply(request)
        try:
            first = await anext(fragments)
        except StopAsyncIteration:
            return _no_fragments()
        return _chain_first(first, fragments)
