"""HTTP client for the relay service's streaming chat endpoint."""

from __future__ import annotations

import codecs
from collections.abc import AsyncIterator
import logging
from typing import Any, Protocol

import httpx

from .exceptions import ProxyConnectionError, ProxyStatusError, ProxyStreamError
from .request_builder import ChatRequest

LOGGER = logging.getLogger(__name__)

CHAT_PATH = "/api/chat"


class FragmentStream(Protocol):
    """An open response body yielding decoded text fragments."""

    def __aiter__(self) -> AsyncIterator[str]: ...

    async def aclose(self) -> None: ...


class ChatTransport(Protocol):
    """Anything that can open a fragment stream for a chat request."""

    async def open(self, request: ChatRequest) -> FragmentStream: ...


class HttpFragmentStream:
    """Decode a streamed httpx response incrementally as UTF-8 text.

    Multi-byte characters split across network chunks are held back until
    complete, so every yielded fragment is valid text.
    """

    def __init__(self, response: httpx.Response) -> None:
        self._response = response

    async def __aiter__(self) -> AsyncIterator[str]:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            async for raw in self._response.aiter_bytes():
                text = decoder.decode(raw)
                if text:
                    yield text
            tail = decoder.decode(b"", final=True)
            if tail:
                yield tail
        except httpx.HTTPError as exc:
            raise ProxyStreamError(f"Response stream broke: {exc}") from exc
        finally:
            await self._response.aclose()

    async def aclose(self) -> None:
        await self._response.aclose()


def _error_detail(response: httpx.Response) -> str:
    try:
        payload: Any = response.json()
    except ValueError:
        return response.text.strip()
    if isinstance(payload, dict) and isinstance(payload.get("error"), str):
        return payload["error"]
    return ""


class ProxyClient:
    """Open streaming chat requests against the relay service."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 90.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url, timeout=httpx.Timeout(timeout)
        )

    @classmethod
    def from_config(cls, client_config: dict[str, Any]) -> ProxyClient:
        return cls(
            base_url=str(client_config["proxy_url"]),
            timeout=float(client_config.get("timeout", 90)),
        )

    async def open(self, request: ChatRequest) -> HttpFragmentStream:
        """POST the multipart request and return the open response body.

        Raises:
            ProxyConnectionError: When the relay cannot be reached
            ProxyStatusError: When the relay answers with a non-success status
        """
        http_request = self._client.build_request(
            "POST",
            CHAT_PATH,
            files=request.multipart_parts(),
        )
        try:
            response = await self._client.send(http_request, stream=True)
        except httpx.HTTPError as exc:
            LOGGER.warning(
                "client.request.unreachable",
                extra={"event": "client.request.unreachable", "error": str(exc)},
            )
            raise ProxyConnectionError(
                f"Unable to reach relay at {self.base_url}."
            ) from exc

        if not response.is_success:
            try:
                await response.aread()
                detail = _error_detail(response)
            finally:
                await response.aclose()
            LOGGER.warning(
                "client.request.rejected",
                extra={
                    "event": "client.request.rejected",
                    "status": response.status_code,
                    "detail": detail,
                },
            )
            raise ProxyStatusError(response.status_code, detail)

        return HttpFragmentStream(response)

    async def aclose(self) -> None:
        await self._client.aclose()
