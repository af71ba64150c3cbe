"""Tests for the relay HTTP client and incremental fragment decoding."""

from __future__ import annotations

from collections.abc import AsyncIterator
import unittest

import httpx

from chat_relay.client import ProxyClient
from chat_relay.exceptions import (
    ProxyConnectionError,
    ProxyStatusError,
    ProxyStreamError,
)
from chat_relay.models import ImageAttachment, UserPreferences
from chat_relay.request_builder import build_chat_request
from chat_relay.server import create_app

from test_server import FakeProvider, _config

BASE_URL = "http://relay.test"


class _ChunkedStream(httpx.AsyncByteStream):
    """Response body delivered in the given network chunks."""

    def __init__(self, chunks: list[bytes], error: Exception | None = None) -> None:
        self._chunks = chunks
        self._error = error

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self._chunks:
            yield chunk
        if self._error is not None:
            raise self._error


def _client(handler) -> ProxyClient:
    http_client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler), base_url=BASE_URL
    )
    return ProxyClient(BASE_URL, client=http_client)


async def _collect(stream) -> list[str]:
    return [fragment async for fragment in stream]


class ProxyClientTests(unittest.IsolatedAsyncioTestCase):
    """Validate request shape, status handling, and stream decoding."""

    async def test_posts_multipart_and_decodes_split_utf8(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200, stream=_ChunkedStream([b"caf", b"\xc3", b"\xa9 ok"])
            )

        client = _client(handler)
        image = ImageAttachment(data=b"\x89PNG", mime_type="image/png", filename="a.png")
        request = build_chat_request([], "hi", image, UserPreferences())
        stream = await client.open(request)
        fragments = await _collect(stream)
        await client.aclose()

        self.assertEqual(fragments, ["caf", "é ok"])
        self.assertEqual("".join(fragments), "café ok")
        sent = seen[0]
        self.assertEqual(sent.method, "POST")
        self.assertEqual(sent.url.path, "/api/chat")
        self.assertTrue(sent.headers["content-type"].startswith("multipart/form-data"))
        body = sent.read()
        self.assertIn(b'name="userPreferences"', body)
        self.assertIn(b'filename="a.png"', body)

    async def test_text_only_request_is_still_multipart(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text="ok")

        client = _client(handler)
        stream = await client.open(build_chat_request([], "hi", None, UserPreferences()))
        self.assertEqual(await _collect(stream), ["ok"])
        await client.aclose()

        sent = seen[0]
        self.assertTrue(sent.headers["content-type"].startswith("multipart/form-data"))
        body = sent.read()
        self.assertIn(b'name="message"', body)
        self.assertIn(b'name="history"', body)
        self.assertNotIn(b"filename=", body)

    async def test_text_only_request_reaches_relay_as_form_fields(self) -> None:
        provider = FakeProvider(["pong"])
        app = create_app(_config(), provider=provider)  # type: ignore[arg-type]
        http_client = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url=BASE_URL
        )
        client = ProxyClient(BASE_URL, client=http_client)
        prefs = UserPreferences(name="Ada")
        stream = await client.open(build_chat_request([], "ping", None, prefs))
        self.assertEqual("".join(await _collect(stream)), "pong")
        await client.aclose()

        relayed = provider.requests[0]
        self.assertIn("ping", relayed.text)
        self.assertIn("My name is Ada", relayed.text)
        self.assertEqual(relayed.images, [])

    async def test_error_status_raises_with_detail(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"error": "Failed to process request"})

        client = _client(handler)
        with self.assertRaises(ProxyStatusError) as ctx:
            await client.open(build_chat_request([], "hi"))
        self.assertEqual(ctx.exception.status_code, 500)
        self.assertEqual(ctx.exception.detail, "Failed to process request")

    async def test_plain_text_error_body_is_used_as_detail(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502, text="bad gateway")

        with self.assertRaises(ProxyStatusError) as ctx:
            await _client(handler).open(build_chat_request([], "hi"))
        self.assertEqual(ctx.exception.detail, "bad gateway")

    async def test_unreachable_relay_raises_connection_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        with self.assertRaises(ProxyConnectionError):
            await _client(handler).open(build_chat_request([], "hi"))

    async def test_broken_stream_raises_after_delivered_fragments(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                stream=_ChunkedStream([b"partial"], error=httpx.ReadError("reset")),
            )

        stream = await _client(handler).open(build_chat_request([], "hi"))
        received: list[str] = []
        with self.assertRaises(ProxyStreamError):
            async for fragment in stream:
                received.append(fragment)
        self.assertEqual(received, ["partial"])

    def test_from_config_normalizes_base_url(self) -> None:
        client = ProxyClient.from_config({"proxy_url": "http://127.0.0.1:9000/", "timeout": 5})
        self.assertEqual(client.base_url, "http://127.0.0.1:9000")


if __name__ == "__main__":
    unittest.main()
