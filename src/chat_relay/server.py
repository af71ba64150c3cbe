"""Relay service: accept multipart chat requests and stream provider output back."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
import logging
from typing import Annotated, Any

from fastapi import FastAPI, File, Form, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse
import uvicorn

from .config import load_config
from .exceptions import ProviderError, ProviderStreamingError, RequestValidationError
from .models import ImageAttachment
from .provider import OllamaProvider
from .request_builder import build_provider_request, decode_chat_request

LOGGER = logging.getLogger(__name__)

STREAM_MEDIA_TYPE = "text/plain; charset=utf-8"
GENERIC_FAILURE = "Failed to process request"


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status_code)


async def relay_fragments(
    fragments: AsyncIterator[str], deadline: float
) -> AsyncIterator[bytes]:
    """Encode fragments as UTF-8 in arrival order until the stream ends.

    Any failure, including running past ``deadline`` (event-loop time),
    propagates so the response body is aborted rather than closed cleanly.
    """
    count = 0
    try:
        while True:
            try:
                async with asyncio.timeout_at(deadline):
                    fragment = await anext(fragments)
            except StopAsyncIteration:
                break
            except TimeoutError as exc:
                LOGGER.warning(
                    "relay.stream.timeout",
                    extra={"event": "relay.stream.timeout", "fragments": count},
                )
                raise ProviderStreamingError("Relay request exceeded its time budget.") from exc
            except ProviderError:
                LOGGER.warning(
                    "relay.stream.aborted",
                    extra={"event": "relay.stream.aborted", "fragments": count},
                )
                raise
            count += 1
            yield fragment.encode("utf-8")
    finally:
        aclose = getattr(fragments, "aclose", None)
        if aclose is not None:
            await aclose()
    LOGGER.info(
        "relay.stream.complete",
        extra={"event": "relay.stream.complete", "fragments": count},
    )


def create_app(
    config: dict[str, Any] | None = None,
    provider: OllamaProvider | None = None,
) -> FastAPI:
    """Build the relay application around one provider instance."""
    settings = config or load_config()
    server_config = settings["server"]
    max_duration = float(server_config["max_duration_seconds"])
    max_image_bytes = int(server_config["max_image_bytes"])
    upstream = provider or OllamaProvider.from_config(settings["provider"])

    app = FastAPI(title="Chat Relay", version="0.1.0")
    app.state.provider = upstream

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/chat", response_model=None)
    async def chat(
        message: Annotated[str | None, Form()] = None,
        history: Annotated[str | None, Form()] = None,
        user_preferences: Annotated[str | None, Form(alias="userPreferences")] = None,
        image: Annotated[UploadFile | None, File()] = None,
    ) -> StreamingResponse | JSONResponse:
        deadline = asyncio.get_running_loop().time() + max_duration

        attachment: ImageAttachment | None = None
        if image is not None:
            data = await image.read()
            if len(data) > max_image_bytes:
                return _error(413, "image exceeds the maximum allowed size")
            attachment = ImageAttachment(
                data=data,
                mime_type=image.content_type or "application/octet-stream",
                filename=image.filename or "image",
            )

        try:
            request = decode_chat_request(message, history, user_preferences, attachment)
        except RequestValidationError as exc:
            LOGGER.info(
                "relay.request.rejected",
                extra={"event": "relay.request.rejected", "reason": str(exc)},
            )
            return _error(400, str(exc))

        provider_request = build_provider_request(request)
        try:
            async with asyncio.timeout_at(deadline):
                fragments = await upstream.open_stream(provider_request)
        except (ProviderError, TimeoutError) as exc:
            LOGGER.error(
                "relay.request.failed",
                extra={
                    "event": "relay.request.failed",
                    "error_type": exc.__class__.__name__,
                    "error": str(exc),
                },
            )
            return _error(500, GENERIC_FAILURE)

        return StreamingResponse(
            relay_fragments(fragments, deadline), media_type=STREAM_MEDIA_TYPE
        )

    return app


def run_server(
    config: dict[str, Any] | None = None,
    host: str | None = None,
    port: int | None = None,
) -> None:
    """Serve the relay with uvicorn using our own logging configuration."""
    settings = config or load_config()
    bind_host = host or str(settings["server"]["host"])
    bind_port = port or int(settings["server"]["port"])
    LOGGER.info(
        "relay.server.start",
        extra={"event": "relay.server.start", "host": bind_host, "port": bind_port},
    )
    uvicorn.run(create_app(settings), host=bind_host, port=bind_port, log_config=None)
