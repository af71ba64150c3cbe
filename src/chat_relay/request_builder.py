"""Pure request assembly for both sides of the relay boundary.

The client turns chat state into a ``ChatRequest`` (the multipart boundary
payload). The relay decodes that payload and turns it into a
``ProviderRequest``: role-mapped history plus ordered content parts.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
import json
from typing import Any

from pydantic import ValidationError

from .exceptions import RequestValidationError
from .models import ChatMessage, ImageAttachment, UserPreferences

# Provider's two-party role vocabulary; anything that is not the user speaks
# as the assistant.
PROVIDER_USER_ROLE = "user"
PROVIDER_ASSISTANT_ROLE = "assistant"


@dataclass(frozen=True)
class ChatRequest:
    """Boundary request sent from the client to the relay."""

    message: str
    history: list[dict[str, str]] = field(default_factory=list)
    image: ImageAttachment | None = None
    user_preferences: UserPreferences | None = None

    def form_fields(self) -> dict[str, str]:
        fields = {
            "message": self.message,
            "history": json.dumps(self.history, ensure_ascii=False),
        }
        if self.user_preferences is not None:
            fields["userPreferences"] = json.dumps(
                self.user_preferences.to_wire(), ensure_ascii=False
            )
        return fields

    def files(self) -> dict[str, tuple[str, bytes, str]]:
        if self.image is None:
            return {}
        return {"image": (self.image.filename, self.image.data, self.image.mime_type)}

    def multipart_parts(self) -> list[tuple[str, tuple[str | None, bytes, str | None]]]:
        """Every field as a multipart part, so text-only turns are still form-data.

        Parts without a filename are read back as plain form fields.
        """
        parts: list[tuple[str, tuple[str | None, bytes, str | None]]] = [
            (name, (None, value.encode("utf-8"), None))
            for name, value in self.form_fields().items()
        ]
        parts.extend(self.files().items())
        return parts


def build_chat_request(
    history: Sequence[ChatMessage],
    text: str,
    image: ImageAttachment | None = None,
    preferences: UserPreferences | None = None,
) -> ChatRequest:
    """Snapshot prior turns (role and content only) into a boundary request."""
    return ChatRequest(
        message=text,
        history=[message.to_history_entry() for message in history],
        image=image,
        user_preferences=preferences,
    )


def _decode_history(raw: str | None) -> list[dict[str, str]]:
    if not raw:
        return []
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise RequestValidationError("history must be valid JSON") from exc
    if not isinstance(payload, list):
        raise RequestValidationError("history must be a JSON list")
    entries: list[dict[str, str]] = []
    for item in payload:
        if not isinstance(item, dict):
            raise RequestValidationError("history entries must be objects")
        role = item.get("role")
        content = item.get("content")
        if not isinstance(role, str) or not isinstance(content, str):
            raise RequestValidationError("history entries need string role and content")
        entries.append({"role": role, "content": content})
    return entries


def _decode_preferences(raw: str | None) -> UserPreferences | None:
    if not raw:
        return None
    try:
        payload: Any = json.loads(raw)
    except ValueError as exc:
        raise RequestValidationError("userPreferences must be valid JSON") from exc
    if payload is None:
        return None
    try:
        return UserPreferences.model_validate(payload)
    except ValidationError as exc:
        raise RequestValidationError(f"userPreferences is invalid: {exc}") from exc


def decode_chat_request(
    message: str | None,
    history: str | None = None,
    user_preferences: str | None = None,
    image: ImageAttachment | None = None,
) -> ChatRequest:
    """Decode multipart boundary fields into a ChatRequest.

    Raises:
        RequestValidationError: When a required field is missing or a
            serialized field cannot be decoded
    """
    text = message or ""
    if not text.strip() and image is None:
        raise RequestValidationError("message or image is required")
    if image is not None and not image.mime_type.startswith("image/"):
        raise RequestValidationError("image must have an image/* content type")
    return ChatRequest(
        message=text,
        history=_decode_history(history),
        image=image,
        user_preferences=_decode_preferences(user_preferences),
    )


@dataclass(frozen=True)
class TextPart:
    text: str


@dataclass(frozen=True)
class ImagePart:
    data: bytes
    mime_type: str


ContentPart = TextPart | ImagePart


@dataclass(frozen=True)
class ProviderMessage:
    role: str
    content: str


@dataclass(frozen=True)
class ProviderRequest:
    """Provider-agnostic request: prior context plus this turn's parts."""

    history: list[ProviderMessage]
    parts: list[ContentPart]

    @property
    def text(self) -> str:
        return "".join(part.text for part in self.parts if isinstance(part, TextPart))

    @property
    def images(self) -> list[ImagePart]:
        return [part for part in self.parts if isinstance(part, ImagePart)]


def map_role(role: str) -> str:
    return PROVIDER_USER_ROLE if role == "user" else PROVIDER_ASSISTANT_ROLE


def render_preamble(preferences: UserPreferences) -> str:
    """Render the context text that precedes the user's message."""
    interests = ", ".join(preferences.interests) or "various topics"
    return (
        "Context for this conversation:\n"
        f"- My name is {preferences.name or 'User'}\n"
        f"- I'm interested in: {interests}\n"
        "- Please respond in a "
        f"{preferences.preferred_response_style or 'helpful and concise'} manner\n"
        "\n"
        "My message is: "
    )


def build_provider_request(request: ChatRequest) -> ProviderRequest:
    """Order parts as preamble, text, image and map history roles."""
    parts: list[ContentPart] = []
    if request.user_preferences is not None:
        parts.append(TextPart(render_preamble(request.user_preferences)))
    if request.message.strip():
        parts.append(TextPart(request.message))
    if request.image is not None:
        parts.append(ImagePart(request.image.data, request.image.mime_type))

    history = [
        ProviderMessage(role=map_role(entry["role"]), content=entry["content"])
        for entry in request.history
    ]
    return ProviderRequest(history=history, parts=parts)
