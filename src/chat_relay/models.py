"""Conversation, command, and preference data types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

MessageRole = Literal["user", "assistant"]

COMMAND_PREFIX = "/"
DEFAULT_USER_AVATAR = "avatars/user.png"
DEFAULT_AI_AVATAR = "avatars/ai.png"


def new_message_id() -> str:
    return uuid4().hex


@dataclass(frozen=True)
class ImageAttachment:
    """Inline image payload attached to a user turn."""

    data: bytes
    mime_type: str
    filename: str = "image"

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass
class ChatMessage:
    """A single entry in the in-memory conversation history."""

    role: MessageRole
    content: str
    id: str = field(default_factory=new_message_id)
    image: ImageAttachment | None = None

    def to_history_entry(self) -> dict[str, str]:
        """Role and content only; images never travel as history."""
        return {"role": self.role, "content": self.content}


class Command(BaseModel):
    """A user-visible slash-command shortcut with a static response."""

    model_config = ConfigDict(frozen=True)
    name: str
    description: str = ""
    trigger: str
    response: str

    @field_validator("name", "description", "trigger", "response", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        if value is None:
            return ""
        if not isinstance(value, str):
            raise ValueError("Command fields must be strings.")
        return value


class UserPreferences(BaseModel):
    """Personal context used to render the conversation preamble."""

    model_config = ConfigDict(populate_by_name=True)
    name: str = "User"
    interests: list[str] = Field(default_factory=list)
    preferred_response_style: str = Field(
        default="helpful and concise", alias="preferredResponseStyle"
    )

    @field_validator("name", "preferred_response_style", mode="before")
    @classmethod
    def _default_when_null(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return cls.model_fields[info.field_name].default
        return value

    @field_validator("interests", mode="before")
    @classmethod
    def _validate_interests(cls, value: Any) -> list[str]:
        if value is None:
            return []
        if not isinstance(value, list):
            raise ValueError("interests must be a list of strings.")
        interests: list[str] = []
        for item in value:
            if not isinstance(item, str):
                raise ValueError("Each interest must be a string.")
            candidate = item.strip()
            if candidate:
                interests.append(candidate)
        return interests

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class Theme(str, Enum):
    """Stored theme choice; SYSTEM is resolved at read time."""

    DARK = "dark"
    LIGHT = "light"
    SYSTEM = "system"


class DisplaySettings(BaseModel):
    """Avatar references and theme choice."""

    user_avatar: str = DEFAULT_USER_AVATAR
    ai_avatar: str = DEFAULT_AI_AVATAR
    theme: Theme = Theme.LIGHT
