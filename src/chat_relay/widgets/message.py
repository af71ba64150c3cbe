"""Message bubble widget for conversation rendering."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Any

from rich.markdown import Markdown
from rich.text import Text
from textual.app import ComposeResult
from textual.containers import Vertical
from textual.widgets import Static


def avatar_label(ref: str) -> str:
    """Short terminal label for an avatar reference (path, URL, or emoji)."""
    ref = ref.strip()
    if not ref:
        return "?"
    if len(ref) <= 4:
        return ref
    stem = PurePosixPath(ref.split("?", 1)[0]).stem
    return stem or ref


class MessageBubble(Vertical):
    """Render a single chat message with avatar, role, optional timestamp and image marker."""

    DEFAULT_CSS = """
    MessageBubble {
        height: auto;
    }
    MessageBubble > #header-block {
        padding: 0;
    }
    MessageBubble > #image-block {
        color: $text-muted;
        padding: 0 1;
        border-left: solid $accent;
    }
    MessageBubble > #content-block {
        height: auto;
    }
    """

    def __init__(
        self,
        content: str,
        role: str,
        avatar: str = "",
        timestamp: str = "",
        image_name: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(**kwargs)  # type: ignore[arg-type]
        self.message_content = content
        self.role = role
        self.avatar = avatar
        self.timestamp = timestamp
        self.image_name = image_name
        self.add_class(f"role-{role}")

        self._header_widget: Static | None = None
        self._content_widget: Static | None = None

    @property
    def role_prefix(self) -> str:
        """Return a human-friendly role label."""
        return "You" if self.role == "user" else "Assistant"

    def _compose_header(self) -> str:
        header = f"**[{avatar_label(self.avatar)}] {self.role_prefix}**"
        if self.timestamp:
            return f"{header}  _{self.timestamp}_"
        return header

    def compose(self) -> ComposeResult:
        self._header_widget = Static(
            Markdown(self._compose_header()), id="header-block"
        )
        self._content_widget = Static("", id="content-block")
        yield self._header_widget
        if self.image_name is not None:
            yield Static(Text(f"image: {self.image_name}", style="dim"), id="image-block")
        yield self._content_widget

    def on_mount(self) -> None:
        self._refresh_content()

    def _refresh_content(self) -> None:
        if self._content_widget is None:
            return
        text = self.message_content.rstrip()
        self._content_widget.update(Markdown(text) if text else "")

    def append_content(self, fragment: str) -> None:
        """Extend message content with a streamed fragment and rerender."""
        self.message_content += fragment
        self._refresh_content()

    def set_avatar(self, avatar: str) -> None:
        """Swap the avatar shown in the header."""
        self.avatar = avatar
        if self._header_widget is not None:
            self._header_widget.update(Markdown(self._compose_header()))
