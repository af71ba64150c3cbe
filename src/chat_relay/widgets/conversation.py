"""Scrollable conversation view widget."""

from __future__ import annotations

from textual.containers import VerticalScroll
from textual.widgets import Static

from .message import MessageBubble

WELCOME_PLACEHOLDER = "Start a conversation or type /help for commands"


class ConversationView(VerticalScroll):
    """A scrollable container that hosts message bubbles keyed by message id."""

    DEFAULT_CSS = """
    ConversationView > #welcome {
        width: 100%;
        content-align: center middle;
        color: $text-muted;
        padding: 2 0;
    }
    """

    def __init__(self, **kwargs) -> None:  # type: ignore[no-untyped-def]
        super().__init__(**kwargs)
        self._bubbles: dict[str, MessageBubble] = {}

    def compose(self):  # type: ignore[override]
        yield Static(WELCOME_PLACEHOLDER, id="welcome")

    @property
    def bubbles(self) -> list[MessageBubble]:
        return list(self._bubbles.values())

    def _set_placeholder_visible(self, visible: bool) -> None:
        for welcome in self.query("#welcome"):
            welcome.display = visible

    async def add_message(
        self,
        message_id: str,
        content: str,
        role: str,
        avatar: str = "",
        timestamp: str = "",
        image_name: str | None = None,
    ) -> MessageBubble:
        """Create, mount, and scroll to a new message bubble."""
        bubble = MessageBubble(
            content=content,
            role=role,
            avatar=avatar,
            timestamp=timestamp,
            image_name=image_name,
        )
        bubble.add_class(f"message-{role}")
        self._bubbles[message_id] = bubble
        self._set_placeholder_visible(False)
        await self.mount(bubble)
        self.scroll_end(animate=False)
        return bubble

    def append_to_message(self, message_id: str, fragment: str) -> bool:
        bubble = self._bubbles.get(message_id)
        if bubble is None:
            return False
        bubble.append_content(fragment)
        self.scroll_end(animate=False)
        return True

    def set_avatars(self, user_avatar: str, ai_avatar: str) -> None:
        for bubble in self._bubbles.values():
            bubble.set_avatar(user_avatar if bubble.role == "user" else ai_avatar)

    async def clear_messages(self) -> None:
        """Remove every bubble and show the welcome placeholder again."""
        bubbles = list(self._bubbles.values())
        self._bubbles.clear()
        for bubble in bubbles:
            await bubble.remove()
        self._set_placeholder_visible(True)
