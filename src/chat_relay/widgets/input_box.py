"""Input row containing message field, image attach button, send button, and attachment line."""

from __future__ import annotations

from textual.containers import Horizontal, Vertical
from textual.message import Message
from textual.widgets import Button, Input, Static


class InputBox(Vertical):
    """Input region with message field, attach button, send button, and pending-image line."""

    DEFAULT_CSS = """
    InputBox > #attachment_status {
        height: auto;
        color: $text-muted;
    }
    """

    class AttachRequested(Message):
        """Posted when the user clicks the image attach button."""

    def compose(self):  # type: ignore[override]
        yield Static("", id="attachment_status")
        with Horizontal(id="input_row"):
            yield Input(
                placeholder="Type your message... (/ for commands)",
                id="message_input",
            )
            yield Button("Image", id="attach_button", variant="default")
            yield Button("Send", id="send_button", variant="success")

    def on_mount(self) -> None:
        self.set_pending_image(None)

    def on_button_pressed(self, event: Button.Pressed) -> None:
        """Forward attach button clicks as AttachRequested messages."""
        if event.button.id == "attach_button":
            event.stop()
            self.post_message(self.AttachRequested())

    def set_pending_image(self, filename: str | None) -> None:
        status = self.query_one("#attachment_status", Static)
        if filename is None:
            status.update("")
            status.display = False
        else:
            status.update(f"Image attached: {filename} (sent with next message)")
            status.display = True

    def set_busy(self, busy: bool) -> None:
        """Disable submission controls while a turn is in flight."""
        for widget_id in ("#message_input", "#attach_button", "#send_button"):
            self.query_one(widget_id).disabled = busy
