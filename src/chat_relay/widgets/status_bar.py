"""Status bar widget for relay and conversation telemetry."""

from __future__ import annotations

from textual.app import ComposeResult
from textual.widgets import Label, Static

_STATE_ICONS = {"IDLE": "🟢", "SENDING": "🟡", "STREAMING": "🔵"}


class StatusBar(Static):
    """Render compact runtime status information.

    Segments (left to right):
        🟢 IDLE  |  Relay: http://127.0.0.1:8000  |  Theme: dark  |  Messages: 4
    """

    DEFAULT_CSS = """
    StatusBar {
        layout: horizontal;
        height: auto;
    }
    StatusBar Label {
        margin-right: 1;
    }
    """

    def compose(self) -> ComposeResult:
        yield Label("🟢 IDLE", id="status_state")
        yield Label("|", id="status_sep1")
        yield Label("Relay: -", id="status_relay")
        yield Label("|", id="status_sep2")
        yield Label("Theme: -", id="status_theme")
        yield Label("|", id="status_sep3")
        yield Label("Messages: 0", id="status_messages")

    def set_status(
        self,
        *,
        state: str,
        relay_url: str,
        theme: str,
        message_count: int,
    ) -> None:
        """Update all status segment labels."""
        icon = _STATE_ICONS.get(state, "⚪")
        self.query_one("#status_state", Label).update(f"{icon} {state}")
        self.query_one("#status_relay", Label).update(f"Relay: {relay_url}")
        self.query_one("#status_theme", Label).update(f"Theme: {theme}")
        self.query_one("#status_messages", Label).update(f"Messages: {message_count}")
