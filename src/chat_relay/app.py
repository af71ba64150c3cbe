"""Main Textual application for chatting through the relay service."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
import logging
from typing import Any

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Container
from textual.screen import Screen
from textual.widgets import Button, Footer, Header, Input

from .attachments import load_image
from .client import ChatTransport, ProxyClient
from .commands import CommandInterceptor, CommandTable
from .config import load_config
from .conversation import Conversation, SubmitOutcome
from .events import (
    HISTORY_CLEARED,
    MESSAGE_APPENDED,
    MESSAGE_UPDATED,
    STATE_CHANGED,
    ConversationEvent,
)
from .exceptions import ChatRelayError
from .logging_utils import configure_logging
from .models import ImageAttachment, Theme
from .preferences import AI_AVATAR_CHOICES, PreferenceStore
from .screens import (
    CommandsScreen,
    InfoScreen,
    PreferencesScreen,
    SimplePickerScreen,
    TextPromptScreen,
)
from .storage import JsonFileStore, KeyValueStore
from .widgets.conversation import ConversationView
from .widgets.input_box import InputBox
from .widgets.status_bar import StatusBar

LOGGER = logging.getLogger(__name__)

TEXTUAL_THEMES = {"dark": "textual-dark", "light": "textual-light"}
THEME_CYCLE = (Theme.LIGHT, Theme.DARK, Theme.SYSTEM)

_STATE_SUBTITLES = {
    "IDLE": "Ready",
    "SENDING": "Sending message...",
    "STREAMING": "Streaming response...",
}

_SUBMIT_SUBTITLES = {
    SubmitOutcome.FAILED: "Request failed. Is the relay running?",
    SubmitOutcome.REJECTED: "Busy. Wait for current request to finish.",
    SubmitOutcome.CLEARED: "Chat history cleared.",
}

AVATAR_USER_CUSTOM = "You: custom image path or emoji..."
AVATAR_USER_RESET = "You: reset to default"
AVATAR_AI_PREFIX = "Assistant: "
AVATAR_AI_RESET = "Assistant: reset to default"


class ChatRelayApp(App[None]):
    """Terminal chat client rendering a Conversation from its event log."""

    CSS = """
    Screen {
        layout: vertical;
        background: $background;
    }

    #app-root {
        layout: vertical;
        width: 100%;
        height: 1fr;
        background: $background;
    }

    #conversation {
        height: 1fr;
        padding: 1;
    }

    InputBox {
        height: auto;
        padding: 0 1 1 1;
        border-top: solid $panel;
        background: $surface;
    }

    #message_input {
        width: 1fr;
    }

    #attach_button {
        margin-left: 1;
        min-width: 10;
    }

    #send_button {
        margin-left: 1;
        min-width: 10;
    }

    #input_row {
        height: auto;
    }

    #status_bar {
        height: auto;
        padding: 0 1;
        border-top: solid $panel;
        background: $surface;
    }

    MessageBubble {
        width: 85%;
        margin: 1 0;
        padding: 1 2;
        border: round $panel;
    }

    .message-user {
        margin-left: 15%;
        background: $primary-muted;
    }

    .message-assistant {
        background: $surface;
    }
    """

    BINDINGS = [
        Binding("ctrl+s", "send_message", "Send"),
        Binding("ctrl+l", "clear_chat", "Clear"),
        Binding("ctrl+o", "attach_image", "Image"),
        Binding("f1", "show_keys", "Keys"),
        Binding("f2", "edit_preferences", "Preferences"),
        Binding("f3", "manage_commands", "Commands"),
        Binding("f4", "pick_avatar", "Avatars"),
        Binding("f5", "cycle_theme", "Theme"),
        Binding("f6", "pick_theme", "Pick Theme", show=False),
        Binding("ctrl+q", "quit", "Quit"),
    ]

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        *,
        store: KeyValueStore | None = None,
        transport: ChatTransport | None = None,
    ) -> None:
        self.config = config or load_config()
        self.window_title = str(self.config["app"]["title"])
        configure_logging(self.config["logging"], console=False)

        kv_store = store or JsonFileStore(self.config["storage"]["path"] or None)
        self.preference_store = PreferenceStore(kv_store)
        self.command_table = CommandTable(kv_store)
        self._owned_client: ProxyClient | None = None
        if transport is None:
            self._owned_client = ProxyClient.from_config(self.config["client"])
            transport = self._owned_client
        self.conversation = Conversation(
            CommandInterceptor(self.command_table),
            self.preference_store,
            transport,
        )
        self.conversation.events.subscribe(self._on_conversation_event)
        self.max_image_bytes = int(self.config["server"]["max_image_bytes"])
        self.pending_image: ImageAttachment | None = None
        super().__init__()

    def compose(self) -> ComposeResult:
        yield Header()
        with Container(id="app-root"):
            yield ConversationView(id="conversation")
            yield InputBox()
            yield StatusBar(id="status_bar")
        yield Footer()

    async def on_mount(self) -> None:
        """Apply theme, focus input, and report initial status."""
        self.title = self.window_title
        self.sub_title = _STATE_SUBTITLES["IDLE"]
        self._apply_theme()
        self._message_input.focus()
        LOGGER.info(
            "app.started",
            extra={
                "event": "app.started",
                "relay": str(self.config["client"]["proxy_url"]),
            },
        )

    async def on_unmount(self) -> None:
        """Detach from the conversation and close the relay client."""
        self.conversation.events.unsubscribe(self._on_conversation_event)
        if self._owned_client is not None:
            await self._owned_client.aclose()

    @property
    def _main(self) -> Screen[Any]:
        """The chat screen; app-level queries would hit any open modal instead."""
        return self.screen_stack[0]

    @property
    def _message_input(self) -> Input:
        return self._main.query_one("#message_input", Input)

    @property
    def show_timestamps(self) -> bool:
        return bool(self.config["app"]["show_timestamps"])

    def _timestamp(self) -> str:
        if not self.show_timestamps:
            return ""
        return datetime.now().strftime("%H:%M")

    def _apply_theme(self) -> None:
        applied = self.preference_store.applied_theme
        self.theme = TEXTUAL_THEMES[applied]
        self._update_status_bar()

    def _update_status_bar(self) -> None:
        status = self._main.query_one("#status_bar", StatusBar)
        status.set_status(
            state=self.conversation.current_state.value,
            relay_url=str(self.config["client"]["proxy_url"]),
            theme=self.preference_store.applied_theme,
            message_count=len(self.conversation.messages),
        )

    def _apply_setting(self, change: Callable[..., Any], *args: Any) -> bool:
        """Run a preference mutation, surfacing persistence failures in the subtitle."""
        try:
            change(*args)
        except ChatRelayError as exc:
            LOGGER.warning(
                "app.settings.save_failed",
                extra={"event": "app.settings.save_failed", "error": str(exc)},
            )
            self.sub_title = f"Could not save settings: {exc}"
            return False
        return True

    async def _on_conversation_event(self, event: ConversationEvent) -> None:
        """Render one conversation event; the conversation owns all state."""
        view = self._main.query_one(ConversationView)
        data = event.data
        if event.name == MESSAGE_APPENDED:
            settings = self.preference_store.display_settings
            role = str(data["role"])
            await view.add_message(
                str(data["id"]),
                str(data["content"]),
                role,
                avatar=settings.user_avatar if role == "user" else settings.ai_avatar,
                timestamp=self._timestamp(),
                image_name=data.get("image_name"),
            )
            self._update_status_bar()
        elif event.name == MESSAGE_UPDATED:
            view.append_to_message(str(data["id"]), str(data["fragment"]))
        elif event.name == HISTORY_CLEARED:
            await view.clear_messages()
            self._update_status_bar()
        elif event.name == STATE_CHANGED:
            state = str(data["to"])
            self._main.query_one(InputBox).set_busy(state != "IDLE")
            self.sub_title = _STATE_SUBTITLES.get(state, state)
            self._update_status_bar()
            if state == "IDLE":
                self._message_input.focus()

    def set_pending_image(self, attachment: ImageAttachment | None) -> None:
        self.pending_image = attachment
        self._main.query_one(InputBox).set_pending_image(
            attachment.filename if attachment else None
        )

    async def send_user_message(self) -> None:
        """Hand the input line and pending image to the conversation."""
        input_widget = self._message_input
        text = input_widget.value
        image = self.pending_image
        if not text.strip() and image is None:
            self.sub_title = "Cannot send an empty message."
            return
        if self.conversation.is_busy:
            self.sub_title = _SUBMIT_SUBTITLES[SubmitOutcome.REJECTED]
            return
        input_widget.value = ""
        self.set_pending_image(None)
        self.run_worker(self._submit(text, image), group="turn", exit_on_error=False)

    async def _submit(self, text: str, image: ImageAttachment | None) -> SubmitOutcome:
        outcome = await self.conversation.submit(text, image)
        LOGGER.info(
            "app.submit.finished",
            extra={"event": "app.submit.finished", "outcome": outcome.value},
        )
        subtitle = _SUBMIT_SUBTITLES.get(outcome)
        if subtitle is not None:
            self.sub_title = subtitle
        return outcome

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id == "message_input":
            await self.send_user_message()

    async def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "send_button":
            await self.send_user_message()

    async def on_input_box_attach_requested(
        self, _message: InputBox.AttachRequested
    ) -> None:
        await self.action_attach_image()

    async def action_send_message(self) -> None:
        await self.send_user_message()

    async def action_clear_chat(self) -> None:
        if not await self.conversation.clear():
            self.sub_title = "Cannot clear while a response is in progress."
            return
        self.sub_title = _SUBMIT_SUBTITLES[SubmitOutcome.CLEARED]

    async def action_attach_image(self) -> None:
        if self.conversation.is_busy:
            self.sub_title = "Attachments are available only when idle."
            return
        self.push_screen(
            TextPromptScreen("Attach image", placeholder="Path to a .png, .jpg, .gif or .webp file"),
            self.attach_image_from_path,
        )

    def attach_image_from_path(self, path: str | None) -> None:
        if not path:
            return
        try:
            attachment = load_image(path, max_bytes=self.max_image_bytes)
        except ChatRelayError as exc:
            LOGGER.warning(
                "app.attachment.validation_failed",
                extra={"event": "app.attachment.validation_failed", "error": str(exc)},
            )
            self.sub_title = str(exc)
            return
        self.set_pending_image(attachment)
        self.sub_title = f"Image attached: {attachment.filename}"

    def action_show_keys(self) -> None:
        lines = ["Key bindings", ""]
        for binding in self.BINDINGS:
            if isinstance(binding, Binding):
                lines.append(f"{binding.key:<8} {binding.description}")
        lines.extend(["", "Type /help in the message box to list commands."])
        self.push_screen(InfoScreen("\n".join(lines)))

    def action_edit_preferences(self) -> None:
        self.push_screen(
            PreferencesScreen(self.preference_store.user_preferences),
            self.save_preferences,
        )

    def save_preferences(self, values: dict[str, Any] | None) -> None:
        if values is None:
            return
        if self._apply_setting(
            lambda: self.preference_store.update_user_preferences(**values)
        ):
            self.sub_title = "Preferences saved."

    def action_manage_commands(self) -> None:
        self.push_screen(CommandsScreen(self.command_table))

    def _avatar_options(self) -> list[str]:
        return [
            AVATAR_USER_CUSTOM,
            AVATAR_USER_RESET,
            *(f"{AVATAR_AI_PREFIX}{choice}" for choice in AI_AVATAR_CHOICES),
            AVATAR_AI_RESET,
        ]

    def action_pick_avatar(self) -> None:
        self.push_screen(
            SimplePickerScreen("Choose avatars", self._avatar_options()),
            self.apply_avatar_choice,
        )

    def apply_avatar_choice(self, choice: str | None) -> None:
        if choice is None:
            return
        if choice == AVATAR_USER_CUSTOM:
            self.push_screen(
                TextPromptScreen(
                    "User avatar",
                    placeholder="Image path, URL, or emoji",
                    value=self.preference_store.display_settings.user_avatar,
                ),
                self.set_user_avatar,
            )
            return
        if choice == AVATAR_USER_RESET:
            changed = self._apply_setting(self.preference_store.reset_user_avatar)
        elif choice == AVATAR_AI_RESET:
            changed = self._apply_setting(self.preference_store.reset_ai_avatar)
        elif choice.startswith(AVATAR_AI_PREFIX):
            changed = self._apply_setting(
                self.preference_store.set_ai_avatar, choice[len(AVATAR_AI_PREFIX):]
            )
        else:
            return
        if changed:
            self._refresh_avatars()

    def set_user_avatar(self, ref: str | None) -> None:
        if ref is None:
            return
        if self._apply_setting(self.preference_store.set_user_avatar, ref):
            self._refresh_avatars()

    def _refresh_avatars(self) -> None:
        settings = self.preference_store.display_settings
        self._main.query_one(ConversationView).set_avatars(settings.user_avatar, settings.ai_avatar)
        self.sub_title = "Avatars updated."

    def action_cycle_theme(self) -> None:
        current = self.preference_store.display_settings.theme
        next_theme = THEME_CYCLE[(THEME_CYCLE.index(current) + 1) % len(THEME_CYCLE)]
        self.select_theme(next_theme.value)

    def action_pick_theme(self) -> None:
        self.push_screen(
            SimplePickerScreen(
                "Theme",
                [theme.value for theme in THEME_CYCLE],
                current=self.preference_store.display_settings.theme.value,
            ),
            self.select_theme,
        )

    def select_theme(self, choice: str | None) -> None:
        if choice is None:
            return
        if self._apply_setting(self.preference_store.set_theme, choice):
            self._apply_theme()
            self.sub_title = f"Theme: {choice}"
