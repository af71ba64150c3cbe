"""Modal screens for pickers, prompts, and the settings forms."""

from __future__ import annotations

from typing import Any

from textual.app import ComposeResult
from textual.containers import Container, Horizontal
from textual.screen import ModalScreen
from textual.widgets import Button, Input, OptionList, Static

from .commands import CommandTable
from .exceptions import ChatRelayError
from .models import Command, UserPreferences
from .preferences import parse_interests


def _selected_index(event: OptionList.OptionSelected) -> int:
    idx = getattr(event, "option_index", None)
    if idx is None:
        idx = getattr(event, "index", -1)
    try:
        return int(idx if idx is not None else -1)
    except (TypeError, ValueError):
        return -1


class InfoScreen(ModalScreen[None]):
    """Modal that shows a block of text and closes on Escape/OK."""

    CSS = """
    InfoScreen {
        align: center middle;
    }

    #info-dialog {
        width: 80;
        max-width: 120;
        height: auto;
        max-height: 28;
        padding: 1 2;
        border: round $panel;
        background: $surface;
    }

    #info-actions {
        height: 3;
        align: right middle;
    }
    """

    def __init__(self, text: str) -> None:
        super().__init__()
        self._text = text

    def compose(self) -> ComposeResult:
        with Container(id="info-dialog"):
            yield Static(self._text, id="info-body")
            with Horizontal(id="info-actions"):
                yield Button("OK", id="info-ok", variant="primary")

    def on_button_pressed(self, event: Button.Pressed) -> None:
        if event.button.id == "info-ok":
            event.stop()
            self.dismiss(None)

    def on_key(self, event: Any) -> None:  # noqa: ANN401
        if str(getattr(event, "key", "")).lower() == "escape":
            self.dismiss(None)


class SimplePickerScreen(ModalScreen[str | None]):
    """Modal picker for selecting from a list of strings."""

    CSS = """
    SimplePickerScreen {
        align: center middle;
    }

    #picker-dialog {
        width: 60;
        height: auto;
        max-height: 24;
        padding: 1 2;
        border: round $panel;
        background: $surface;
    }

    #picker-title {
        padding-bottom: 1;
        text-style: bold;
    }

    #picker-help {
        padding-top: 1;
    }
    """

    def __init__(self, title: str, options: list[str], current: str | None = None) -> None:
        super().__init__()
        self._title = title
        self._options = options
        self._current = current

    def compose(self) -> ComposeResult:
        with Container(id="picker-dialog"):
            yield Static(self._title, id="picker-title")
            yield OptionList(*self._options, id="picker-options")
            yield Static("Enter/click to select | Esc to cancel", id="picker-help")

    def on_mount(self) -> None:
        options = self.query_one("#picker-options", OptionList)
        if self._current in self._options:
            options.highlighted = self._options.index(self._current)
        options.focus()

    def on_option_list_option_selected(self, event: OptionList.OptionSelected) -> None:
        selected = _selected_index(event)
        if 0 <= selected < len(self._options):
            self.dismiss(self._options[selected])

    def on_key(self, event: Any) -> None:  # noqa: ANN401
        if str(getattr(event, "key", "")).lower() == "escape":
            self.dismiss(None)


class TextPromptScreen(ModalScreen[str | None]):
    """Modal screen to prompt for a single line of text."""

    CSS = """
    TextPromptScreen {
        align: center middle;
    }

    #text-prompt-dialog {
        width: 60;
        height: auto;
        padding: 1 2;
        border: round $panel;
        background: $surface;
    }

    #text-prompt-title {
        padding-bottom: 1;
        text-style: bold;
    }

    #text-prompt-input {
        width: 100%;
        margin-bottom: 1;
    }
    """

    def __init__(self, title: str, placeholder: str = "", value: str = "") -> None:
        super().__init__()
        self._title = title
        self._placeholder = placeholder
        self._value = value

    def compose(self) -> ComposeResult:
        with Container(id="text-prompt-dialog"):
            yield Static(self._title, id="text-prompt-title")
            yield Input(
                value=self._value,
                placeholder=self._placeholder,
                id="text-prompt-input",
            )
            yield Static("Enter to confirm | Esc to cancel", id="text-prompt-help")

    def on_mount(self) -> None:
        self.query_one("#text-prompt-input", Input).focus()

    def on_input_submitted(self, event: Input.Submitted) -> None:
        if event.input.id != "text-prompt-input":
            return
        event.stop()
        self.dismiss(event.value.strip())

    def on_key(self, event: Any) -> None:  # noqa: ANN401
        if str(getattr(event, "key", "")).lower() == "escape":
            self.dismiss(None)


class PreferencesScreen(ModalScreen[dict[str, Any] | None]):
    """Form for the user context sent with every request.

    Dismisses with the changed fields (``name``, ``interests``,
    ``preferred_response_style``) or ``None`` when cancelled.
    """

    CSS = """
    PreferencesScreen {
        align: center middle;
    }

    #prefs-dialog {
        width: 70;
        height: auto;
        padding: 1 2;
        border: round $panel;
        background: $surface;
    }

    #prefs-title {
        padding-bottom: 1;
        text-style: bold;
    }

    .prefs-label {
        padding-top: 1;
    }

    #prefs-actions {
        height: 3;
        margin-top: 1;
        align: right middle;
    }

    #prefs-actions Button {
        margin-left: 1;
    }
    """

    def __init__(self, preferences: UserPreferences) -> None:
        super().__init__()
        self._preferences = preferences

    def compose(self) -> ComposeResult:
        with Container(id="prefs-dialog"):
            yield Static("Preferences", id="prefs-title")
            yield Static("Name", classes="prefs-label")
            yield Input(value=self._preferences.name, id="prefs-name")
            yield Static("Interests (comma-separated)", classes="prefs-label")
            yield Input(
                value=", ".join(self._preferences.interests),
                placeholder="e.g. astronomy, cooking",
                id="prefs-interests",
            )
            yield Static("Preferred response style", classes="prefs-label")
            yield Input(
                value=self._preferences.preferred_response_style,
                id="prefs-style",
            )
            with Horizontal(id="prefs-actions"):
                yield Button("Cancel", id="prefs-cancel")
                yield Button("Save", id="prefs-save", variant="primary")

    def on_mount(self) -> None:
        self.query_one("#prefs-name", Input).focus()

    def collect(self) -> dict[str, Any]:
        return {
            "name": self.query_one("#prefs-name", Input).value.strip(),
            "interests": parse_interests(self.query_one("#prefs-interests", Input).value),
            "preferred_response_style": self.query_one("#prefs-style", Input).value.strip(),
        }

    def on_button_pressed(self, event: Button.Pressed) -> None:
        event.stop()
        if event.button.id == "prefs-save":
            self.dismiss(self.collect())
        elif event.button.id == "prefs-cancel":
            self.dismiss(None)

    def on_input_submitted(self, event: Input.Submitted) -> None:
        event.stop()
        self.dismiss(self.collect())

    def on_key(self, event: Any) -> None:  # noqa: ANN401
        if str(getattr(event, "key", "")).lower() == "escape":
            self.dismiss(None)


class CommandsScreen(ModalScreen[None]):
    """List, add, edit, and remove user-defined slash commands.

    Validation failures from the command table are shown inline; the
    screen stays open until the user closes it.
    """

    CSS = """
    CommandsScreen {
        align: center middle;
    }

    #commands-dialog {
        width: 90;
        height: auto;
        max-height: 40;
        padding: 1 2;
        border: round $panel;
        background: $surface;
    }

    #commands-title {
        padding-bottom: 1;
        text-style: bold;
    }

    #commands-list {
        height: 8;
        margin-bottom: 1;
    }

    #commands-form Input {
        margin-bottom: 1;
    }

    #commands-error {
        color: $error;
        height: auto;
    }

    #commands-actions {
        height: 3;
        align: right middle;
    }

    #commands-actions Button {
        margin-left: 1;
    }
    """

    def __init__(self, table: CommandTable) -> None:
        super().__init__()
        self._table = table
        self._editing: str | None = None

    def compose(self) -> ComposeResult:
        with Container(id="commands-dialog"):
            yield Static("Custom commands", id="commands-title")
            yield OptionList(id="commands-list")
            with Container(id="commands-form"):
                yield Input(placeholder="Name", id="command-name")
                yield Input(placeholder="Description", id="command-description")
                yield Input(placeholder="Trigger, e.g. /greet", id="command-trigger")
                yield Input(placeholder="Response", id="command-response")
            yield Static("", id="commands-error")
            with Horizontal(id="commands-actions"):
                yield Button("New", id="command-new")
                yield Button("Remove", id="command-remove", variant="error")
                yield Button("Save", id="command-save", variant="primary")
                yield Button("Close", id="command-close")

    def on_mount(self) -> None:
        self._refresh_list()
        self.query_one("#command-name", Input).focus()

    @property
    def editing(self) -> str | None:
        """Trigger of the command loaded into the form, if any."""
        return self._editing

    def _refresh_list(self) -> None:
        options = self.query_one("#commands-list", OptionList)
        options.clear_options()
        for command in self._table.commands:
            marker = " (built-in)" if self._table.is_builtin(command.trigger) else ""
            options.add_option(f"{command.trigger} - {command.description}{marker}")

    def _set_error(self, message: str) -> None:
        self.query_one("#commands-error", Static).update(message)

    def _fill_form(self, command: Command | None) -> None:
        values = {
            "#command-name": command.name if command else "",
            "#command-description": command.description if command else "",
            "#command-trigger": command.trigger if command else "",
            "#command-response": command.response if command else "",
        }
        for selector, value in values.items():
            self.query_one(selector, Input).value = value

    def _form_command(self) -> Command:
        return Command(
            name=self.query_one("#command-name", Input).value.strip(),
            description=self.query_one("#command-description", Input).value.strip(),
            trigger=self.query_one("#command-trigger", Input).value.strip(),
            response=self.query_one("#command-response", Input).value.strip(),
        )

    def start_new(self) -> None:
        self._editing = None
        self._fill_form(None)
        self._set_error("")

    def select(self, index: int) -> None:
        commands = self._table.commands
        if not 0 <= index < len(commands):
            return
        command = commands[index]
        if self._table.is_builtin(command.trigger):
            self._set_error("Built-in commands cannot be edited")
            return
        self._editing = command.trigger
        self._fill_form(command)
        self._set_error("")

    def save(self) -> bool:
        """Add a new command or update the one being edited."""
        try:
            command = self._form_command()
            if self._editing is None:
                self._table.add(command)
            else:
                self._table.update(self._editing, command)
        except ChatRelayError as exc:
            self._set_error(str(exc))
            return False
        self._refresh_list()
        self.start_new()
        return True

    def remove_selected(self) -> bool:
        if self._editing is None:
            self._set_error("Select a custom command to remove")
            return False
        removed = self._table.remove(self._editing)
        self._refresh_list()
        self.start_new()
        return removed

    def on_option_list_option_selected(self, event: OptionList.OptionSelected) -> None:
        event.stop()
        self.select(_selected_index(event))

    def on_button_pressed(self, event: Button.Pressed) -> None:
        event.stop()
        button_id = event.button.id
        if button_id == "command-save":
            self.save()
        elif button_id == "command-new":
            self.start_new()
        elif button_id == "command-remove":
            self.remove_selected()
        elif button_id == "command-close":
            self.dismiss(None)

    def on_input_submitted(self, event: Input.Submitted) -> None:
        event.stop()
        self.save()

    def on_key(self, event: Any) -> None:  # noqa: ANN401
        if str(getattr(event, "key", "")).lower() == "escape":
            self.dismiss(None)
