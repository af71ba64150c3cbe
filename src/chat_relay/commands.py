"""Slash-command table and input interception.

Built-in commands are always listed first and can never be edited or
removed. User commands follow in creation order and are persisted (without
the built-ins) to the key-value store on every change.
"""

from __future__ import annotations

from dataclasses import dataclass
import json
import logging

from pydantic import ValidationError

from .exceptions import CommandValidationError
from .models import COMMAND_PREFIX, Command
from .storage import KeyValueStore

LOGGER = logging.getLogger(__name__)

USER_COMMANDS_KEY = "user_commands"
HELP_TRIGGER = "/help"
CLEAR_TRIGGER = "/clear"

BUILTIN_COMMANDS: tuple[Command, ...] = (
    Command(
        name="Help",
        description="Show available commands",
        trigger=HELP_TRIGGER,
        response=(
            "Available commands:\n/help - Show this help message\n"
            "/clear - Clear chat history"
        ),
    ),
    Command(
        name="Clear",
        description="Clear chat history",
        trigger=CLEAR_TRIGGER,
        response="Chat history cleared!",
    ),
)

BUILTIN_TRIGGERS: frozenset[str] = frozenset(cmd.trigger for cmd in BUILTIN_COMMANDS)


def validate_command(command: Command) -> None:
    """Reject command definitions with empty fields or a missing prefix.

    Raises:
        CommandValidationError: When the definition is malformed
    """
    if not command.name.strip() or not command.trigger.strip() or not command.response.strip():
        raise CommandValidationError("All fields are required")
    if not command.trigger.startswith(COMMAND_PREFIX):
        raise CommandValidationError(
            f"Command trigger must start with {COMMAND_PREFIX}"
        )


class CommandTable:
    """Ordered, trigger-unique set of built-in and user commands."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._custom: list[Command] = self._load()

    def _load(self) -> list[Command]:
        raw = self._store.get(USER_COMMANDS_KEY)
        if not raw:
            return []
        try:
            payload = json.loads(raw)
        except ValueError as exc:
            LOGGER.warning(
                "commands.load_failed",
                extra={"event": "commands.load_failed", "reason": str(exc)},
            )
            return []
        if not isinstance(payload, list):
            LOGGER.warning(
                "commands.load_failed",
                extra={"event": "commands.load_failed", "reason": "not a list"},
            )
            return []

        loaded: list[Command] = []
        seen = set(BUILTIN_TRIGGERS)
        for item in payload:
            try:
                command = Command.model_validate(item)
                validate_command(command)
            except (ValidationError, CommandValidationError) as exc:
                LOGGER.warning(
                    "commands.entry_skipped",
                    extra={"event": "commands.entry_skipped", "reason": str(exc)},
                )
                continue
            if command.trigger in seen:
                # A stored table that breaks trigger uniqueness is corrupt.
                LOGGER.warning(
                    "commands.load_failed",
                    extra={
                        "event": "commands.load_failed",
                        "reason": f"duplicate trigger {command.trigger}",
                    },
                )
                return []
            seen.add(command.trigger)
            loaded.append(command)
        return loaded

    def _commit(self, custom: list[Command]) -> None:
        """Persist ``custom`` and only then make it the live table."""
        self._store.set(
            USER_COMMANDS_KEY,
            json.dumps([cmd.model_dump() for cmd in custom], ensure_ascii=False),
        )
        self._custom = custom

    @property
    def commands(self) -> list[Command]:
        """Merged table: built-ins first, then user commands in creation order."""
        return [*BUILTIN_COMMANDS, *self._custom]

    @property
    def custom_commands(self) -> list[Command]:
        return list(self._custom)

    @staticmethod
    def is_builtin(trigger: str) -> bool:
        return trigger in BUILTIN_TRIGGERS

    def get(self, trigger: str) -> Command | None:
        for command in self.commands:
            if command.trigger == trigger:
                return command
        return None

    def add(self, command: Command) -> None:
        """Append a user command.

        Raises:
            CommandValidationError: When the definition is malformed or the
                trigger already exists; the table is left unchanged
        """
        validate_command(command)
        if self.get(command.trigger) is not None:
            raise CommandValidationError("Command trigger already exists")
        self._commit([*self._custom, command])
        LOGGER.info(
            "commands.added",
            extra={"event": "commands.added", "trigger": command.trigger},
        )

    def update(self, trigger: str, command: Command) -> None:
        """Replace the user command registered under ``trigger`` in place.

        Raises:
            CommandValidationError: For built-in or unknown triggers, malformed
                definitions, or a new trigger that collides with another command
        """
        if self.is_builtin(trigger):
            raise CommandValidationError("Built-in commands cannot be edited")
        index = next(
            (i for i, cmd in enumerate(self._custom) if cmd.trigger == trigger), None
        )
        if index is None:
            raise CommandValidationError(f"Unknown command {trigger}")
        validate_command(command)
        if command.trigger != trigger and self.get(command.trigger) is not None:
            raise CommandValidationError("Command trigger already exists")
        updated = list(self._custom)
        updated[index] = command
        self._commit(updated)
        LOGGER.info(
            "commands.updated",
            extra={
                "event": "commands.updated",
                "trigger": trigger,
                "new_trigger": command.trigger,
            },
        )

    def remove(self, trigger: str) -> bool:
        """Remove a user command; built-ins are never removed.

        Returns:
            True if a command was removed
        """
        if self.is_builtin(trigger):
            return False
        remaining = [cmd for cmd in self._custom if cmd.trigger != trigger]
        if len(remaining) == len(self._custom):
            return False
        self._commit(remaining)
        LOGGER.info(
            "commands.removed",
            extra={"event": "commands.removed", "trigger": trigger},
        )
        return True


@dataclass(frozen=True)
class CommandResult:
    """Outcome of intercepting one line of user input."""

    is_command: bool
    response: str | None = None


class CommandInterceptor:
    """Resolve slash-command input against a CommandTable without side effects."""

    def __init__(self, table: CommandTable) -> None:
        self.table = table

    def help_text(self) -> str:
        lines = [f"{cmd.trigger} - {cmd.description}" for cmd in self.table.commands]
        return "Available commands:\n" + "\n".join(lines)

    def process(self, text: str) -> CommandResult:
        """Decide whether ``text`` is a command and resolve its response.

        Args:
            text: Raw user input

        Returns:
            CommandResult with the static (or synthesized help) response
        """
        trimmed = text.strip()
        if not trimmed.startswith(COMMAND_PREFIX):
            return CommandResult(is_command=False)

        if trimmed == HELP_TRIGGER:
            return CommandResult(is_command=True, response=self.help_text())

        for command in self.table.commands:
            if trimmed.startswith(command.trigger):
                return CommandResult(is_command=True, response=command.response)

        LOGGER.debug(
            "commands.unknown",
            extra={"event": "commands.unknown", "trigger": trimmed.split()[0]},
        )
        return CommandResult(is_command=False)
