"""Turn lifecycle states and the lock that serializes sends."""

from __future__ import annotations

import asyncio
from enum import Enum


class ConversationState(str, Enum):
    """Where the conversation is within one request/response turn."""

    IDLE = "IDLE"
    SENDING = "SENDING"
    STREAMING = "STREAMING"


# SENDING -> IDLE covers a relay that fails before any stream is opened.
ALLOWED_TRANSITIONS: dict[ConversationState, frozenset[ConversationState]] = {
    ConversationState.IDLE: frozenset({ConversationState.SENDING}),
    ConversationState.SENDING: frozenset(
        {ConversationState.STREAMING, ConversationState.IDLE}
    ),
    ConversationState.STREAMING: frozenset({ConversationState.IDLE}),
}


class StateManager:
    """Hold the turn state; every change goes through one asyncio lock."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._state = ConversationState.IDLE

    @property
    def current(self) -> ConversationState:
        """Unlocked snapshot for renderers; use get_state() to coordinate."""
        return self._state

    async def get_state(self) -> ConversationState:
        async with self._lock:
            return self._state

    @staticmethod
    def _check(old: ConversationState, new: ConversationState) -> None:
        if new not in ALLOWED_TRANSITIONS[old]:
            raise ValueError(f"Illegal turn transition {old.value} -> {new.value}")

    async def transition_to(self, new_state: ConversationState) -> ConversationState:
        """Move to ``new_state``.

        Raises:
            ValueError: If the lifecycle does not allow the move
        """
        async with self._lock:
            self._check(self._state, new_state)
            self._state = new_state
            return self._state

    async def transition_if(
        self,
        expected_state: ConversationState,
        new_state: ConversationState,
    ) -> bool:
        """Compare-and-set: move only when the current state is ``expected_state``."""
        async with self._lock:
            if self._state != expected_state:
                return False
            self._check(expected_state, new_state)
            self._state = new_state
            return True

    async def can_send_message(self) -> bool:
        async with self._lock:
            return self._state == ConversationState.IDLE
