"""Conversation state machine: command short-circuit, send, and stream folding.

One turn moves IDLE -> SENDING -> STREAMING -> IDLE. Fragments are folded
into a single trailing assistant message in arrival order; failures leave
whatever was already shown and never retry.
"""

from __future__ import annotations

from dataclasses import replace
from enum import Enum
import logging

from .client import ChatTransport
from .commands import CLEAR_TRIGGER, CommandInterceptor
from .events import (
    HISTORY_CLEARED,
    MESSAGE_APPENDED,
    MESSAGE_UPDATED,
    STATE_CHANGED,
    EventLog,
)
from .exceptions import ChatRelayError
from .models import ChatMessage, ImageAttachment
from .preferences import PreferenceStore
from .request_builder import ChatRequest, build_chat_request
from .state import ConversationState, StateManager

LOGGER = logging.getLogger(__name__)

FALLBACK_REPLY = "Sorry, I encountered an error. Please try again."
COMMAND_FALLBACK_REPLY = "Command processed"


class SubmitOutcome(str, Enum):
    """What a call to ``Conversation.submit`` ended up doing."""

    REJECTED = "rejected"
    COMMAND = "command"
    CLEARED = "cleared"
    COMPLETED = "completed"
    FAILED = "failed"


class Conversation:
    """Own the ordered message list and drive one turn at a time.

    Collaborators are injected so the UI, tests, and any other front end
    share the same behaviour; renderers subscribe to ``events``.
    """

    def __init__(
        self,
        interceptor: CommandInterceptor,
        preferences: PreferenceStore,
        transport: ChatTransport,
        *,
        state: StateManager | None = None,
        events: EventLog | None = None,
    ) -> None:
        self.interceptor = interceptor
        self.preferences = preferences
        self.transport = transport
        self.state = state or StateManager()
        self.events = events or EventLog()
        self._messages: list[ChatMessage] = []

    @property
    def messages(self) -> list[ChatMessage]:
        """Copies of the history in insertion order."""
        return [replace(message) for message in self._messages]

    @property
    def current_state(self) -> ConversationState:
        return self.state.current

    @property
    def is_busy(self) -> bool:
        return self.state.current is not ConversationState.IDLE

    async def _transition(self, new_state: ConversationState) -> None:
        old_state = self.state.current
        await self.state.transition_to(new_state)
        await self._announce_transition(old_state, new_state)

    async def _announce_transition(
        self, old_state: ConversationState, new_state: ConversationState
    ) -> None:
        LOGGER.info(
            "conversation.state.transition",
            extra={
                "event": "conversation.state.transition",
                "from_state": old_state.value,
                "to_state": new_state.value,
            },
        )
        await self.events.publish(
            STATE_CHANGED, {"from": old_state.value, "to": new_state.value}
        )

    async def _append(self, message: ChatMessage) -> ChatMessage:
        self._messages.append(message)
        await self.events.publish(
            MESSAGE_APPENDED,
            {
                "id": message.id,
                "role": message.role,
                "content": message.content,
                "image_name": message.image.filename if message.image else None,
            },
        )
        return message

    async def _fold(self, fragment: str) -> ChatMessage:
        """Extend the trailing assistant message, or start one.

        Update events carry only the new fragment; renderers append it.
        """
        last = self._messages[-1] if self._messages else None
        if last is not None and last.role == "assistant":
            last.content += fragment
            await self.events.publish(MESSAGE_UPDATED, {"id": last.id, "fragment": fragment})
            return last
        return await self._append(ChatMessage(role="assistant", content=fragment))

    async def clear(self) -> bool:
        """Drop the whole history; refused while a turn is in flight."""
        if self.is_busy:
            return False
        self._messages.clear()
        self.events.reset()
        await self.events.publish(HISTORY_CLEARED)
        LOGGER.info("conversation.cleared", extra={"event": "conversation.cleared"})
        return True

    async def submit(
        self, text: str, image: ImageAttachment | None = None
    ) -> SubmitOutcome:
        """Handle one user submission end to end.

        Args:
            text: Raw input text
            image: Optional image to send with the text

        Returns:
            SubmitOutcome describing the path taken
        """
        trimmed = text.strip()
        if not trimmed and image is None:
            return SubmitOutcome.REJECTED
        if not await self.state.can_send_message():
            LOGGER.info(
                "conversation.submit.busy",
                extra={"event": "conversation.submit.busy"},
            )
            return SubmitOutcome.REJECTED

        result = self.interceptor.process(trimmed)
        if result.is_command:
            if image is not None:
                LOGGER.info(
                    "conversation.command.image_dropped",
                    extra={"event": "conversation.command.image_dropped"},
                )
            if trimmed == CLEAR_TRIGGER:
                await self.clear()
                return SubmitOutcome.CLEARED
            await self._append(ChatMessage(role="user", content=text))
            await self._append(
                ChatMessage(
                    role="assistant", content=result.response or COMMAND_FALLBACK_REPLY
                )
            )
            return SubmitOutcome.COMMAND

        if not await self.state.transition_if(
            ConversationState.IDLE, ConversationState.SENDING
        ):
            return SubmitOutcome.REJECTED
        await self._announce_transition(ConversationState.IDLE, ConversationState.SENDING)

        prior_turns = list(self._messages)
        await self._append(ChatMessage(role="user", content=text, image=image))
        request = build_chat_request(
            prior_turns, text, image, self.preferences.user_preferences
        )
        return await self._run_turn(request)

    async def _run_turn(self, request: ChatRequest) -> SubmitOutcome:
        assistant: ChatMessage | None = None
        outcome = SubmitOutcome.COMPLETED
        try:
            stream = await self.transport.open(request)
            await self._transition(ConversationState.STREAMING)
            try:
                async for fragment in stream:
                    assistant = await self._fold(fragment)
            finally:
                await stream.aclose()
        except ChatRelayError as exc:
            outcome = SubmitOutcome.FAILED
            LOGGER.warning(
                "conversation.turn.failed",
                extra={
                    "event": "conversation.turn.failed",
                    "error_type": exc.__class__.__name__,
                    "partial": assistant is not None,
                },
            )
            if assistant is None:
                await self._append(ChatMessage(role="assistant", content=FALLBACK_REPLY))
        finally:
            await self._transition(ConversationState.IDLE)
        return outcome
