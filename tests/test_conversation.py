"""Tests for the conversation state machine and stream folding."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
import unittest

from chat_relay.commands import CommandInterceptor, CommandTable
from chat_relay.conversation import FALLBACK_REPLY, Conversation, SubmitOutcome
from chat_relay.events import (
    HISTORY_CLEARED,
    MESSAGE_APPENDED,
    MESSAGE_UPDATED,
    STATE_CHANGED,
    ConversationEvent,
    EventLog,
)
from chat_relay.exceptions import ProxyConnectionError, ProxyStatusError, ProxyStreamError
from chat_relay.models import Command, ImageAttachment
from chat_relay.preferences import PreferenceStore
from chat_relay.request_builder import ChatRequest
from chat_relay.state import ConversationState
from chat_relay.storage import MemoryStore

PNG = ImageAttachment(data=b"\x89PNG", mime_type="image/png", filename="cat.png")


class FakeStream:
    """Fragment stream with an optional failure after the scripted fragments."""

    def __init__(
        self,
        fragments: list[str],
        error: Exception | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.fragments = fragments
        self.error = error
        self.gate = gate
        self.closed = False

    async def __aiter__(self) -> AsyncIterator[str]:
        for fragment in self.fragments:
            if self.gate is not None:
                await self.gate.wait()
            yield fragment
        if self.error is not None:
            raise self.error

    async def aclose(self) -> None:
        self.closed = True


class FakeTransport:
    """Records requests and hands out scripted streams."""

    def __init__(
        self,
        fragments: list[str] | None = None,
        open_error: Exception | None = None,
        stream_error: Exception | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.fragments = fragments if fragments is not None else ["ok"]
        self.open_error = open_error
        self.stream_error = stream_error
        self.gate = gate
        self.requests: list[ChatRequest] = []
        self.streams: list[FakeStream] = []

    async def open(self, request: ChatRequest) -> FakeStream:
        self.requests.append(request)
        if self.open_error is not None:
            raise self.open_error
        stream = FakeStream(self.fragments, self.stream_error, self.gate)
        self.streams.append(stream)
        return stream


def _conversation(
    transport: FakeTransport,
    store: MemoryStore | None = None,
    events: EventLog | None = None,
) -> Conversation:
    kv = store or MemoryStore()
    table = CommandTable(kv)
    return Conversation(
        CommandInterceptor(table), PreferenceStore(kv), transport, events=events
    )


def _states(events: list[ConversationEvent]) -> list[str]:
    return [e.data["to"] for e in events if e.name == STATE_CHANGED]


class ConversationTurnTests(unittest.IsolatedAsyncioTestCase):
    """Validate the send/stream path."""

    async def test_fragments_fold_into_single_assistant_message(self) -> None:
        transport = FakeTransport(["Hel", "lo", " world"])
        conversation = _conversation(transport)
        seen: list[ConversationEvent] = []
        conversation.events.subscribe(seen.append)

        outcome = await conversation.submit("hi")

        self.assertIs(outcome, SubmitOutcome.COMPLETED)
        messages = conversation.messages
        self.assertEqual([(m.role, m.content) for m in messages], [("user", "hi"), ("assistant", "Hello world")])
        appended = [e for e in seen if e.name == MESSAGE_APPENDED]
        updated = [e for e in seen if e.name == MESSAGE_UPDATED]
        self.assertEqual([e.data["role"] for e in appended], ["user", "assistant"])
        self.assertEqual([e.data["fragment"] for e in updated], ["lo", " world"])
        self.assertEqual(appended[1].data["content"], "Hel")
        self.assertTrue(all(e.data["id"] == messages[1].id for e in updated))
        self.assertEqual(_states(seen), ["SENDING", "STREAMING", "IDLE"])
        self.assertIs(conversation.current_state, ConversationState.IDLE)
        self.assertTrue(transport.streams[0].closed)

    async def test_request_uses_history_before_new_message(self) -> None:
        transport = FakeTransport(["first answer"])
        conversation = _conversation(transport)
        await conversation.submit("first")
        transport.fragments = ["second answer"]
        await conversation.submit("second", PNG)

        request = transport.requests[1]
        self.assertEqual(request.message, "second")
        self.assertIs(request.image, PNG)
        self.assertEqual(
            request.history,
            [
                {"role": "user", "content": "first"},
                {"role": "assistant", "content": "first answer"},
            ],
        )
        self.assertEqual(request.user_preferences, conversation.preferences.user_preferences)
        self.assertEqual(conversation.messages[2].image, PNG)

    async def test_image_only_submission_is_sent(self) -> None:
        transport = FakeTransport(["a cat"])
        conversation = _conversation(transport)
        outcome = await conversation.submit("   ", PNG)
        self.assertIs(outcome, SubmitOutcome.COMPLETED)
        self.assertEqual(transport.requests[0].message, "   ")

    async def test_open_failure_appends_single_fallback(self) -> None:
        for error in (ProxyConnectionError("down"), ProxyStatusError(500, "Failed to process request")):
            transport = FakeTransport(open_error=error)
            conversation = _conversation(transport)
            with self.assertLogs("chat_relay.conversation", level="WARNING"):
                outcome = await conversation.submit("hi")
            self.assertIs(outcome, SubmitOutcome.FAILED)
            self.assertEqual(
                [(m.role, m.content) for m in conversation.messages],
                [("user", "hi"), ("assistant", FALLBACK_REPLY)],
            )
            self.assertIs(conversation.current_state, ConversationState.IDLE)

    async def test_failure_before_first_fragment_appends_fallback(self) -> None:
        transport = FakeTransport([], stream_error=ProxyStreamError("reset"))
        conversation = _conversation(transport)
        with self.assertLogs("chat_relay.conversation", level="WARNING"):
            await conversation.submit("hi")
        self.assertEqual(conversation.messages[-1].content, FALLBACK_REPLY)
        self.assertEqual(len(conversation.messages), 2)

    async def test_mid_stream_failure_keeps_partial_without_retry(self) -> None:
        transport = FakeTransport(["par", "tial"], stream_error=ProxyStreamError("reset"))
        conversation = _conversation(transport)
        with self.assertLogs("chat_relay.conversation", level="WARNING"):
            outcome = await conversation.submit("hi")
        self.assertIs(outcome, SubmitOutcome.FAILED)
        self.assertEqual(
            [(m.role, m.content) for m in conversation.messages],
            [("user", "hi"), ("assistant", "partial")],
        )
        self.assertEqual(len(transport.requests), 1)
        self.assertIs(conversation.current_state, ConversationState.IDLE)

    async def test_empty_stream_adds_no_assistant_message(self) -> None:
        conversation = _conversation(FakeTransport([]))
        outcome = await conversation.submit("hi")
        self.assertIs(outcome, SubmitOutcome.COMPLETED)
        self.assertEqual([m.role for m in conversation.messages], ["user"])

    async def test_blank_input_is_ignored(self) -> None:
        transport = FakeTransport()
        conversation = _conversation(transport)
        self.assertIs(await conversation.submit("   "), SubmitOutcome.REJECTED)
        self.assertEqual(conversation.messages, [])
        self.assertEqual(conversation.events.events, [])

    async def test_submission_rejected_while_streaming(self) -> None:
        gate = asyncio.Event()
        transport = FakeTransport(["slow"], gate=gate)
        conversation = _conversation(transport)

        first = asyncio.create_task(conversation.submit("one"))
        while conversation.current_state is not ConversationState.STREAMING:
            await asyncio.sleep(0)

        self.assertTrue(conversation.is_busy)
        self.assertIs(await conversation.submit("two"), SubmitOutcome.REJECTED)
        self.assertIs(await conversation.submit("/help"), SubmitOutcome.REJECTED)
        self.assertFalse(await conversation.clear())

        gate.set()
        self.assertIs(await first, SubmitOutcome.COMPLETED)
        self.assertEqual(len(transport.requests), 1)
        self.assertEqual([m.content for m in conversation.messages], ["one", "slow"])


class ConversationCommandTests(unittest.IsolatedAsyncioTestCase):
    """Validate slash-command short-circuiting."""

    async def test_help_command_never_reaches_transport(self) -> None:
        transport = FakeTransport()
        conversation = _conversation(transport)
        seen: list[ConversationEvent] = []
        conversation.events.subscribe(seen.append)

        outcome = await conversation.submit("/help")

        self.assertIs(outcome, SubmitOutcome.COMMAND)
        self.assertEqual(transport.requests, [])
        messages = conversation.messages
        self.assertEqual([m.role for m in messages], ["user", "assistant"])
        self.assertEqual(messages[0].content, "/help")
        self.assertTrue(messages[1].content.startswith("Available commands:\n/help"))
        self.assertEqual(_states(seen), [])

    async def test_custom_command_replies_with_static_response(self) -> None:
        store = MemoryStore()
        CommandTable(store).add(
            Command(name="Greet", description="Say hi", trigger="/greet", response="Hello!")
        )
        transport = FakeTransport()
        conversation = _conversation(transport, store)
        await conversation.submit("/greet friends")
        self.assertEqual(conversation.messages[-1].content, "Hello!")
        self.assertEqual(transport.requests, [])

    async def test_unknown_slash_text_is_sent_to_model(self) -> None:
        transport = FakeTransport(["sure"])
        conversation = _conversation(transport)
        outcome = await conversation.submit("/shrug")
        self.assertIs(outcome, SubmitOutcome.COMPLETED)
        self.assertEqual(transport.requests[0].message, "/shrug")

    async def test_clear_command_empties_history_and_drops_image(self) -> None:
        transport = FakeTransport(["answer"])
        conversation = _conversation(transport)
        await conversation.submit("question")
        seen: list[ConversationEvent] = []
        conversation.events.subscribe(seen.append)

        with self.assertLogs("chat_relay.conversation", level="INFO") as logs:
            outcome = await conversation.submit("/clear", PNG)

        self.assertIs(outcome, SubmitOutcome.CLEARED)
        self.assertEqual(conversation.messages, [])
        self.assertEqual([e.name for e in seen], [HISTORY_CLEARED])
        self.assertEqual(len(transport.requests), 1)
        self.assertTrue(any("conversation.command.image_dropped" in line for line in logs.output))

    async def test_event_log_records_every_mutation_in_order(self) -> None:
        conversation = _conversation(FakeTransport(["a", "b"]))
        await conversation.submit("hi")
        self.assertEqual(
            conversation.events.names(),
            [
                STATE_CHANGED,
                MESSAGE_APPENDED,
                STATE_CHANGED,
                MESSAGE_APPENDED,
                MESSAGE_UPDATED,
                STATE_CHANGED,
            ],
        )
        sequences = [e.sequence for e in conversation.events.events]
        self.assertEqual(sequences, list(range(6)))

        await conversation.clear()
        retained = conversation.events.events
        self.assertEqual([e.name for e in retained], [HISTORY_CLEARED])
        self.assertEqual(retained[0].sequence, 6)

    async def test_long_streams_retain_only_fragments_and_a_bounded_log(self) -> None:
        fragments = ["abcd"] * 300
        conversation = _conversation(
            FakeTransport(fragments), events=EventLog(max_events=50)
        )
        for _ in range(3):
            await conversation.submit("go")

        retained = conversation.events.events
        self.assertEqual(len(retained), 50)
        updates = [e for e in retained if e.name == MESSAGE_UPDATED]
        self.assertTrue(updates)
        self.assertTrue(all(e.data["fragment"] == "abcd" for e in updates))
        self.assertTrue(all("content" not in e.data for e in updates))
        self.assertEqual(conversation.messages[-1].content, "abcd" * 300)

        await conversation.clear()
        self.assertEqual(conversation.events.names(), [HISTORY_CLEARED])


if __name__ == "__main__":
    unittest.main()
