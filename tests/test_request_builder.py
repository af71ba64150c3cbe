"""Tests for boundary request assembly and provider request building."""

from __future__ import annotations

import json
import unittest

from chat_relay.exceptions import RequestValidationError
from chat_relay.models import ChatMessage, ImageAttachment, UserPreferences
from chat_relay.request_builder import (
    ImagePart,
    TextPart,
    build_chat_request,
    build_provider_request,
    decode_chat_request,
    map_role,
    render_preamble,
)

PNG = ImageAttachment(data=b"\x89PNG\r\n", mime_type="image/png", filename="cat.png")


class ChatRequestTests(unittest.TestCase):
    """Validate the client-side multipart payload."""

    def test_history_snapshot_drops_ids_and_images(self) -> None:
        history = [
            ChatMessage(role="user", content="hi", image=PNG),
            ChatMessage(role="assistant", content="hello"),
        ]
        request = build_chat_request(history, "next", None, UserPreferences(name="Ada"))
        self.assertEqual(
            request.history,
            [{"role": "user", "content": "hi"}, {"role": "assistant", "content": "hello"}],
        )
        fields = request.form_fields()
        self.assertEqual(fields["message"], "next")
        self.assertEqual(json.loads(fields["history"]), request.history)
        self.assertEqual(json.loads(fields["userPreferences"])["name"], "Ada")
        self.assertIn("preferredResponseStyle", json.loads(fields["userPreferences"]))
        self.assertEqual(request.files(), {})

    def test_image_becomes_multipart_file(self) -> None:
        request = build_chat_request([], "", PNG, None)
        self.assertEqual(request.files(), {"image": ("cat.png", PNG.data, "image/png")})
        self.assertNotIn("userPreferences", request.form_fields())


class DecodeChatRequestTests(unittest.TestCase):
    """Validate relay-side decoding of form fields."""

    def test_decodes_all_fields(self) -> None:
        request = decode_chat_request(
            "hello",
            json.dumps([{"role": "user", "content": "a"}]),
            json.dumps({"name": "Ada", "interests": ["x"], "preferredResponseStyle": "brief"}),
            PNG,
        )
        self.assertEqual(request.message, "hello")
        self.assertEqual(request.history, [{"role": "user", "content": "a"}])
        assert request.user_preferences is not None
        self.assertEqual(request.user_preferences.preferred_response_style, "brief")
        self.assertIs(request.image, PNG)

    def test_missing_message_and_image_is_rejected(self) -> None:
        for message in (None, "", "   "):
            with self.assertRaises(RequestValidationError):
                decode_chat_request(message)

    def test_image_only_request_is_accepted(self) -> None:
        request = decode_chat_request(None, image=PNG)
        self.assertEqual(request.message, "")
        self.assertIsNone(request.user_preferences)

    def test_malformed_fields_are_rejected(self) -> None:
        bad_inputs = [
            {"history": "{not json"},
            {"history": json.dumps({"role": "user"})},
            {"history": json.dumps([{"role": "user"}])},
            {"history": json.dumps(["text"])},
            {"user_preferences": "{oops"},
            {"user_preferences": json.dumps({"interests": "x"})},
        ]
        for kwargs in bad_inputs:
            with self.assertRaises(RequestValidationError, msg=str(kwargs)):
                decode_chat_request("hi", **kwargs)

    def test_null_preference_fields_fall_back_to_defaults(self) -> None:
        request = decode_chat_request(
            "hi",
            user_preferences=json.dumps(
                {"name": None, "interests": None, "preferredResponseStyle": None}
            ),
        )
        assert request.user_preferences is not None
        self.assertEqual(request.user_preferences.name, "User")
        self.assertEqual(request.user_preferences.interests, [])
        self.assertEqual(
            request.user_preferences.preferred_response_style, "helpful and concise"
        )
        self.assertIn("My name is User", render_preamble(request.user_preferences))

    def test_non_image_upload_is_rejected(self) -> None:
        text_file = ImageAttachment(data=b"x", mime_type="text/plain", filename="a.txt")
        with self.assertRaises(RequestValidationError):
            decode_chat_request("hi", image=text_file)


class ProviderRequestTests(unittest.TestCase):
    """Validate preamble rendering, part order, and role mapping."""

    def test_preamble_renders_preferences(self) -> None:
        preamble = render_preamble(
            UserPreferences(name="Ada", interests=["math", "engines"], preferred_response_style="formal")
        )
        self.assertEqual(
            preamble,
            "Context for this conversation:\n"
            "- My name is Ada\n"
            "- I'm interested in: math, engines\n"
            "- Please respond in a formal manner\n"
            "\n"
            "My message is: ",
        )

    def test_preamble_defaults_for_empty_values(self) -> None:
        preamble = render_preamble(
            UserPreferences(name="", interests=[], preferred_response_style="")
        )
        self.assertIn("My name is User", preamble)
        self.assertIn("interested in: various topics", preamble)
        self.assertIn("respond in a helpful and concise manner", preamble)

    def test_parts_ordered_preamble_text_image(self) -> None:
        request = build_chat_request([], "describe this", PNG, UserPreferences())
        provider_request = build_provider_request(request)
        kinds = [type(part) for part in provider_request.parts]
        self.assertEqual(kinds, [TextPart, TextPart, ImagePart])
        self.assertEqual(provider_request.parts[1], TextPart("describe this"))
        self.assertEqual(provider_request.images, [ImagePart(PNG.data, "image/png")])
        self.assertTrue(provider_request.text.endswith("My message is: describe this"))

    def test_empty_text_part_is_omitted(self) -> None:
        request = build_chat_request([], "  ", PNG, None)
        provider_request = build_provider_request(request)
        self.assertEqual(provider_request.parts, [ImagePart(PNG.data, "image/png")])
        self.assertEqual(provider_request.text, "")

    def test_history_roles_are_mapped(self) -> None:
        self.assertEqual(map_role("user"), "user")
        self.assertEqual(map_role("assistant"), "assistant")
        self.assertEqual(map_role("system"), "assistant")
        request = decode_chat_request(
            "q",
            json.dumps(
                [
                    {"role": "user", "content": "a"},
                    {"role": "model", "content": "b"},
                ]
            ),
        )
        provider_request = build_provider_request(request)
        self.assertEqual(
            [(m.role, m.content) for m in provider_request.history],
            [("user", "a"), ("assistant", "b")],
        )


if __name__ == "__main__":
    unittest.main()
