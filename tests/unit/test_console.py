# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

import io
import json
from unittest import IsolatedAsyncioTestCase, TestCase
from unittest.mock import patch

import httpx

from chatrelay.console import StreamPrinter, build_arg_parser, run_console
from chatrelay.models.conversation import (
    ConversationHistory,
    ConversationMessage,
    Provider,
)
from chatrelay.services.chat.dispatcher import ChatDispatcher

DEFAULTS = {
    "provider": "ollama",
    "model": "llama3",
    "ask_endpoint": "/api/v1/chat",
    "system_prompt": "Be brief.",
}


class StreamPrinterTest(TestCase):
    def setUp(self):
        self.out = io.StringIO()
        self.printer = StreamPrinter(self.out)
        self.history = ConversationHistory()
        self.history.append(ConversationMessage.user("hi"))

    def test_prints_only_new_suffix(self):
        self.printer(self.history)
        reply = self.history.append(ConversationMessage.placeholder(Provider.OLLAMA, "m"))
        self.printer(self.history)
        for text in ["Hel", "Hello", "Hello!"]:
            reply.replace_text(text)
            self.printer(self.history)
        reply.finalize()
        self.printer(self.history)
        self.assertEqual(self.out.getvalue(), "Hello!")

    def test_error_after_partial_text_starts_a_new_line(self):
        reply = self.history.append(ConversationMessage.placeholder(Provider.OLLAMA, "m"))
        reply.replace_text("Part")
        self.printer(self.history)
        reply.finalize("Error: connection reset")
        self.printer(self.history)
        self.assertEqual(self.out.getvalue(), "Part\nError: connection reset")

    def test_whole_reply_is_markdown_preprocessed(self):
        reply = self.history.append(ConversationMessage.placeholder(Provider.OLLAMA, "m"))
        reply.finalize("Run ```make``` now")
        self.printer(self.history)
        self.assertEqual(self.out.getvalue(), "Run `make` now")

    def test_streamed_fence_is_rendered_once_closed(self):
        reply = self.history.append(ConversationMessage.placeholder(Provider.OLLAMA, "m"))
        for text in ["Run ```ma", "Run ```make``", "Run ```make``` now"]:
            reply.replace_text(text)
            self.printer(self.history)
        self.assertEqual(self.out.getvalue(), "Run `make` now")
        reply.finalize()
        self.printer(self.history)
        self.assertEqual(self.out.getvalue(), "Run `make` now")

    def test_reset_between_turns(self):
        reply = self.history.append(ConversationMessage.placeholder(Provider.OLLAMA, "m"))
        reply.replace_text("one")
        self.printer(self.history)
        self.printer.reset()
        self.assertEqual(self.printer.shown, "")


class ArgParserTest(TestCase):
    def test_relative_endpoint_is_resolved_against_local_server(self):
        args = build_arg_parser(DEFAULTS).parse_args([])
        self.assertEqual(args.endpoint, "http://127.0.0.1:8000/api/v1/chat")
        self.assertEqual(args.provider, "ollama")
        self.assertIsNone(args.model)
        self.assertFalse(args.wrap_code)

    def test_absolute_endpoint_and_flags(self):
        defaults = dict(DEFAULTS, ask_endpoint="https://relay.example/api/v1/chat")
        args = build_arg_parser(defaults).parse_args(
            ["--provider", "openai", "--model", "gpt-4o", "--wrap-code"]
        )
        self.assertEqual(args.endpoint, "https://relay.example/api/v1/chat")
        self.assertEqual(args.provider, "openai")
        self.assertEqual(args.model, "gpt-4o")
        self.assertTrue(args.wrap_code)


class RunConsoleTest(IsolatedAsyncioTestCase):
    async def test_one_turn_then_quit(self):
        def respond(request):
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                content=b'{"message":{"content":"Hi"}}\n{"message":{"content":"!"}}\n',
            )

        dispatcher = ChatDispatcher(
            "http://relay.test/api/v1/chat", transport=httpx.MockTransport(respond)
        )
        out = io.StringIO()
        with patch("builtins.input", side_effect=["hello", "   ", "/quit"]):
            history = await run_console(dispatcher, Provider.OLLAMA, "llama3", out)

        self.assertEqual([m.text for m in history], ["hello", "Hi!"])
        self.assertEqual(out.getvalue(), "assistant> Hi!\n")

    async def test_end_of_input_stops(self):
        dispatcher = ChatDispatcher("http://relay.test/api/v1/chat")
        with patch("builtins.input", side_effect=EOFError):
            history = await run_console(
                dispatcher, Provider.OLLAMA, "llama3", io.StringIO()
            )
        self.assertEqual(len(history), 0)

    async def test_provider_command_switches_backend(self):
        bodies = []

        def respond(request):
            bodies.append(json.loads(request.content))
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                content=b'data: {"choices":[{"delta":{"content":"ok"}}]}\n',
            )

        dispatcher = ChatDispatcher(
            "http://relay.test/api/v1/chat", transport=httpx.MockTransport(respond)
        )
        out = io.StringIO()
        inputs = ["/provider openai", "hi", "/provider nope", "/quit"]
        with patch("builtins.input", side_effect=inputs):
            history = await run_console(
                dispatcher,
                Provider.OLLAMA,
                "llama3",
                out,
                models={"ollama": "llama3", "openai": "gpt-4o"},
            )

        self.assertEqual(bodies[0]["provider"], "openai")
        self.assertEqual(bodies[0]["model"], "gpt-4o")
        self.assertEqual(history[-1].text, "ok")
        self.assertIn("provider: openai (model: gpt-4o)\n", out.getvalue())
        self.assertIn("unknown provider, choose one of: openai, ollama\n", out.getvalue())
