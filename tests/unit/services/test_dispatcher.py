# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

import json
import unittest

import httpx

from chatrelay.models.conversation import (
    ConversationHistory,
    ConversationMessage,
    Provider,
    Sender,
)
from chatrelay.services.chat.dispatcher import ChatDispatcher

ENDPOINT = "http://relay.test/api/v1/chat"
SSE_HEADERS = {"content-type": "text/event-stream"}


async def stream_of(chunks):
    for chunk in chunks:
        yield chunk.encode("utf-8")


class RecordingHandler:
    """MockTransport handler that records requests and returns a canned response."""

    def __init__(self, make_response):
        self.make_response = make_response
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.make_response(request)

    @property
    def last_body(self):
        return json.loads(self.requests[-1].content)


class TestChatDispatcher(unittest.IsolatedAsyncioTestCase):
    def make_dispatcher(self, handler, **kwargs):
        return ChatDispatcher(
            ENDPOINT,
            system_prompt="Be brief.",
            transport=httpx.MockTransport(handler),
            **kwargs,
        )

    async def test_streams_openai_reply_into_placeholder(self):
        handler = RecordingHandler(
            lambda r: httpx.Response(
                200,
                headers=SSE_HEADERS,
                content=stream_of(
                    [
                        'data: {"choices":[{"delta":{"content":"Hel"}}]}\n',
                        'data: {"choices":[{"delta":{"content":"lo"}}]}\n',
                        "data: [DONE]\n",
                    ]
                ),
            )
        )
        history = ConversationHistory()
        snapshots = []

        reply = await self.make_dispatcher(handler).send(
            "  hi  ",
            history,
            provider=Provider.OPENAI,
            model="gpt-test",
            publish=lambda h: snapshots.append([m.text for m in h]),
        )

        self.assertEqual(reply.text, "Hello")
        self.assertTrue(reply.finalized)
        self.assertIs(history[-1], reply)
        self.assertEqual(reply.source_provider, Provider.OPENAI)
        self.assertEqual(reply.source_model, "gpt-test")
        # user message, placeholder, two fragments, finalization
        self.assertEqual(
            snapshots,
            [["hi"], ["hi", ""], ["hi", "Hel"], ["hi", "Hello"], ["hi", "Hello"]],
        )

    async def test_request_body_shape(self):
        handler = RecordingHandler(
            lambda r: httpx.Response(
                200, headers=SSE_HEADERS, content=b'{"message":{"content":"ok"}}\n'
            )
        )
        history = ConversationHistory()
        history.append(ConversationMessage.user("earlier question"))
        earlier = ConversationMessage.placeholder(Provider.OLLAMA, "llama3")
        earlier.finalize("earlier answer")
        history.append(earlier)

        await self.make_dispatcher(handler).send(
            "next question", history, provider="ollama", model="llama3"
        )

        self.assertEqual(handler.requests[-1].method, "POST")
        self.assertEqual(str(handler.requests[-1].url), ENDPOINT)
        self.assertEqual(
            handler.last_body,
            {
                "model": "llama3",
                "messages": [
                    {"role": "system", "content": "Be brief."},
                    {"role": "user", "content": "earlier question"},
                    {"role": "assistant", "content": "earlier answer"},
                    {"role": "user", "content": "next question"},
                ],
                "stream": True,
                "provider": "ollama",
            },
        )
        self.assertEqual(history[-1].text, "ok")
        # Earlier history is untouched.
        self.assertEqual(history[1].text, "earlier answer")

    async def test_blank_input_is_a_no_op(self):
        handler = RecordingHandler(lambda r: httpx.Response(500))
        history = ConversationHistory()
        result = await self.make_dispatcher(handler).send(
            "   \n\t", history, provider=Provider.OPENAI, model="m"
        )
        self.assertIsNone(result)
        self.assertEqual(len(history), 0)
        self.assertEqual(handler.requests, [])

    async def test_http_error_uses_error_field(self):
        handler = RecordingHandler(
            lambda r: httpx.Response(503, json={"error": "unavailable"})
        )
        history = ConversationHistory()
        reply = await self.make_dispatcher(handler).send(
            "hello", history, provider=Provider.OLLAMA, model="llama3"
        )
        self.assertTrue(reply.text.startswith("Error:"))
        self.assertIn("unavailable", reply.text)
        self.assertTrue(reply.finalized)
        self.assertEqual([m.sender for m in history], [Sender.USER, Sender.ASSISTANT])

    async def test_http_error_without_json_body_uses_generic_reason(self):
        handler = RecordingHandler(lambda r: httpx.Response(500, text="<html>"))
        reply = await self.make_dispatcher(handler).send(
            "hello", ConversationHistory(), provider=Provider.OLLAMA, model="m"
        )
        self.assertEqual(reply.text, "Error: HTTP error! status: 500")

    async def test_non_stream_response_replaces_placeholder(self):
        handler = RecordingHandler(
            lambda r: httpx.Response(
                200, json={"message": {"role": "assistant", "content": "All at once"}}
            )
        )
        snapshots = []
        reply = await self.make_dispatcher(handler).send(
            "hello",
            ConversationHistory(),
            provider=Provider.OLLAMA,
            model="m",
            publish=lambda h: snapshots.append(h[-1].text),
        )
        self.assertEqual(reply.text, "All at once")
        self.assertEqual(snapshots, ["hello", "", "All at once"])

    async def test_non_stream_response_without_content_is_silent(self):
        # The placeholder stays empty and no error is surfaced.
        handler = RecordingHandler(lambda r: httpx.Response(200, json={"done": True}))
        reply = await self.make_dispatcher(handler).send(
            "hello", ConversationHistory(), provider=Provider.OLLAMA, model="m"
        )
        self.assertEqual(reply.text, "")
        self.assertTrue(reply.finalized)

    async def test_connection_failure_becomes_error_text(self):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        reply = await self.make_dispatcher(refuse).send(
            "hello", ConversationHistory(), provider=Provider.OPENAI, model="m"
        )
        self.assertEqual(reply.text, "Error: connection refused")

    async def test_wrap_code_input(self):
        handler = RecordingHandler(
            lambda r: httpx.Response(
                200, headers=SSE_HEADERS, content=b'{"message":{"content":"ok"}}\n'
            )
        )
        history = ConversationHistory()
        await self.make_dispatcher(handler, wrap_code_input=True).send(
            "const x = 1;", history, provider=Provider.OLLAMA, model="m"
        )
        self.assertEqual(history[0].text, "```javascript\nconst x = 1;\n```")

    async def test_each_send_gets_its_own_placeholder(self):
        replies = iter(["first", "second"])
        handler = RecordingHandler(
            lambda r: httpx.Response(
                200,
                headers=SSE_HEADERS,
                content=json.dumps({"message": {"content": next(replies)}}).encode()
                + b"\n",
            )
        )
        dispatcher = self.make_dispatcher(handler)
        history = ConversationHistory()
        first = await dispatcher.send("a", history, provider="ollama", model="m")
        second = await dispatcher.send("b", history, provider="ollama", model="m")
        self.assertEqual([m.text for m in history], ["a", "first", "b", "second"])
        self.assertIsNot(first, second)
        self.assertEqual(
            handler.last_body["messages"][-1], {"role": "user", "content": "b"}
        )

    async def test_undeclared_content_type_is_read_as_stream(self):
        handler = RecordingHandler(
            lambda r: httpx.Response(
                200,
                content=stream_of(
                    ['{"message":{"content":"Hi"}}\n', '{"message":{"content":" there"}}\n']
                ),
            )
        )
        reply = await self.make_dispatcher(handler).send(
            "hello", ConversationHistory(), provider=Provider.OLLAMA, model="m"
        )
        self.assertEqual(reply.text, "Hi there")

    async def test_redirect_is_reported_as_http_error(self):
        handler = RecordingHandler(
            lambda r: httpx.Response(
                307, headers={"location": ENDPOINT + "/"}, content=b""
            )
        )
        reply = await self.make_dispatcher(handler).send(
            "hello", ConversationHistory(), provider=Provider.OLLAMA, model="m"
        )
        self.assertEqual(reply.text, "Error: HTTP error! status: 307")
        self.assertEqual(len(handler.requests), 1)
