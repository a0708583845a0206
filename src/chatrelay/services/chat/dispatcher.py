# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Client side of a chat turn: records the user message and an empty assistant
placeholder in the conversation, posts the request to the relay endpoint and
lets a StreamAssembler fill the placeholder from the response.
"""

from __future__ import annotations

import json as _json
import logging
from typing import Any, Callable, Optional

import httpx

from chatrelay.core.prompts import DEFAULT_SYSTEM_PROMPT
from chatrelay.models.conversation import (
    ConversationHistory,
    ConversationMessage,
    Provider,
)
from chatrelay.services.chat.stream_assembler import StreamAssembler
from chatrelay.utils.stream_helpers import get_frame_parser
from chatrelay.utils.text_formatting import format_user_input

logger = logging.getLogger(__name__)

EVENT_STREAM = "text/event-stream"

HistoryCallback = Callable[[ConversationHistory], None]


class DispatchError(Exception):
    """The relay answered with a non-success status."""

    def __init__(self, reason: str, status_code: int):
        super().__init__(reason)
        self.status_code = status_code


def _error_reason(raw: bytes, status_code: int) -> str:
    try:
        data: Any = _json.loads(raw)
    except ValueError:
        data = None
    if isinstance(data, dict):
        reason = data.get("error") or data.get("detail")
        if isinstance(reason, str) and reason:
            return reason
    return f"HTTP error! status: {status_code}"


def _message_content(data: Any) -> str | None:
    message = data.get("message") if isinstance(data, dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    return content if isinstance(content, str) and content else None


class ChatDispatcher:
    """Sends chat turns to one relay endpoint.

    ``timeout_s=None`` waits for the stream indefinitely; a send runs until the
    stream ends or the connection fails. ``transport`` is handed to
    ``httpx.AsyncClient`` (tests pass an ``httpx.MockTransport``).
    """

    def __init__(
        self,
        endpoint: str,
        *,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT,
        timeout_s: float | None = None,
        wrap_code_input: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.endpoint = endpoint
        self.system_prompt = system_prompt
        self.timeout_s = timeout_s
        self.wrap_code_input = wrap_code_input
        self.transport = transport

    def build_request_body(
        self,
        history: ConversationHistory,
        *,
        provider: Provider,
        model: str,
        exclude: ConversationMessage | None = None,
    ) -> dict:
        return {
            "model": model,
            "messages": history.to_wire(self.system_prompt, exclude=exclude),
            "stream": True,
            "provider": provider.value,
        }

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_s), transport=self.transport
        )

    async def send(
        self,
        text: str,
        history: ConversationHistory,
        *,
        provider: Provider | str,
        model: str,
        publish: Optional[HistoryCallback] = None,
    ) -> ConversationMessage | None:
        """Run one request/response cycle; returns the finalized assistant message.

        Whitespace-only text is ignored and returns None without a request.
        """
        content = text.strip()
        if not content:
            return None
        if self.wrap_code_input:
            content = format_user_input(content)
        provider = Provider(provider)

        def republish(_message: ConversationMessage | None = None) -> None:
            if publish is not None:
                publish(history)

        history.append(ConversationMessage.user(content))
        republish()
        placeholder = history.append(ConversationMessage.placeholder(provider, model))
        republish()

        assembler = StreamAssembler(
            placeholder, get_frame_parser(provider), publish=republish
        )
        body = self.build_request_body(
            history, provider=provider, model=model, exclude=placeholder
        )
        assembler.mark_sending()

        try:
            async with self._client() as client:
                async with client.stream("POST", self.endpoint, json=body) as resp:
                    if not resp.is_success:
                        raw = await resp.aread()
                        raise DispatchError(
                            _error_reason(raw, resp.status_code), resp.status_code
                        )

                    content_type = resp.headers.get("content-type", "")
                    # An undeclared type is read as a stream.
                    if content_type and EVENT_STREAM not in content_type:
                        data = _json.loads(await resp.aread())
                        # A body without message.content leaves the placeholder empty.
                        return assembler.complete_with(_message_content(data))

                    assembler.begin_streaming()
                    return await assembler.consume(resp.aiter_bytes())
        except Exception as e:
            logger.warning("Chat request to %s failed: %s", self.endpoint, e)
            return assembler.fail(e)
