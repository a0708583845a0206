# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Turns a raw response byte stream into the growing text of one assistant
message. Bytes are decoded incrementally, split into lines with a carry-over
buffer and handed to the provider's FrameParser; every extracted fragment is
appended to the running text, written into the placeholder message and
published. Malformed lines are skipped. A failure while reading or decoding
finalizes the message with an ``Error:`` text.

Per request the assembler walks ``idle -> sending -> streaming -> completed |
errored`` (``sending -> completed`` for a non-streamed body). Terminal states
are final: feeding or finalizing again changes nothing.
"""

from __future__ import annotations

import codecs
from enum import Enum
from typing import AsyncIterable, Callable, Optional

from chatrelay.models.conversation import ConversationMessage
from chatrelay.utils.stream_helpers import FrameParser, LineBuffer

NO_RESPONSE_TEXT = "No response received"
ERROR_PREFIX = "Error: "

PublishCallback = Callable[[ConversationMessage], None]


class StreamState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERRORED = "errored"


TERMINAL_STATES = frozenset({StreamState.COMPLETED, StreamState.ERRORED})

_TRANSITIONS = {
    StreamState.IDLE: {StreamState.SENDING, StreamState.ERRORED},
    StreamState.SENDING: {
        StreamState.STREAMING,
        StreamState.COMPLETED,
        StreamState.ERRORED,
    },
    StreamState.STREAMING: {StreamState.COMPLETED, StreamState.ERRORED},
    StreamState.COMPLETED: set(),
    StreamState.ERRORED: set(),
}


class StreamStateError(RuntimeError):
    """Raised on a transition the request lifecycle does not allow."""


def format_error(reason: object) -> str:
    if isinstance(reason, BaseException):
        reason = str(reason) or reason.__class__.__name__
    return f"{ERROR_PREFIX}{reason}"


class StreamAssembler:
    """Owns the placeholder message for the duration of one request."""

    def __init__(
        self,
        message: ConversationMessage,
        parser: FrameParser,
        publish: Optional[PublishCallback] = None,
        fallback_text: str = NO_RESPONSE_TEXT,
    ):
        self.message = message
        self.parser = parser
        self.publish = publish
        self.fallback_text = fallback_text
        self.state = StreamState.IDLE
        self.text = ""
        self.fragments = 0
        self._lines = LineBuffer()
        self._decoder = codecs.getincrementaldecoder("utf-8")()

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def _transition(self, new_state: StreamState) -> None:
        if new_state not in _TRANSITIONS[self.state]:
            raise StreamStateError(
                f"cannot move from {self.state.value} to {new_state.value}"
            )
        self.state = new_state

    def _publish(self) -> None:
        if self.publish is not None:
            self.publish(self.message)

    def mark_sending(self) -> None:
        self._transition(StreamState.SENDING)

    def begin_streaming(self) -> None:
        """Response headers confirmed an event stream."""
        if self.state is StreamState.IDLE:
            self._transition(StreamState.SENDING)
        self._transition(StreamState.STREAMING)

    def _process_lines(self, lines: list[str]) -> int:
        added = 0
        for line in lines:
            line = line.rstrip("\r")
            if not line.strip():
                continue
            frame = self.parser.parse_line(line)
            if frame is None:
                continue
            if frame.done:
                # End marker: the rest of this chunk carries nothing for us.
                break
            if frame.content:
                self.text += frame.content
                self.fragments += 1
                added += 1
                self.message.replace_text(self.text)
                self._publish()
        return added

    def feed(self, chunk: bytes | str) -> int:
        """Process one chunk of the body; returns the number of fragments appended."""
        if self.finished:
            return 0
        if self.state is not StreamState.STREAMING:
            self.begin_streaming()
        if isinstance(chunk, bytes):
            chunk = self._decoder.decode(chunk)
        return self._process_lines(self._lines.feed(chunk))

    def complete(self) -> ConversationMessage:
        """End of stream: finalize with the accumulated text or the fallback."""
        if self.finished:
            return self.message
        if self.state is not StreamState.STREAMING:
            self.begin_streaming()
        tail = self._decoder.decode(b"", final=True)
        self._process_lines(self._lines.feed(tail) + self._lines.flush())
        self._transition(StreamState.COMPLETED)
        self.message.finalize(self.text if self.fragments else self.fallback_text)
        self._publish()
        return self.message

    def complete_with(self, content: str | None) -> ConversationMessage:
        """Non-streamed body: replace the placeholder text exactly once.

        ``None`` leaves the placeholder text as it is.
        """
        if self.finished:
            return self.message
        if self.state is StreamState.IDLE:
            self._transition(StreamState.SENDING)
        self._transition(StreamState.COMPLETED)
        if content is not None:
            self.text = content
        self.message.finalize(content)
        self._publish()
        return self.message

    def fail(self, reason: object) -> ConversationMessage:
        """Finalize the message with an ``Error:`` text built from reason."""
        if self.finished:
            return self.message
        self._transition(StreamState.ERRORED)
        self.message.finalize(format_error(reason))
        self._publish()
        return self.message

    async def consume(self, chunks: AsyncIterable[bytes]) -> ConversationMessage:
        """Read the body until it ends or fails, then finalize."""
        if self.finished:
            return self.message
        if self.state is not StreamState.STREAMING:
            self.begin_streaming()
        try:
            async for chunk in chunks:
                if self.finished:
                    break
                self.feed(chunk)
            return self.complete()
        except Exception as e:
            return self.fail(e)
