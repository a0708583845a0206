# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Line framing for the two response-stream conventions the relay emits:
server-sent-event style ``data: {...}`` lines (OpenAI) and newline-delimited
JSON objects (Ollama). Includes the stateful carry-over buffer that turns
arbitrarily split text chunks into complete lines.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Protocol

from chatrelay.models.conversation import Provider, StreamFrame

logger = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data: "
SSE_DONE_SENTINEL = "[DONE]"


class LineBuffer:
    """Stateful splitter that keeps the trailing partial line between feeds."""

    def __init__(self):
        self.tail = ""

    def feed(self, text: str) -> List[str]:
        """Append text and return every line that is now complete."""
        parts = (self.tail + text).split("\n")
        self.tail = parts.pop()
        return parts

    def flush(self) -> List[str]:
        """Return the remaining partial line (if any) and clear the buffer."""
        rest, self.tail = self.tail, ""
        return [rest] if rest else []


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except ValueError:
        logger.debug("Skipping malformed stream line: %r", text[:200])
        return None


def _content_at(obj: Any, *path: Any) -> str | None:
    """Walk dict keys / list indexes; return a non-empty string or None."""
    cur = obj
    for key in path:
        if isinstance(key, int):
            if not isinstance(cur, list) or len(cur) <= key:
                return None
        elif not isinstance(cur, dict):
            return None
        cur = cur[key] if isinstance(key, int) else cur.get(key)
    if isinstance(cur, str) and cur:
        return cur
    return None


class FrameParser(Protocol):
    """Extracts one content fragment (or a stream-end marker) from a line."""

    provider: Provider

    def parse_line(self, line: str) -> StreamFrame | None: ...


class OpenAIFrameParser:
    """``data: {"choices":[{"delta":{"content": ...}}]}`` lines, ended by ``data: [DONE]``."""

    provider = Provider.OPENAI

    def parse_line(self, line: str) -> StreamFrame | None:
        if not line.startswith(SSE_DATA_PREFIX):
            return None
        data = line[len(SSE_DATA_PREFIX) :]
        if data == SSE_DONE_SENTINEL:
            return StreamFrame(done=True)
        content = _content_at(_loads(data), "choices", 0, "delta", "content")
        if content is None:
            return None
        return StreamFrame(content=content)


class OllamaFrameParser:
    """One ``{"message":{"content": ...}}`` object per line; the transport closing ends the stream."""

    provider = Provider.OLLAMA

    def parse_line(self, line: str) -> StreamFrame | None:
        content = _content_at(_loads(line), "message", "content")
        if content is None:
            return None
        return StreamFrame(content=content)


_PARSERS: Dict[Provider, type] = {
    Provider.OPENAI: OpenAIFrameParser,
    Provider.OLLAMA: OllamaFrameParser,
}


def get_frame_parser(provider: Provider | str) -> FrameParser:
    """Return a parser for the provider; raises ValueError for unknown names."""
    return _PARSERS[Provider(provider)]()


def encode_sse_delta(content: str) -> str:
    """Frame one content fragment the way OpenAIFrameParser expects it."""
    payload = {"choices": [{"delta": {"content": content}}]}
    return f"{SSE_DATA_PREFIX}{json.dumps(payload)}\n\n"


def encode_sse_done() -> str:
    return f"{SSE_DATA_PREFIX}{SSE_DONE_SENTINEL}\n\n"
