# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Defines the chat unit so this responsibility stays isolated, testable, and easy to evolve.

API endpoints for relaying chat turns to the configured model backends.
"""

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, StreamingResponse

from chatrelay.api.v1.http_responses import read_json_body
from chatrelay.core.config import (
    load_machine_config,
    resolve_chat_defaults,
    resolve_default_model,
)
from chatrelay.models.chat import ChatInitialStateResponse
from chatrelay.models.conversation import Provider
from chatrelay.services.chat.chat_api_proxy_ops import relay_chat

router = APIRouter(tags=["Chat"])


@router.get("/chat", response_model=ChatInitialStateResponse)
async def api_get_chat() -> ChatInitialStateResponse:
    """Return initial state for a chat view: providers and current selection."""
    machine = load_machine_config()
    defaults = resolve_chat_defaults(machine)
    return ChatInitialStateResponse(
        providers=[p.value for p in Provider],
        current_provider=defaults["provider"],
        current_model=resolve_default_model(machine, defaults["provider"]),
        ask_endpoint=defaults["ask_endpoint"],
    )


@router.post("/chat", response_model=None)
async def api_chat(request: Request) -> StreamingResponse | JSONResponse:
    """Relay a chat turn to OpenAI or Ollama.

    Body JSON:
      {
        "model": str,
        "messages": [{"role": "system|user|assistant", "content": str}, ...],
        "stream": bool (default true),
        "provider": "openai" | "ollama"
      }

    Returns: ``text/event-stream`` framed per provider, or with ``stream: false``
    a single ``{"message": {"content": str}}`` object.
    """
    payload = await read_json_body(request)
    return await relay_chat(payload)
