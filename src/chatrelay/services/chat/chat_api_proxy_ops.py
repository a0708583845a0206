# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Defines the chat api proxy ops unit so this responsibility stays isolated, testable, and easy to evolve.

Server half of the chat endpoint. Validates the client body, forwards it to
the hosted OpenAI-compatible API or to a local Ollama server, and answers
with a stream the client-side FrameParsers understand:

- openai: upstream SSE deltas are re-framed as
  ``data: {"choices":[{"delta":{"content": ...}}]}`` and closed by ``data: [DONE]``.
- ollama: the decoded upstream NDJSON body is passed through unchanged.

With ``stream: false`` a single ``{"message": {"content": ...}}`` object is
returned instead.
"""

from __future__ import annotations

import json as _json
from typing import Any, AsyncIterator, Dict, Tuple

import httpx
from fastapi.responses import JSONResponse, StreamingResponse

from chatrelay.core.config import (
    load_machine_config,
    resolve_ollama_settings,
    resolve_openai_settings,
)
from chatrelay.models.conversation import Provider
from chatrelay.services.exceptions import (
    BadRequestError,
    ServiceUnavailableError,
    UnauthorizedError,
    UpstreamError,
)
from chatrelay.services.llm.llm_logging import (
    add_llm_log,
    create_log_entry,
    finish_log_entry,
)
from chatrelay.utils.stream_helpers import (
    LineBuffer,
    OllamaFrameParser,
    OpenAIFrameParser,
    encode_sse_delta,
    encode_sse_done,
)

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
}
ALLOWED_ROLES = {"system", "user", "assistant"}
INVALID_BODY = "Invalid request body: model, messages, and provider are required"


def build_upstream_client(timeout_s: float) -> httpx.AsyncClient:
    """HTTP client for upstream model servers; tests replace this factory."""
    return httpx.AsyncClient(timeout=httpx.Timeout(float(timeout_s)))


def normalize_chat_messages(val: Any) -> list[dict]:
    """Keep role and content of each message; unknown roles become user."""
    out: list[dict] = []
    for m in val if isinstance(val, list) else []:
        if not isinstance(m, dict):
            continue
        role = str(m.get("role", "")).strip().lower()
        if role not in ALLOWED_ROLES:
            role = "user"
        content = m.get("content")
        out.append({"role": role, "content": "" if content is None else str(content)})
    return out


def validate_chat_payload(payload: Any) -> Tuple[str, list[dict], bool, Provider]:
    """Return (model, messages, stream, provider) or raise BadRequestError."""
    if not isinstance(payload, dict):
        raise BadRequestError(INVALID_BODY)
    model = payload.get("model")
    messages = payload.get("messages")
    provider = payload.get("provider")
    if not (isinstance(model, str) and model.strip()):
        raise BadRequestError(INVALID_BODY)
    if not isinstance(messages, list) or not provider:
        raise BadRequestError(INVALID_BODY)
    try:
        provider_enum = Provider(provider)
    except ValueError:
        raise BadRequestError(f"Invalid provider: {provider}")
    stream = payload.get("stream", True) is not False
    return model, normalize_chat_messages(messages), stream, provider_enum


async def relay_chat(payload: Any) -> StreamingResponse | JSONResponse:
    """Forward one chat request to the provider named in the payload."""
    model, messages, stream, provider = validate_chat_payload(payload)
    machine = load_machine_config()
    if provider is Provider.OPENAI:
        return await _relay_openai(machine, model, messages, stream)
    return await _relay_ollama(machine, model, messages, stream)


def _upstream_error_text(resp: httpx.Response) -> str:
    try:
        data = resp.json()
    except ValueError:
        return resp.text or resp.reason_phrase
    err = data.get("error") if isinstance(data, dict) else None
    if isinstance(err, dict):
        return str(err.get("message") or err)
    return str(err or data)


async def _open_stream(
    client: httpx.AsyncClient, url: str, headers: Dict[str, str], body: dict
) -> httpx.Response:
    request = client.build_request("POST", url, headers=headers, json=body)
    return await client.send(request, stream=True)


async def _close(client: httpx.AsyncClient, resp: httpx.Response | None) -> None:
    if resp is not None:
        await resp.aclose()
    await client.aclose()


async def _relay_openai(
    machine: dict, model: str, messages: list[dict], stream: bool
) -> StreamingResponse | JSONResponse:
    base_url, api_key, timeout_s = resolve_openai_settings(machine)
    url = base_url.rstrip("/") + "/chat/completions"
    headers = {"Content-Type": "application/json", "Authorization": f"Bearer {api_key}"}
    body: Dict[str, Any] = {"model": model, "messages": messages, "stream": stream}

    log_entry = create_log_entry(url, "POST", headers, body, streaming=stream)
    add_llm_log(log_entry)

    client = build_upstream_client(timeout_s)
    resp: httpx.Response | None = None
    try:
        resp = await _open_stream(client, url, headers, body)
        log_entry["response"]["status_code"] = resp.status_code
        if resp.status_code >= 400:
            await resp.aread()
            detail = _upstream_error_text(resp)
            finish_log_entry(log_entry, error=detail)
            if resp.status_code == 401:
                raise UnauthorizedError("Invalid OpenAI API key")
            raise UpstreamError(f"OpenAI error: {detail}")
        if not stream:
            data = _json_body(await resp.aread())
            finish_log_entry(log_entry, body=data)
            content = _completion_content(data)
            await _close(client, resp)
            return JSONResponse({"message": {"role": "assistant", "content": content}})
    except httpx.HTTPError as exc:
        await _close(client, resp)
        finish_log_entry(log_entry, error=str(exc))
        raise UpstreamError(f"OpenAI request failed: {exc}") from exc
    except Exception:
        await _close(client, resp)
        raise

    async def _events() -> AsyncIterator[str]:
        parser = OpenAIFrameParser()
        try:
            async for line in resp.aiter_lines():
                frame = parser.parse_line(line.rstrip("\r"))
                if frame is None:
                    continue
                if frame.done:
                    break
                log_entry["response"]["full_content"] += frame.content
                yield encode_sse_delta(frame.content)
            yield encode_sse_done()
        except httpx.HTTPError as exc:
            log_entry["response"]["error"] = str(exc)
            raise
        finally:
            await _close(client, resp)
            finish_log_entry(log_entry)

    return StreamingResponse(
        _events(), media_type="text/event-stream", headers=STREAM_HEADERS
    )


async def _relay_ollama(
    machine: dict, model: str, messages: list[dict], stream: bool
) -> StreamingResponse | JSONResponse:
    host, timeout_s = resolve_ollama_settings(machine)
    url = host.rstrip("/") + "/api/chat"
    headers = {"Content-Type": "application/json"}
    body: Dict[str, Any] = {"model": model, "messages": messages, "stream": stream}

    log_entry = create_log_entry(url, "POST", headers, body, streaming=stream)
    add_llm_log(log_entry)

    client = build_upstream_client(timeout_s)
    resp: httpx.Response | None = None
    try:
        resp = await _open_stream(client, url, headers, body)
        log_entry["response"]["status_code"] = resp.status_code
        if resp.status_code >= 400:
            await resp.aread()
            detail = f"Ollama error: {resp.status_code} {resp.reason_phrase}"
            finish_log_entry(log_entry, error=detail)
            raise ServiceUnavailableError(detail)
        if not stream:
            data = _json_body(await resp.aread())
            finish_log_entry(log_entry, body=data)
            await _close(client, resp)
            return JSONResponse(data)
    except httpx.HTTPError as exc:
        await _close(client, resp)
        finish_log_entry(log_entry, error=str(exc))
        raise ServiceUnavailableError(f"Ollama service unavailable: {exc}") from exc
    except Exception:
        await _close(client, resp)
        raise

    async def _passthrough() -> AsyncIterator[bytes]:
        parser = OllamaFrameParser()
        lines = LineBuffer()
        try:
            async for chunk in resp.aiter_bytes():
                for line in lines.feed(chunk.decode("utf-8", errors="ignore")):
                    frame = parser.parse_line(line)
                    if frame is not None and frame.content:
                        log_entry["response"]["full_content"] += frame.content
                yield chunk
        except httpx.HTTPError as exc:
            log_entry["response"]["error"] = str(exc)
            raise
        finally:
            await _close(client, resp)
            finish_log_entry(log_entry)

    return StreamingResponse(
        _passthrough(), media_type="text/event-stream", headers=STREAM_HEADERS
    )


def _json_body(raw: bytes) -> dict:
    try:
        data = _json.loads(raw)
    except ValueError as exc:
        raise UpstreamError(f"Upstream returned invalid JSON: {exc}") from exc
    return data if isinstance(data, dict) else {}


def _completion_content(data: dict) -> str:
    """``choices[0].message.content`` of a non-streamed completion body."""
    choices = data.get("choices") or [{}]
    first = choices[0] if isinstance(choices, list) else None
    message = first.get("message") if isinstance(first, dict) else None
    if not isinstance(first, dict) or not isinstance(message, (dict, type(None))):
        raise UpstreamError("OpenAI error: unexpected completion body")
    content = (message or {}).get("content")
    return content if isinstance(content, str) else ""
