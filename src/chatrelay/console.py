# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Interactive terminal chat against a running relay. Assistant text is printed
as it streams in; the next prompt appears only after the turn has finished.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Optional, TextIO

from chatrelay.core.config import (
    load_machine_config,
    resolve_chat_defaults,
    resolve_default_model,
)
from chatrelay.models.conversation import ConversationHistory, Provider, Sender
from chatrelay.services.chat.dispatcher import ChatDispatcher
from chatrelay.utils.text_formatting import FENCE, preprocess_markdown

DEFAULT_SERVER = "http://127.0.0.1:8000"


class StreamPrinter:
    """Publish callback that prints only the not-yet-printed suffix of the reply."""

    def __init__(self, out: TextIO = sys.stdout):
        self.out = out
        self.shown = ""

    def reset(self) -> None:
        self.shown = ""

    def __call__(self, history: ConversationHistory) -> None:
        last = history.last
        if last is None or last.sender is not Sender.ASSISTANT:
            return
        text = preprocess_markdown(last.text)
        if not last.finalized and text.count(FENCE) % 2:
            # Hold back an open fence until its closing marker decides how it renders.
            text = text[: text.rfind(FENCE)]
        if text.startswith(self.shown):
            self.out.write(text[len(self.shown) :])
        else:
            # Stream failed part way; the error text replaces the partial reply.
            self.out.write("\n" + text)
        self.out.flush()
        self.shown = text


def build_arg_parser(defaults: dict) -> argparse.ArgumentParser:
    endpoint = defaults["ask_endpoint"]
    if not endpoint.startswith(("http://", "https://")):
        endpoint = DEFAULT_SERVER + endpoint
    parser = argparse.ArgumentParser(
        prog="chatrelay-console",
        description="Chat with a chatrelay server from the terminal",
    )
    parser.add_argument(
        "--endpoint",
        default=endpoint,
        help="Chat endpoint URL of the relay",
    )
    parser.add_argument(
        "--provider",
        default=defaults["provider"],
        choices=[p.value for p in Provider],
        help="Backend the relay should use",
    )
    parser.add_argument(
        "--model",
        default=None,
        help="Model identifier to request (default: configured model for the provider)",
    )
    parser.add_argument(
        "--wrap-code",
        action="store_true",
        help="Send code-looking input as a fenced code block",
    )
    return parser


def switch_provider(
    command: str, models: Optional[dict[str, str]], model: str
) -> tuple[Provider, str]:
    """Parse ``/provider <name>``; raises ValueError for an unknown provider."""
    parts = command.split(maxsplit=1)
    name = parts[1].strip() if len(parts) > 1 else ""
    provider = Provider(name)
    return provider, (models or {}).get(provider.value, model)


async def run_console(
    dispatcher: ChatDispatcher,
    provider: Provider,
    model: str,
    out: TextIO = sys.stdout,
    models: Optional[dict[str, str]] = None,
) -> ConversationHistory:
    """Read prompts until /quit or end of input.

    ``/provider <name>`` switches backend for later turns, taking that
    provider's model from ``models`` when given.
    """
    history = ConversationHistory()
    printer = StreamPrinter(out)
    loop = asyncio.get_running_loop()
    while True:
        try:
            line = await loop.run_in_executor(None, input, "you> ")
        except EOFError:
            break
        if line.strip() in ("/quit", "/exit"):
            break
        if not line.strip():
            continue
        if line.strip().split()[0] == "/provider":
            try:
                provider, model = switch_provider(line, models, model)
            except ValueError:
                choices = ", ".join(p.value for p in Provider)
                out.write(f"unknown provider, choose one of: {choices}\n")
                continue
            out.write(f"provider: {provider.value} (model: {model})\n")
            continue
        printer.reset()
        out.write("assistant> ")
        await dispatcher.send(
            line, history, provider=provider, model=model, publish=printer
        )
        out.write("\n")
    return history


def main(argv: Optional[list[str]] = None) -> None:
    machine = load_machine_config()
    defaults = resolve_chat_defaults(machine)
    args = build_arg_parser(defaults).parse_args(argv)
    models = {
        p.value: args.model or resolve_default_model(machine, p.value) for p in Provider
    }
    model = models[args.provider]
    dispatcher = ChatDispatcher(
        args.endpoint,
        system_prompt=defaults["system_prompt"],
        wrap_code_input=args.wrap_code,
    )
    try:
        asyncio.run(
            run_console(dispatcher, Provider(args.provider), model, models=models)
        )
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
