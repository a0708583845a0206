# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Defines the conversation unit so this responsibility stays isolated, testable, and easy to evolve.

Client-side conversation state shared between the dispatcher, the stream
assembler and whatever UI renders it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator


class Sender(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class Provider(str, Enum):
    OPENAI = "openai"
    OLLAMA = "ollama"


class MessageFinalizedError(RuntimeError):
    """Raised when code tries to rewrite a message whose text is frozen."""


@dataclass
class ConversationMessage:
    sender: Sender
    text: str = ""
    source_provider: Provider | None = None
    source_model: str | None = None
    finalized: bool = False

    @classmethod
    def user(cls, text: str) -> "ConversationMessage":
        # User messages are history the moment they exist.
        return cls(sender=Sender.USER, text=text, finalized=True)

    @classmethod
    def placeholder(cls, provider: Provider, model: str) -> "ConversationMessage":
        return cls(
            sender=Sender.ASSISTANT,
            text="",
            source_provider=provider,
            source_model=model,
        )

    def replace_text(self, text: str) -> None:
        if self.finalized:
            raise MessageFinalizedError("message text is frozen")
        self.text = text

    def finalize(self, text: str | None = None) -> None:
        """Freeze the message, optionally replacing its text one last time."""
        if text is not None:
            self.replace_text(text)
        self.finalized = True

    def to_wire(self) -> dict:
        return {"role": self.sender.value, "content": self.text}


@dataclass
class ConversationHistory:
    """Append-only, chronologically ordered list of messages."""

    messages: list[ConversationMessage] = field(default_factory=list)

    def append(self, message: ConversationMessage) -> ConversationMessage:
        self.messages.append(message)
        return message

    def __iter__(self) -> Iterator[ConversationMessage]:
        return iter(self.messages)

    def __len__(self) -> int:
        return len(self.messages)

    def __getitem__(self, index: int) -> ConversationMessage:
        return self.messages[index]

    @property
    def last(self) -> ConversationMessage | None:
        return self.messages[-1] if self.messages else None

    def to_wire(
        self,
        system_prompt: str | None = None,
        exclude: ConversationMessage | None = None,
    ) -> list[dict]:
        """Render the outbound ``messages`` array, system instruction first."""
        wire: list[dict] = []
        if system_prompt:
            wire.append({"role": "system", "content": system_prompt})
        wire.extend(m.to_wire() for m in self.messages if m is not exclude)
        return wire


@dataclass(frozen=True)
class StreamFrame:
    """One decoded line of a response stream."""

    content: str | None = None
    done: bool = False
