# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Defines the text formatting unit so this responsibility stays isolated, testable, and easy to evolve.

Markdown helpers applied to user input before it is sent and to assistant
text before it is rendered.
"""

from __future__ import annotations

import re

FENCE = "```"
DEFAULT_CODE_LANGUAGE = "javascript"

_CODE_MARKERS = (";", "=>", "{", "}", "\n")
_CODE_LINE_START = re.compile(r"^(function|const|let|var|import)\s")
_SINGLE_LINE_FENCE = re.compile(r"```(\w*?)\n?([^\n`]+)\n?```")


def is_code_input(text: str) -> bool:
    """Heuristic: does the user text look like a code snippet?"""
    trimmed = text.strip()
    if trimmed.startswith(FENCE) and trimmed.endswith(FENCE):
        return True
    if any(marker in trimmed for marker in _CODE_MARKERS):
        return True
    return bool(_CODE_LINE_START.match(trimmed))


def format_user_input(text: str, language: str = DEFAULT_CODE_LANGUAGE) -> str:
    """Wrap code-looking input in a fenced block; fenced input is kept as is."""
    trimmed = text.strip()
    if trimmed.startswith(FENCE) and trimmed.endswith(FENCE):
        return trimmed
    if is_code_input(trimmed):
        return f"{FENCE}{language}\n{trimmed}\n{FENCE}"
    return text


def preprocess_markdown(markdown: str) -> str:
    """Turn single-line fences without a language tag into inline code."""

    def replace(match: re.Match[str]) -> str:
        lang, content = match.group(1), match.group(2)
        if not lang:
            return f"`{content}`"
        return match.group(0)

    return _SINGLE_LINE_FENCE.sub(replace, markdown)
