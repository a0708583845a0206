# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Defines the prompts unit so this responsibility stays isolated, testable, and easy to evolve.

The system instruction prepended to every conversation. Deployments override it
with ``chat.system_prompt`` in machine.json or CHATRELAY_SYSTEM_PROMPT.
"""

DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful assistant. Answer clearly and concisely. "
    "Format code as fenced Markdown blocks tagged with their language."
)
