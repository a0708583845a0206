# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Chat relay for OpenAI and Ollama backends with a streaming response assembler."""

__version__ = "0.1.0"
