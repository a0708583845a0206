# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

import os
import tempfile
from pathlib import Path

import pytest

from chatrelay.services.llm.llm_logging import llm_logs

# Variables that would leak a developer's real backend settings into tests.
_ISOLATED_VARS = [
    "OPENAI_API_KEY",
    "OPENAI_BASE_URL",
    "OPENAI_DEFAULT_MODEL",
    "OPENAI_TIMEOUT_S",
    "OLLAMA_HOST",
    "OLLAMA_TIMEOUT_S",
    "CHATRELAY_MODEL_NAME",
    "CHATRELAY_PROVIDER",
    "CHATRELAY_ASK_ENDPOINT",
    "CHATRELAY_SYSTEM_PROMPT",
    "CHATRELAY_STORAGE",
    "CHATRELAY_LLM_DUMP",
    "CHATRELAY_LLM_DUMP_PATH",
]


@pytest.fixture(scope="session", autouse=True)
def session_temp_env():
    temp_dir = tempfile.TemporaryDirectory(prefix="chatrelay_test_session_")
    config_dir = Path(temp_dir.name) / "config"
    data_dir = Path(temp_dir.name) / "data"
    config_dir.mkdir(parents=True, exist_ok=True)
    data_dir.mkdir(parents=True, exist_ok=True)

    saved = {
        name: os.environ.get(name)
        for name in _ISOLATED_VARS + ["CHATRELAY_CONFIG_DIR", "CHATRELAY_DATA_DIR"]
    }
    for name in _ISOLATED_VARS:
        os.environ.pop(name, None)
    os.environ["CHATRELAY_CONFIG_DIR"] = str(config_dir)
    os.environ["CHATRELAY_DATA_DIR"] = str(data_dir)

    yield

    temp_dir.cleanup()
    for name, value in saved.items():
        if value is None:
            os.environ.pop(name, None)
        else:
            os.environ[name] = value


@pytest.fixture(autouse=True)
def clear_llm_logs():
    llm_logs.clear()
    yield
    llm_logs.clear()
