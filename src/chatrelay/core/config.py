# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
# Purpose: Defines the config unit so this responsibility stays isolated, testable, and easy to evolve.

"""
Configuration loading utilities for chatrelay.

Conventions:
- Machine-specific config: resources/config/machine.json
  (directory overridable with CHATRELAY_CONFIG_DIR).
- Environment variables override JSON values.
- JSON values can reference environment variables using ${VAR_NAME} placeholders.

Only generic JSON dicts are returned; the resolve_* helpers pick the pieces a
caller needs and raise ConfigurationError when a backend is not usable.
"""

from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from chatrelay.core.prompts import DEFAULT_SYSTEM_PROMPT
from chatrelay.services.exceptions import ConfigurationError

BASE_DIR = Path(__file__).resolve().parent.parent.parent.parent
CONFIG_DIR = BASE_DIR / "resources" / "config"
DATA_DIR = BASE_DIR / "data"
LOGS_DIR = DATA_DIR / "logs"

DEFAULT_OPENAI_BASE_URL = "https://api.openai.com/v1"
DEFAULT_TIMEOUT_S = 60

DEFAULT_MACHINE_CONFIG: Dict[str, Any] = {
    "openai": {
        "base_url": DEFAULT_OPENAI_BASE_URL,
        "timeout_s": DEFAULT_TIMEOUT_S,
    },
    "ollama": {
        "timeout_s": DEFAULT_TIMEOUT_S,
    },
    "chat": {
        "provider": "ollama",
        "model": "llama3",
        "ask_endpoint": "/api/v1/chat",
        "system_prompt": DEFAULT_SYSTEM_PROMPT,
    },
    "storage": {
        "backend": "memory",
    },
}


def get_config_dir() -> Path:
    override = os.getenv("CHATRELAY_CONFIG_DIR")
    return Path(override) if override else CONFIG_DIR


def get_data_dir() -> Path:
    override = os.getenv("CHATRELAY_DATA_DIR")
    return Path(override) if override else DATA_DIR


_ENV_PATTERN = re.compile(r"\$\{([A-Z0-9_]+)\}")


def _interpolate_env(value: Any) -> Any:
    """Interpolate ${VAR} placeholders within strings using environment variables.

    Non-string types are returned unchanged.
    """
    if isinstance(value, str):

        def replace(match: re.Match[str]) -> str:
            var = match.group(1)
            return os.getenv(var, match.group(0))  # leave placeholder if unset

        return _ENV_PATTERN.sub(replace, value)
    if isinstance(value, dict):
        return {k: _interpolate_env(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_interpolate_env(v) for v in value]
    return value


def _deep_merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """Deeply merge mapping 'override' into dict 'base'. Returns new dict.

    - For dict values, merges recursively.
    - For lists and scalars, override replaces base.
    """
    result: Dict[str, Any] = dict(base)
    for k, v in override.items():
        if isinstance(v, Mapping) and isinstance(result.get(k), Mapping):
            result[k] = _deep_merge(dict(result[k]), v)  # type: ignore[index]
        else:
            result[k] = v
    return result


def load_json_file(path: os.PathLike[str] | str | None) -> Dict[str, Any]:
    """Load JSON from path if it exists; return empty dict if missing.

    Raises ValueError for malformed JSON.
    """
    if path is None:
        return {}
    p = Path(path)
    if not p.exists():
        return {}
    try:
        with p.open("r", encoding="utf-8") as f:
            data = json.load(f)
        return data if isinstance(data, dict) else {}
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON at {p}: {e}") from e


def _int_or_raw(value: str) -> int | str:
    try:
        return int(value)
    except ValueError:
        return value


# (env var, section, key, converter)
_ENV_MAP = [
    ("OPENAI_API_KEY", "openai", "api_key", None),
    ("OPENAI_BASE_URL", "openai", "base_url", None),
    ("OPENAI_DEFAULT_MODEL", "openai", "default_model", None),
    ("OPENAI_TIMEOUT_S", "openai", "timeout_s", _int_or_raw),
    ("OLLAMA_HOST", "ollama", "host", None),
    ("OLLAMA_TIMEOUT_S", "ollama", "timeout_s", _int_or_raw),
    ("CHATRELAY_MODEL_NAME", "chat", "model", None),
    ("CHATRELAY_PROVIDER", "chat", "provider", None),
    ("CHATRELAY_ASK_ENDPOINT", "chat", "ask_endpoint", None),
    ("CHATRELAY_SYSTEM_PROMPT", "chat", "system_prompt", None),
    ("CHATRELAY_STORAGE", "storage", "backend", None),
]


def _env_overrides() -> Dict[str, Any]:
    """Collect the supported environment variables into a nested dict structure."""
    result: Dict[str, Any] = {}
    for var, section, key, convert in _ENV_MAP:
        raw = os.getenv(var)
        if raw is None:
            continue
        result.setdefault(section, {})[key] = convert(raw) if convert else raw
    return result


def load_machine_config(
    path: os.PathLike[str] | str | None = None,
    defaults: Optional[Mapping[str, Any]] = None,
) -> Dict[str, Any]:
    """Load machine configuration applying precedence and interpolation.

    Precedence: env overrides > JSON file > defaults
    """
    if path is None:
        path = get_config_dir() / "machine.json"
    defaults = dict(DEFAULT_MACHINE_CONFIG if defaults is None else defaults)
    json_config = load_json_file(path)
    json_config = _interpolate_env(json_config)
    merged = _deep_merge(defaults, json_config)
    merged = _deep_merge(merged, _env_overrides())
    return merged


def _timeout(section: Mapping[str, Any]) -> int:
    try:
        return int(section.get("timeout_s") or DEFAULT_TIMEOUT_S)
    except (TypeError, ValueError):
        return DEFAULT_TIMEOUT_S


def resolve_openai_settings(machine: Mapping[str, Any]) -> Tuple[str, str, int]:
    """Resolve (base_url, api_key, timeout_s) for the hosted completion API."""
    cfg = machine.get("openai") or {}
    api_key = cfg.get("api_key")
    if not api_key:
        raise ConfigurationError("Missing OpenAI API key")
    base_url = str(cfg.get("base_url") or DEFAULT_OPENAI_BASE_URL)
    return base_url, str(api_key), _timeout(cfg)


def resolve_ollama_settings(machine: Mapping[str, Any]) -> Tuple[str, int]:
    """Resolve (host, timeout_s) for the local Ollama server."""
    cfg = machine.get("ollama") or {}
    host = cfg.get("host")
    if not host:
        raise ConfigurationError("Missing Ollama host configuration")
    return str(host), _timeout(cfg)


def resolve_chat_defaults(machine: Mapping[str, Any]) -> Dict[str, str]:
    """Provider, model, ask endpoint and system prompt a UI starts with."""
    chat = machine.get("chat") or {}
    defaults = DEFAULT_MACHINE_CONFIG["chat"]
    return {
        key: str(chat.get(key) or defaults[key])
        for key in ("provider", "model", "ask_endpoint", "system_prompt")
    }


def resolve_default_model(machine: Mapping[str, Any], provider: str) -> str:
    """Model to request from provider when the user did not pick one.

    The hosted API prefers ``openai.default_model``; everything else uses
    ``chat.model``.
    """
    if provider == "openai":
        openai_model = (machine.get("openai") or {}).get("default_model")
        if openai_model:
            return str(openai_model)
    return resolve_chat_defaults(machine)["model"]
