# Copyright (C) 2026 StableLlama
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.

"""Defines the store unit so this responsibility stays isolated, testable, and easy to evolve.

Append-only record stores backing the rating and feedback endpoints.
"""

from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Any, Dict, List, Protocol

from chatrelay.core.config import get_data_dir
from chatrelay.services.exceptions import PersistenceError


class RecordStore(Protocol):
    def append(self, record: Dict[str, Any]) -> None: ...

    def list_all(self) -> List[Dict[str, Any]]: ...


class InMemoryRecordStore:
    """Process-local store; records are lost on restart."""

    def __init__(self):
        self._records: List[Dict[str, Any]] = []

    def append(self, record: Dict[str, Any]) -> None:
        self._records.append(dict(record))

    def list_all(self) -> List[Dict[str, Any]]:
        return [dict(r) for r in self._records]


class JsonlRecordStore:
    """One JSON object per line in a file; survives restarts."""

    def __init__(self, path: Path | str):
        self.path = Path(path)
        self._lock = threading.Lock()

    def append(self, record: Dict[str, Any]) -> None:
        line = json.dumps(record, ensure_ascii=False)
        try:
            with self._lock:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with self.path.open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError as e:
            raise PersistenceError(f"Could not write {self.path.name}: {e}") from e

    def list_all(self) -> List[Dict[str, Any]]:
        if not self.path.exists():
            return []
        records: List[Dict[str, Any]] = []
        try:
            with self.path.open("r", encoding="utf-8") as f:
                for line in f:
                    if not line.strip():
                        continue
                    try:
                        records.append(json.loads(line))
                    except json.JSONDecodeError:
                        # A torn last line from an interrupted write.
                        continue
        except OSError as e:
            raise PersistenceError(f"Could not read {self.path.name}: {e}") from e
        return records


def create_record_store(kind: str, machine: Dict[str, Any]) -> RecordStore:
    """Build the store configured under ``storage`` for records of ``kind``."""
    storage = machine.get("storage") or {}
    backend = str(storage.get("backend") or "memory").lower()
    if backend == "jsonl":
        base = Path(storage.get("path") or get_data_dir())
        return JsonlRecordStore(base / f"{kind}.jsonl")
    return InMemoryRecordStore()
