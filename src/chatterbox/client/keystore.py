"""Injectable secret storage for client key material.

A keystore holds string values under string names inside one isolation
boundary (its namespace). Nothing here knows about keys or rooms.
"""

from __future__ import annotations

import json
import os
import threading
from pathlib import Path
from typing import Protocol


class Keystore(Protocol):
    """Secret storage bound to one namespace."""

    namespace: str

    def get(self, name: str) -> str | None:
        ...

    def set(self, name: str, value: str) -> None:
        ...

    def clear(self) -> None:
        ...


class MemoryKeystore:
    """Process-local keystore. Contents vanish with the process."""

    def __init__(self, namespace: str = "default") -> None:
        self.namespace = namespace
        self._values: dict[str, str] = {}

    def get(self, name: str) -> str | None:
        return self._values.get(name)

    def set(self, name: str, value: str) -> None:
        self._values[name] = value

    def clear(self) -> None:
        self._values.clear()


class FileKeystore:
    """Keystore persisted as a JSON document readable only by its owner.

    The file maps namespaces to name/value tables; ``clear`` only drops this
    keystore's namespace.
    """

    def __init__(self, path: str | Path, namespace: str = "default") -> None:
        self.path = Path(path)
        self.namespace = namespace
        self._lock = threading.Lock()

    def _load(self) -> dict[str, dict[str, str]]:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        data = json.loads(raw) if raw.strip() else {}
        if not isinstance(data, dict):
            raise ValueError(f"Keystore file {self.path} is not a JSON object")
        return data

    def _store(self, data: dict[str, dict[str, str]]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        # O_CREAT leaves the mode of a leftover temp file untouched.
        os.fchmod(fd, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(data, handle, indent=2, sort_keys=True)
        os.replace(tmp_path, self.path)

    def get(self, name: str) -> str | None:
        with self._lock:
            return self._load().get(self.namespace, {}).get(name)

    def set(self, name: str, value: str) -> None:
        with self._lock:
            data = self._load()
            data.setdefault(self.namespace, {})[name] = value
            self._store(data)

    def clear(self) -> None:
        with self._lock:
            data = self._load()
            if data.pop(self.namespace, None) is not None:
                self._store(data)
