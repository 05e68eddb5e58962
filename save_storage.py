"""
Key/value storage for save data, shaped like browser localStorage:
get_item / set_item / remove_item on string values.
"""
from __future__ import annotations

import json
import os
import tempfile
from typing import Dict, Optional

STORAGE_KEY = "kethaneumProgress"
BACKUP_KEY = "kethaneumProgress_backup_v1"


class StorageError(OSError):
    """A storage backend failed to read or write."""


class MemoryStore:
    """In-process store; handy for tests and throwaway sessions."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._data: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self):
        return list(self._data)


class JsonFileStore:
    """
    All keys live in one JSON object on disk. Writes go through a temp file
    and an atomic replace so a crash never leaves a half-written save.
    """

    def __init__(self, path: str) -> None:
        self.path = path

    def _read_all(self) -> Dict[str, str]:
        if not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as e:
            raise StorageError(f"cannot read save file {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise StorageError(f"save file {self.path} does not hold a JSON object")
        return data

    def _write_all(self, data: Dict[str, str]) -> None:
        folder = os.path.dirname(os.path.abspath(self.path))
        try:
            os.makedirs(folder, exist_ok=True)
            fd, tmp = tempfile.mkstemp(prefix=".save-", suffix=".json", dir=folder)
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, ensure_ascii=False)
                os.replace(tmp, self.path)
            except BaseException:
                if os.path.exists(tmp):
                    os.remove(tmp)
                raise
        except OSError as e:
            raise StorageError(f"cannot write save file {self.path}: {e}") from e

    def get_item(self, key: str) -> Optional[str]:
        value = self._read_all().get(key)
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def remove_item(self, key: str) -> None:
        data = self._read_all()
        if key in data:
            del data[key]
            self._write_all(data)

    def keys(self):
        return list(self._read_all())
