"""Persisted key-value store of named configuration objects."""

from __future__ import annotations

import copy
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from updatekit.engine.errors import PersistenceError
from updatekit.engine.store import sqlite_connection


class ConfigStore(ABC):
    """Named configuration objects, each a JSON-compatible dict.

    ``get`` returns a copy: callers change configuration only through ``set``.
    """

    @abstractmethod
    def get(self, name: str) -> dict[str, Any]:
        """Return the object stored under *name*, or an empty dict."""

    @abstractmethod
    def set(self, name: str, data: dict[str, Any]) -> None:
        """Replace the object stored under *name*."""

    @abstractmethod
    def delete(self, name: str) -> None:
        """Remove *name* (no-op if absent)."""

    @abstractmethod
    def names(self) -> list[str]:
        """Return all stored names, sorted."""

    def update(self, name: str, values: dict[str, Any]) -> dict[str, Any]:
        """Shallow-merge *values* into the object under *name* and save it."""
        data = self.get(name)
        data.update(values)
        self.set(name, data)
        return data


class MemoryConfigStore(ConfigStore):
    def __init__(self, initial: dict[str, dict[str, Any]] | None = None) -> None:
        self._data: dict[str, dict[str, Any]] = copy.deepcopy(initial) if initial else {}

    def get(self, name: str) -> dict[str, Any]:
        return copy.deepcopy(self._data.get(name, {}))

    def set(self, name: str, data: dict[str, Any]) -> None:
        self._data[name] = copy.deepcopy(data)

    def delete(self, name: str) -> None:
        self._data.pop(name, None)

    def names(self) -> list[str]:
        return sorted(self._data)


class SqliteConfigStore(ConfigStore):
    """Configuration objects kept in the ``config`` table of the state database."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Cannot create state directory for {self.db_path}: {exc}") from exc
        with sqlite_connection(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS config (
                    name TEXT PRIMARY KEY,
                    data TEXT NOT NULL
                )
                """
            )

    def get(self, name: str) -> dict[str, Any]:
        with sqlite_connection(self.db_path) as conn:
            row = conn.execute("SELECT data FROM config WHERE name = ?", (name,)).fetchone()
        if row is None:
            return {}
        try:
            data = json.loads(row["data"])
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"Corrupt config object '{name}': {exc}") from exc
        return data if isinstance(data, dict) else {}

    def set(self, name: str, data: dict[str, Any]) -> None:
        try:
            encoded = json.dumps(data, sort_keys=True)
        except (TypeError, ValueError) as exc:
            raise PersistenceError(f"Config object '{name}' is not JSON-serialisable: {exc}") from exc
        with sqlite_connection(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO config(name, data) VALUES(?, ?)
                ON CONFLICT(name) DO UPDATE SET data = excluded.data
                """,
                (name, encoded),
            )

    def delete(self, name: str) -> None:
        with sqlite_connection(self.db_path) as conn:
            conn.execute("DELETE FROM config WHERE name = ?", (name,))

    def names(self) -> list[str]:
        with sqlite_connection(self.db_path) as conn:
            rows = conn.execute("SELECT name FROM config ORDER BY name ASC").fetchall()
        return [str(row["name"]) for row in rows]
