"""Generic content-record storage used as a black-box item source."""

from __future__ import annotations

import copy
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from updatekit.engine.errors import PersistenceError
from updatekit.engine.store import sqlite_connection


class EntityStore(ABC):
    """CRUD over opaque records grouped by entity type.

    Records are dicts; the ``id`` key holds the record's integer id.
    """

    @abstractmethod
    def load(self, entity_type: str, entity_id: int) -> dict[str, Any] | None:
        """Return a copy of the record, or None."""

    @abstractmethod
    def query(self, entity_type: str, **filters: Any) -> list[int]:
        """Return ids of records whose fields equal *filters*, ascending."""

    @abstractmethod
    def save(self, entity_type: str, record: dict[str, Any]) -> int:
        """Create or update a record and return its id."""

    @abstractmethod
    def delete(self, entity_type: str, entity_id: int) -> None:
        """Remove a record (no-op if absent)."""


class MemoryEntityStore(EntityStore):
    def __init__(self) -> None:
        self._records: dict[str, dict[int, dict[str, Any]]] = {}
        self._next_id: dict[str, int] = {}

    def load(self, entity_type: str, entity_id: int) -> dict[str, Any] | None:
        record = self._records.get(entity_type, {}).get(entity_id)
        return copy.deepcopy(record) if record is not None else None

    def query(self, entity_type: str, **filters: Any) -> list[int]:
        records = self._records.get(entity_type, {})
        return sorted(
            entity_id
            for entity_id, record in records.items()
            if all(record.get(field) == value for field, value in filters.items())
        )

    def save(self, entity_type: str, record: dict[str, Any]) -> int:
        records = self._records.setdefault(entity_type, {})
        entity_id = record.get("id")
        if entity_id is None:
            entity_id = self._next_id.get(entity_type, 1)
        self._next_id[entity_type] = max(self._next_id.get(entity_type, 1), entity_id + 1)
        stored = copy.deepcopy(record)
        stored["id"] = entity_id
        records[entity_id] = stored
        return entity_id

    def delete(self, entity_type: str, entity_id: int) -> None:
        self._records.get(entity_type, {}).pop(entity_id, None)


class SqliteEntityStore(EntityStore):
    """Records kept as JSON in the ``entities`` table of the state database.

    Ids are assigned per entity type as one more than the highest stored id.
    """

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Cannot create state directory for {self.db_path}: {exc}") from exc
        with sqlite_connection(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS entities (
                    entity_type TEXT NOT NULL,
                    id INTEGER NOT NULL,
                    payload TEXT NOT NULL,
                    PRIMARY KEY (entity_type, id)
                )
                """
            )

    def load(self, entity_type: str, entity_id: int) -> dict[str, Any] | None:
        with sqlite_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT id, payload FROM entities WHERE entity_type = ? AND id = ?",
                (entity_type, entity_id),
            ).fetchone()
        return None if row is None else self._decode(entity_type, row)

    def query(self, entity_type: str, **filters: Any) -> list[int]:
        with sqlite_connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT id, payload FROM entities WHERE entity_type = ? ORDER BY id ASC",
                (entity_type,),
            ).fetchall()
        matches = []
        for row in rows:
            record = self._decode(entity_type, row)
            if all(record.get(field) == value for field, value in filters.items()):
                matches.append(record["id"])
        return matches

    def save(self, entity_type: str, record: dict[str, Any]) -> int:
        stored = copy.deepcopy(record)
        with sqlite_connection(self.db_path) as conn:
            entity_id = stored.get("id")
            if entity_id is None:
                row = conn.execute(
                    "SELECT COALESCE(MAX(id), 0) + 1 AS next_id FROM entities WHERE entity_type = ?",
                    (entity_type,),
                ).fetchone()
                entity_id = int(row["next_id"])
            stored["id"] = entity_id
            try:
                payload = json.dumps(stored, sort_keys=True)
            except (TypeError, ValueError) as exc:
                raise PersistenceError(
                    f"Record {entity_type}:{entity_id} is not JSON-serialisable: {exc}"
                ) from exc
            conn.execute(
                """
                INSERT INTO entities(entity_type, id, payload) VALUES(?, ?, ?)
                ON CONFLICT(entity_type, id) DO UPDATE SET payload = excluded.payload
                """,
                (entity_type, entity_id, payload),
            )
        return entity_id

    def delete(self, entity_type: str, entity_id: int) -> None:
        with sqlite_connection(self.db_path) as conn:
            conn.execute(
                "DELETE FROM entities WHERE entity_type = ? AND id = ?", (entity_type, entity_id)
            )

    @staticmethod
    def _decode(entity_type: str, row) -> dict[str, Any]:
        try:
            record = json.loads(row["payload"])
        except json.JSONDecodeError as exc:
            raise PersistenceError(f"Corrupt record {entity_type}:{row['id']}: {exc}") from exc
        record["id"] = int(row["id"])
        return record
