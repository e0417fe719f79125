"""Persistence for module watermarks and in-flight step progress.

Two implementations share the :class:`PersistentStore` interface:
``MemoryStore`` for tests and embedding, and ``SqliteStore`` which keeps
watermarks and JSON-encoded progress in a single SQLite database file.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from .errors import PersistenceError
from .models import ProgressState, StepKey

logger = logging.getLogger(__name__)


class PersistentStore(ABC):
    """Watermark and progress storage consumed by the runner."""

    @abstractmethod
    def get_watermark(self, module: str) -> int:
        """Return the highest applied version for *module* (0 if none)."""

    @abstractmethod
    def set_watermark(self, module: str, version: int) -> None:
        """Record *version* as the highest applied version for *module*."""

    @abstractmethod
    def load_progress(self, module: str, version: int) -> ProgressState | None:
        """Return saved progress for a step, or None."""

    @abstractmethod
    def save_progress(self, module: str, version: int, progress: ProgressState) -> None:
        """Persist progress for a step, replacing any previous value."""

    @abstractmethod
    def clear_progress(self, module: str, version: int) -> None:
        """Discard saved progress for a step (no-op if absent)."""

    @abstractmethod
    def watermarks(self) -> dict[str, int]:
        """Return every recorded watermark."""

    @abstractmethod
    def saved_progress(self) -> dict[StepKey, ProgressState]:
        """Return all saved progress keyed by (module, version)."""

    def complete_step(self, module: str, version: int) -> None:
        """Advance the watermark and drop the step's progress."""
        self.set_watermark(module, version)
        self.clear_progress(module, version)


class MemoryStore(PersistentStore):
    """Process-local store. Progress is copied through its dict form."""

    def __init__(self) -> None:
        self._watermarks: dict[str, int] = {}
        self._progress: dict[StepKey, dict[str, Any]] = {}

    def get_watermark(self, module: str) -> int:
        return self._watermarks.get(module, 0)

    def set_watermark(self, module: str, version: int) -> None:
        self._watermarks[module] = version

    def load_progress(self, module: str, version: int) -> ProgressState | None:
        payload = self._progress.get((module, version))
        if payload is None:
            return None
        return ProgressState.from_dict(json.loads(json.dumps(payload)))

    def save_progress(self, module: str, version: int, progress: ProgressState) -> None:
        try:
            payload = json.loads(json.dumps(progress.to_dict()))
        except (TypeError, ValueError) as exc:
            raise PersistenceError(
                f"Progress for {module}:{version} is not JSON-serialisable: {exc}"
            ) from exc
        self._progress[(module, version)] = payload

    def clear_progress(self, module: str, version: int) -> None:
        self._progress.pop((module, version), None)

    def watermarks(self) -> dict[str, int]:
        return dict(self._watermarks)

    def saved_progress(self) -> dict[StepKey, ProgressState]:
        return {key: ProgressState.from_dict(payload) for key, payload in self._progress.items()}


@contextmanager
def sqlite_connection(db_path: Path) -> Iterator[sqlite3.Connection]:
    """Open *db_path*, commit on success, and wrap SQLite errors.

    Raises:
        PersistenceError: On any sqlite3 error, with the original chained
    """
    conn: sqlite3.Connection | None = None
    try:
        conn = sqlite3.connect(db_path)
        conn.row_factory = sqlite3.Row
        yield conn
        conn.commit()
    except sqlite3.Error as exc:
        if conn is not None:
            conn.rollback()
        raise PersistenceError(f"State database {db_path} failed: {exc}") from exc
    finally:
        if conn is not None:
            conn.close()


class SqliteStore(PersistentStore):
    """SQLite-backed watermark/progress store."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = Path(db_path)
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise PersistenceError(f"Cannot create state directory for {self.db_path}: {exc}") from exc
        self._init_db()

    def _init_db(self) -> None:
        with sqlite_connection(self.db_path) as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS watermarks (
                    module TEXT PRIMARY KEY,
                    version INTEGER NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS progress (
                    module TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    payload TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (module, version)
                )
                """
            )

    def get_watermark(self, module: str) -> int:
        with sqlite_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT version FROM watermarks WHERE module = ?", (module,)
            ).fetchone()
        return int(row["version"]) if row is not None else 0

    def set_watermark(self, module: str, version: int) -> None:
        with sqlite_connection(self.db_path) as conn:
            self._write_watermark(conn, module, version)

    def load_progress(self, module: str, version: int) -> ProgressState | None:
        with sqlite_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT payload FROM progress WHERE module = ? AND version = ?",
                (module, version),
            ).fetchone()
        if row is None:
            return None
        return self._decode(module, version, row["payload"])

    def save_progress(self, module: str, version: int, progress: ProgressState) -> None:
        try:
            payload = json.dumps(progress.to_dict(), sort_keys=True)
        except (TypeError, ValueError) as exc:
            raise PersistenceError(
                f"Progress for {module}:{version} is not JSON-serialisable: {exc}"
            ) from exc
        with sqlite_connection(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO progress(module, version, payload, updated_at)
                VALUES(?, ?, ?, ?)
                ON CONFLICT(module, version) DO UPDATE SET
                    payload = excluded.payload,
                    updated_at = excluded.updated_at
                """,
                (module, version, payload, _now()),
            )

    def clear_progress(self, module: str, version: int) -> None:
        with sqlite_connection(self.db_path) as conn:
            conn.execute(
                "DELETE FROM progress WHERE module = ? AND version = ?", (module, version)
            )

    def complete_step(self, module: str, version: int) -> None:
        # Watermark and progress change in one transaction.
        with sqlite_connection(self.db_path) as conn:
            self._write_watermark(conn, module, version)
            conn.execute(
                "DELETE FROM progress WHERE module = ? AND version = ?", (module, version)
            )

    def watermarks(self) -> dict[str, int]:
        with sqlite_connection(self.db_path) as conn:
            rows = conn.execute("SELECT module, version FROM watermarks ORDER BY module ASC").fetchall()
        return {str(row["module"]): int(row["version"]) for row in rows}

    def saved_progress(self) -> dict[StepKey, ProgressState]:
        with sqlite_connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT module, version, payload FROM progress ORDER BY module ASC, version ASC"
            ).fetchall()
        return {
            (str(row["module"]), int(row["version"])): self._decode(
                row["module"], row["version"], row["payload"]
            )
            for row in rows
        }

    @staticmethod
    def _write_watermark(conn: sqlite3.Connection, module: str, version: int) -> None:
        conn.execute(
            """
            INSERT INTO watermarks(module, version, updated_at)
            VALUES(?, ?, ?)
            ON CONFLICT(module) DO UPDATE SET
                version = excluded.version,
                updated_at = excluded.updated_at
            """,
            (module, version, _now()),
        )

    @staticmethod
    def _decode(module: str, version: int, payload: str) -> ProgressState:
        try:
            return ProgressState.from_dict(json.loads(payload))
        except (json.JSONDecodeError, TypeError, AttributeError) as exc:
            raise PersistenceError(f"Corrupt progress for {module}:{version}: {exc}") from exc


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()
