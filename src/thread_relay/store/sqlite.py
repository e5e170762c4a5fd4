"""SQLite-backed key/value store with deterministic migration bootstrap."""

from __future__ import annotations

from collections.abc import Iterable, Iterator, Mapping, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
import json
from pathlib import Path
import sqlite3
from typing import Any

from thread_relay.errors import StoreUnavailable


@dataclass(frozen=True)
class Migration:
    version: str
    statements: tuple[str, ...]


DEFAULT_MIGRATIONS: tuple[Migration, ...] = (
    Migration(
        version="0001_initial_kv_schema",
        statements=(
            """
            CREATE TABLE IF NOT EXISTS kv_entries (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
            """,
        ),
    ),
)


_LEDGER_DDL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
    version TEXT PRIMARY KEY,
    applied_at TEXT NOT NULL
)
"""

_UPSERT_SQL = """
INSERT INTO kv_entries(key, value, updated_at) VALUES(?, ?, ?)
ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
"""


@contextmanager
def _transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Explicit BEGIN/COMMIT on an autocommit connection; rolls back on any error."""
    conn.execute("BEGIN")
    try:
        yield conn
    except BaseException:
        if conn.in_transaction:
            conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")


class SQLiteMigrationRunner:
    """Apply pending migrations in version order, one transaction each."""

    def __init__(self, migrations: Sequence[Migration] = DEFAULT_MIGRATIONS) -> None:
        self._migrations = tuple(sorted(migrations, key=lambda migration: migration.version))
        if len({migration.version for migration in self._migrations}) != len(self._migrations):
            raise StoreUnavailable("Migration versions must be unique.")

    def bootstrap(self, conn: sqlite3.Connection) -> tuple[str, ...]:
        """Set pragmas, create the ledger and apply what is missing; returns the newly applied versions."""
        try:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA busy_timeout = 5000")
            conn.execute(_LEDGER_DDL)
            applied = set(self.applied_versions(conn))
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Could not prepare SQLite schema: {exc}.") from exc

        pending = [migration for migration in self._migrations if migration.version not in applied]
        for migration in pending:
            try:
                with _transaction(conn):
                    for statement in migration.statements:
                        conn.execute(statement)
                    conn.execute(
                        "INSERT INTO schema_migrations(version, applied_at) VALUES(?, ?)",
                        (migration.version, _utcnow_db()),
                    )
            except sqlite3.Error as exc:
                raise StoreUnavailable(f"Migration '{migration.version}' failed: {exc}.") from exc
        return tuple(migration.version for migration in pending)

    def applied_versions(self, conn: sqlite3.Connection) -> tuple[str, ...]:
        rows = conn.execute("SELECT version FROM schema_migrations ORDER BY version").fetchall()
        return tuple(str(row[0]) for row in rows)


class SqliteKeyValueStore:
    """SQLite implementation of the JSON key/value store."""

    def __init__(
        self,
        db_path: str | Path,
        *,
        migration_runner: SQLiteMigrationRunner | None = None,
    ) -> None:
        self._db_path = Path(db_path).expanduser()
        self._migration_runner = migration_runner or SQLiteMigrationRunner()

        try:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(self._db_path), isolation_level=None)
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Could not open SQLite database '{self._db_path}': {exc}.") from exc
        except OSError as exc:
            raise StoreUnavailable(f"Could not prepare database path '{self._db_path}': {exc}.") from exc

        try:
            self._migration_runner.bootstrap(self._conn)
        except StoreUnavailable:
            self._conn.close()
            raise

    @property
    def db_path(self) -> Path:
        return self._db_path

    def migration_versions(self) -> tuple[str, ...]:
        return self._migration_runner.applied_versions(self._conn)

    def close(self) -> None:
        try:
            self._conn.close()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Could not close SQLite database '{self._db_path}': {exc}.") from exc

    def get(self, key: str, default: Any = None) -> Any:
        values = self.get_many([key])
        return values.get(key, default)

    def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        wanted = list(dict.fromkeys(keys))
        if not wanted:
            return {}
        placeholders = ", ".join("?" for _ in wanted)
        try:
            rows = self._conn.execute(
                f"SELECT key, value FROM kv_entries WHERE key IN ({placeholders})",
                wanted,
            ).fetchall()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Could not read keys {wanted}: {exc}.") from exc

        decoded: dict[str, Any] = {}
        for key, raw in rows:
            try:
                decoded[str(key)] = json.loads(raw)
            except json.JSONDecodeError as exc:
                raise StoreUnavailable(f"Stored value for '{key}' is not valid JSON: {exc}.") from exc
        return decoded

    def set_many(self, values: Mapping[str, Any]) -> None:
        if not values:
            return
        now = _utcnow_db()
        try:
            rows = [(key, json.dumps(value, ensure_ascii=False), now) for key, value in values.items()]
        except (TypeError, ValueError) as exc:
            raise StoreUnavailable(f"Values must be JSON-serializable: {exc}.") from exc

        try:
            with _transaction(self._conn):
                self._conn.executemany(_UPSERT_SQL, rows)
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Could not write keys {sorted(values)}: {exc}.") from exc

    def remove(self, keys: Iterable[str]) -> None:
        doomed = [(key,) for key in dict.fromkeys(keys)]
        if not doomed:
            return
        try:
            self._conn.executemany("DELETE FROM kv_entries WHERE key = ?", doomed)
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Could not delete keys: {exc}.") from exc


def _utcnow_db() -> str:
    return datetime.now(timezone.utc).isoformat()
