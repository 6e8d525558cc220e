# SPDX-License-Identifier: MIT
"""Persisted dependency cache.

Records live in an SQLite file with two tables of identical shape:

- ``files``: the confirmed records, read at the start of every scan
- ``files_cache``: the staging records written by incremental builds

Each row is ``(path, lastWriteTime, depends)`` where ``depends`` is the
``;``-joined list of direct include paths. Staging is promoted into the
confirmed table only after a build succeeded, so an interrupted build
never leaves half-updated confirmed records behind.

A file that isn't a valid database, fails SQLite's quick check on open,
or reports corruption while in use is deleted and recreated; the cache
then simply starts cold.
"""

from __future__ import annotations

import logging
import os
import sqlite3
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import TracebackType

from unibuild.core.errors import DependencyCacheError

logger = logging.getLogger(__name__)

DEFAULT_DB_NAME = "unibuild.dat"

DEPENDS_SEPARATOR = ";"


class Table(str, Enum):
    CONFIRMED = "files"
    STAGING = "files_cache"


@dataclass
class DependencyRecord:
    """One persisted file record.

    Attributes:
        path: Absolute file path (unique key).
        last_write_time: Modification time formatted as ``%Y-%m-%d %H:%M:%S``.
        depends: Resolved direct include paths.
    """

    path: str
    last_write_time: str
    depends: list[str] = field(default_factory=list)


class DependencyStore:
    """SQLite-backed record store.

    Example:
        with DependencyStore.open(dump_dir) as store:
            records = store.read_all()
            store.upsert(Table.STAGING, records.values())
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._conn = self._connect()

    @classmethod
    def open(cls, directory: Path | str, name: str = DEFAULT_DB_NAME) -> DependencyStore:
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        return cls(directory / name)

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(self.path)
        except sqlite3.DatabaseError as e:
            raise DependencyCacheError(f"cannot open dependency cache {self.path}: {e}") from e

        try:
            self._create_tables(conn)
            self._check_integrity(conn)
            return conn
        except sqlite3.DatabaseError as e:
            conn.close()
            logger.warning("Dependency cache %s is corrupt (%s), recreating it", self.path, e)

        return self._create_fresh()

    def _create_fresh(self) -> sqlite3.Connection:
        self._remove_file()
        try:
            conn = sqlite3.connect(self.path)
            self._create_tables(conn)
        except sqlite3.DatabaseError as e:
            raise DependencyCacheError(f"cannot create dependency cache {self.path}: {e}") from e
        return conn

    def _recreate(self, error: sqlite3.DatabaseError) -> None:
        """Replace a database found corrupt while in use with an empty one.

        If even that fails the store keeps working in memory for the rest
        of the run.
        """
        logger.warning("Dependency cache %s is corrupt (%s), recreating it", self.path, error)
        self._conn.close()
        try:
            self._conn = self._create_fresh()
        except DependencyCacheError as e:
            logger.warning("%s, dependency records won't be kept", e)
            self._conn = sqlite3.connect(":memory:")
            self._create_tables(self._conn)

    def _remove_file(self) -> None:
        try:
            os.remove(self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise DependencyCacheError(
                f"cannot remove corrupt dependency cache {self.path}: {e}"
            ) from e

    @staticmethod
    def _create_tables(conn: sqlite3.Connection) -> None:
        with conn:
            for table in Table:
                conn.execute(
                    f"CREATE TABLE IF NOT EXISTS {table.value} ("
                    "path TEXT PRIMARY KEY NOT NULL, "
                    "lastWriteTime VARCHAR(64) NOT NULL, "
                    "depends TEXT NOT NULL)"
                )

    @staticmethod
    def _check_integrity(conn: sqlite3.Connection) -> None:
        # A damaged data page passes CREATE TABLE IF NOT EXISTS
        row = conn.execute("PRAGMA quick_check").fetchone()
        if row is None or row[0] != "ok":
            raise sqlite3.DatabaseError(f"integrity check failed: {row[0] if row else None}")

    def read_all(self, table: Table = Table.CONFIRMED) -> dict[str, DependencyRecord]:
        """Read every record of a table, keyed by path.

        A corrupt database is recreated and reads as empty.
        """
        records: dict[str, DependencyRecord] = {}
        try:
            rows = self._conn.execute(
                f"SELECT path, lastWriteTime, depends FROM {table.value}"
            ).fetchall()
        except sqlite3.DatabaseError as e:
            if _is_corrupt(e):
                self._recreate(e)
            else:
                logger.warning("Cannot read dependency cache %s: %s", self.path, e)
            return records

        for path, last_write_time, depends in rows:
            depends = depends.strip()
            records[path] = DependencyRecord(
                path=path,
                last_write_time=last_write_time,
                depends=depends.split(DEPENDS_SEPARATOR) if depends else [],
            )
        return records

    def upsert(self, table: Table, records: Iterable[DependencyRecord]) -> None:
        """Insert or replace records in one transaction.

        A failed write is rolled back and logged; the cache is then just
        less up to date. On a corrupt database the write is retried once
        against a recreated one.
        """
        rows = [
            (r.path, r.last_write_time, DEPENDS_SEPARATOR.join(r.depends))
            for r in records
        ]
        for attempt in range(2):
            try:
                with self._conn:
                    self._conn.executemany(
                        f"INSERT OR REPLACE INTO {table.value} VALUES (?, ?, ?)", rows
                    )
                return
            except sqlite3.DatabaseError as e:
                if attempt == 0 and _is_corrupt(e):
                    self._recreate(e)
                    continue
                logger.warning("Cannot write dependency cache %s: %s", self.path, e)
                return

    def promote(self) -> None:
        """Replace the confirmed records with the staging records.

        Staging is cleared afterwards. All three steps run in a single
        transaction; on failure nothing changes and a warning is logged.
        """
        try:
            with self._conn:
                self._conn.execute(f"DELETE FROM {Table.CONFIRMED.value}")
                self._conn.execute(
                    f"INSERT OR REPLACE INTO {Table.CONFIRMED.value} "
                    f"SELECT * FROM {Table.STAGING.value}"
                )
                self._conn.execute(f"DELETE FROM {Table.STAGING.value}")
        except sqlite3.DatabaseError as e:
            logger.warning("Cannot promote dependency cache %s: %s", self.path, e)
            if _is_corrupt(e):
                self._recreate(e)

    def clear(self, table: Table) -> None:
        try:
            with self._conn:
                self._conn.execute(f"DELETE FROM {table.value}")
        except sqlite3.DatabaseError as e:
            logger.warning("Cannot clear dependency cache %s: %s", self.path, e)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> DependencyStore:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


def _is_corrupt(error: sqlite3.DatabaseError) -> bool:
    # Corruption and "not a database" surface as the base class; locking and
    # I/O problems are OperationalError subclasses
    return type(error) is sqlite3.DatabaseError
