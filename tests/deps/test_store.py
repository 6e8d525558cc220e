# SPDX-License-Identifier: MIT
"""Tests for unibuild.deps.store."""

import sqlite3
from pathlib import Path
from unittest.mock import MagicMock

from unibuild.deps.store import DEFAULT_DB_NAME, DependencyRecord, DependencyStore, Table


def record(path: str, *depends: str) -> DependencyRecord:
    return DependencyRecord(path, "2024-01-01 12:00:00", list(depends))


class TestDependencyStore:
    def test_creates_database(self, tmp_path: Path):
        with DependencyStore.open(tmp_path / "cache") as store:
            assert store.read_all() == {}
        assert (tmp_path / "cache" / DEFAULT_DB_NAME).is_file()

    def test_upsert_and_read(self, tmp_path: Path):
        with DependencyStore.open(tmp_path) as store:
            store.upsert(Table.CONFIRMED, [record("/p/main.c", "/p/a.h", "/p/b.h")])
            store.upsert(Table.CONFIRMED, [record("/p/a.h")])
            records = store.read_all()

        assert records["/p/main.c"].depends == ["/p/a.h", "/p/b.h"]
        assert records["/p/a.h"].depends == []
        assert records["/p/main.c"].last_write_time == "2024-01-01 12:00:00"

    def test_upsert_replaces(self, tmp_path: Path):
        with DependencyStore.open(tmp_path) as store:
            store.upsert(Table.CONFIRMED, [record("/p/main.c", "/p/a.h")])
            store.upsert(Table.CONFIRMED, [record("/p/main.c", "/p/b.h")])
            assert store.read_all()["/p/main.c"].depends == ["/p/b.h"]

    def test_staging_is_separate(self, tmp_path: Path):
        with DependencyStore.open(tmp_path) as store:
            store.upsert(Table.STAGING, [record("/p/main.c")])
            assert store.read_all(Table.CONFIRMED) == {}
            assert "/p/main.c" in store.read_all(Table.STAGING)

    def test_promote(self, tmp_path: Path):
        with DependencyStore.open(tmp_path) as store:
            store.upsert(Table.CONFIRMED, [record("/p/old.c")])
            store.upsert(Table.STAGING, [record("/p/main.c", "/p/a.h")])
            store.promote()

            confirmed = store.read_all(Table.CONFIRMED)
            assert list(confirmed) == ["/p/main.c"]
            assert store.read_all(Table.STAGING) == {}

    def test_clear(self, tmp_path: Path):
        with DependencyStore.open(tmp_path) as store:
            store.upsert(Table.CONFIRMED, [record("/p/main.c")])
            store.clear(Table.CONFIRMED)
            assert store.read_all() == {}

    def test_persists_across_instances(self, tmp_path: Path):
        with DependencyStore.open(tmp_path) as store:
            store.upsert(Table.CONFIRMED, [record("/p/main.c", "/p/a.h")])
        with DependencyStore.open(tmp_path) as store:
            assert store.read_all()["/p/main.c"].depends == ["/p/a.h"]

    def test_corrupt_file_recreated(self, tmp_path: Path):
        db = tmp_path / DEFAULT_DB_NAME
        db.write_bytes(b"this is not an sqlite database, just some garbage bytes" * 20)

        with DependencyStore.open(tmp_path) as store:
            assert store.read_all() == {}
            store.upsert(Table.CONFIRMED, [record("/p/main.c")])
            assert "/p/main.c" in store.read_all()

    def test_damaged_pages_recreated(self, tmp_path: Path):
        with DependencyStore.open(tmp_path) as store:
            store.upsert(
                Table.CONFIRMED,
                [record(f"/p/src/module_{i:04d}.c", "/p/inc/config.h") for i in range(500)],
            )

        db = tmp_path / DEFAULT_DB_NAME
        with sqlite3.connect(db) as conn:
            page_size = conn.execute("PRAGMA page_size").fetchone()[0]
        conn.close()
        data = bytearray(db.read_bytes())
        assert len(data) > 2 * page_size
        data[2 * page_size :] = b"\xab" * (len(data) - 2 * page_size)
        db.write_bytes(bytes(data))

        with DependencyStore.open(tmp_path) as store:
            store.upsert(Table.CONFIRMED, [record("/p/new.c")])
        with DependencyStore.open(tmp_path) as store:
            assert list(store.read_all()) == ["/p/new.c"]

    def test_corruption_while_in_use(self, tmp_path: Path):
        with DependencyStore.open(tmp_path) as store:
            broken = MagicMock()
            broken.execute.side_effect = sqlite3.DatabaseError("database disk image is malformed")
            store._conn = broken

            assert store.read_all() == {}
            broken.close.assert_called_once()

            store.upsert(Table.CONFIRMED, [record("/p/main.c")])
            assert "/p/main.c" in store.read_all()

    def test_locked_database_not_recreated(self, tmp_path: Path):
        with DependencyStore.open(tmp_path) as store:
            store.upsert(Table.CONFIRMED, [record("/p/main.c")])
            real = store._conn
            locked = MagicMock()
            locked.execute.side_effect = sqlite3.OperationalError("database is locked")
            store._conn = locked

            assert store.read_all() == {}
            locked.close.assert_not_called()
            store._conn = real
            assert "/p/main.c" in store.read_all()
