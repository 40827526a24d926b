from __future__ import annotations

import sqlite3
from pathlib import Path

import pytest

from cidvault.runtime.sqlite_db import SqliteDB, SqliteLedgerStore


def _pragma(con: sqlite3.Connection, name: str) -> int | str:
    row = con.execute(f"PRAGMA {name};").fetchone()
    if row is None:
        raise AssertionError(f"missing pragma: {name}")
    return row[0]


def test_sqlite_operational_pragmas_are_applied(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CIDVAULT_MODE", "prod")
    monkeypatch.delenv("CIDVAULT_SQLITE_SYNCHRONOUS", raising=False)
    monkeypatch.setenv("CIDVAULT_SQLITE_BUSY_TIMEOUT_MS", "1234")
    monkeypatch.setenv("CIDVAULT_SQLITE_WAL_AUTOCHECKPOINT", "777")
    monkeypatch.setenv("CIDVAULT_SQLITE_JOURNAL_SIZE_LIMIT", str(8 * 1024 * 1024))
    monkeypatch.setenv("CIDVAULT_SQLITE_CACHE_SIZE_KIB", "4096")

    db = SqliteDB(path=str(tmp_path / "cidvault.db"))
    db.init_schema()

    with db.connection() as con:
        assert str(_pragma(con, "journal_mode")).lower() == "wal"
        # FULL is the prod default.
        assert int(_pragma(con, "synchronous")) == 2
        assert int(_pragma(con, "foreign_keys")) == 1
        assert int(_pragma(con, "busy_timeout")) == 1234
        assert int(_pragma(con, "wal_autocheckpoint")) == 777
        assert int(_pragma(con, "journal_size_limit")) == 8 * 1024 * 1024
        assert abs(int(_pragma(con, "cache_size"))) == 4096


def test_synchronous_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("CIDVAULT_SQLITE_SYNCHRONOUS", "NORMAL")
    db = SqliteDB(path=str(tmp_path / "cidvault.db"))
    db.init_schema()
    with db.connection() as con:
        assert int(_pragma(con, "synchronous")) == 1


def test_schema_tables_exist(tmp_path: Path) -> None:
    db = SqliteDB(path=str(tmp_path / "cidvault.db"))
    db.init_schema()
    with db.connection() as con:
        names = {r[0] for r in con.execute("SELECT name FROM sqlite_master WHERE type='table';").fetchall()}
    assert {"meta", "ledger_state", "events"} <= names


def test_snapshot_is_written_only_inside_an_open_write_tx(tmp_path: Path) -> None:
    db = SqliteDB(path=str(tmp_path / "cidvault.db"))
    store = SqliteLedgerStore(db=db)

    with pytest.raises(FileNotFoundError):
        store.read()

    with db.write_tx() as con:
        SqliteLedgerStore.write_in(con, {"registry_id": "r1", "messages": {"next_id": 1}})
        assert SqliteLedgerStore.read_in(con)["registry_id"] == "r1"

    with pytest.raises(RuntimeError):
        with db.write_tx() as con:
            SqliteLedgerStore.write_in(con, {"registry_id": "r2"})
            raise RuntimeError("abort")

    assert store.read()["registry_id"] == "r1"
    assert not hasattr(store, "update")
    assert not hasattr(store, "write")
