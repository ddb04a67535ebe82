from __future__ import annotations

import duckdb

from engine.config import duckdb_threads


def connect(path: str | None = None, *, threads: int | None = None, read_only: bool = False) -> duckdb.DuckDBPyConnection:
    conn = duckdb.connect(database=path or ":memory:", read_only=read_only)
    conn.execute(f"PRAGMA threads={int(threads or duckdb_threads())}")
    return conn


def quote_ident(name: str) -> str:
    return '"' + str(name).replace('"', '""') + '"'

