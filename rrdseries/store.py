"""Ordered key-value storage split into named partitions."""

from __future__ import annotations

import os
import sqlite3
import threading
from collections.abc import Iterator
from typing import Union

from .errors import TimeseriesError

KeyLike = Union[bytes, bytearray, memoryview, str]

_SCHEMA = (
    "CREATE TABLE IF NOT EXISTS entries ("
    " partition TEXT NOT NULL,"
    " key BLOB NOT NULL,"
    " value BLOB NOT NULL,"
    " PRIMARY KEY (partition, key)"
    ") WITHOUT ROWID"
)


def _as_bytes(key: KeyLike) -> bytes:
    if isinstance(key, str):
        return key.encode("utf-8")
    if isinstance(key, (bytes, bytearray, memoryview)):
        return bytes(key)
    raise TypeError(f"keys and values must be bytes or str, got {type(key).__name__}")


class Keyspace:
    """A database file holding any number of partitions.

    ``path`` names the database file; ``":memory:"`` keeps everything in memory.
    """

    def __init__(self, path: str | os.PathLike[str] = ":memory:") -> None:
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = sqlite3.connect(
            os.fspath(path), check_same_thread=False, isolation_level=None
        )
        self._conn.execute(_SCHEMA)
        self._partitions: dict[str, Partition] = {}

    def _query(self, sql: str, params: tuple = ()) -> list[tuple]:
        with self._lock:
            if self._conn is None:
                raise TimeseriesError("Keyspace is closed.")
            return self._conn.execute(sql, params).fetchall()

    def open_partition(self, name: str) -> Partition:
        """Return the partition called ``name``, creating it on first use."""
        if not isinstance(name, str) or not name:
            raise ValueError("partition name must be a non-empty string")
        with self._lock:
            if self._conn is None:
                raise TimeseriesError("Keyspace is closed.")
            partition = self._partitions.get(name)
            if partition is None:
                partition = Partition(self, name)
                self._partitions[name] = partition
            return partition

    def close(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self) -> Keyspace:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()


class Partition:
    """A named, byte-ordered map of keys to values inside a keyspace."""

    def __init__(self, keyspace: Keyspace, name: str) -> None:
        self._keyspace = keyspace
        self.name = name

    def get(self, key: KeyLike) -> bytes | None:
        rows = self._keyspace._query(
            "SELECT value FROM entries WHERE partition = ? AND key = ?",
            (self.name, _as_bytes(key)),
        )
        return bytes(rows[0][0]) if rows else None

    def insert(self, key: KeyLike, value: KeyLike) -> None:
        self._keyspace._query(
            "INSERT OR REPLACE INTO entries (partition, key, value) VALUES (?, ?, ?)",
            (self.name, _as_bytes(key), _as_bytes(value)),
        )

    def items(self) -> Iterator[tuple[bytes, bytes]]:
        """All entries in ascending key order."""
        rows = self._keyspace._query(
            "SELECT key, value FROM entries WHERE partition = ? ORDER BY key",
            (self.name,),
        )
        return ((bytes(k), bytes(v)) for k, v in rows)

    def range_from(self, start: KeyLike) -> Iterator[tuple[bytes, bytes]]:
        """Entries whose key is at or after ``start``, in ascending key order."""
        rows = self._keyspace._query(
            "SELECT key, value FROM entries WHERE partition = ? AND key >= ? ORDER BY key",
            (self.name, _as_bytes(start)),
        )
        return ((bytes(k), bytes(v)) for k, v in rows)