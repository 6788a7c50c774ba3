"""SQLite layout and bookkeeping for the historical entity event store."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager

# Bumping this requires `drop_and_recreate`; there are no migrations.
SCHEMA_VERSION = "1"

_I64_MAX = 2**63 - 1
_U64_MAX = 2**64 - 1
_SAVEPOINT = "glint_history"

# STRICT tables need SQLite 3.37 or newer; older libraries get plain tables.
_STRICT = " STRICT" if sqlite3.sqlite_version_info >= (3, 37, 0) else ""

_CREATE_SQL = f"""
CREATE TABLE IF NOT EXISTS entity_events (
    block_number        INTEGER NOT NULL,
    block_hash          BLOB NOT NULL,
    tx_index            INTEGER NOT NULL,
    tx_hash             BLOB NOT NULL,
    log_index           INTEGER NOT NULL,
    event_type          INTEGER NOT NULL,
    entity_key          BLOB NOT NULL,
    owner               BLOB,
    expires_at_block    INTEGER,
    old_expires_at_block INTEGER,
    content_type        TEXT,
    payload             BLOB,
    string_annotations  TEXT,
    numeric_annotations TEXT,
    extend_policy       INTEGER,
    operator            BLOB,
    PRIMARY KEY (entity_key, block_number, log_index)
){_STRICT};

CREATE INDEX IF NOT EXISTS idx_block_number ON entity_events(block_number);
CREATE INDEX IF NOT EXISTS idx_expires_at ON entity_events(expires_at_block);
CREATE INDEX IF NOT EXISTS idx_owner ON entity_events(owner);

CREATE TABLE IF NOT EXISTS sidecar_meta (
    key   TEXT PRIMARY KEY,
    value TEXT NOT NULL
){_STRICT};
"""


class SchemaVersionError(Exception):
    """The database was written with a different or unknown schema version."""


@contextmanager
def _transaction(conn: sqlite3.Connection) -> Iterator[None]:
    """Run the body atomically, nesting as a savepoint inside an open transaction."""
    if conn.in_transaction:
        conn.execute(f"SAVEPOINT {_SAVEPOINT}")
        try:
            yield
        except BaseException:
            conn.execute(f"ROLLBACK TO {_SAVEPOINT}")
            conn.execute(f"RELEASE {_SAVEPOINT}")
            raise
        conn.execute(f"RELEASE {_SAVEPOINT}")
    else:
        conn.execute("BEGIN")
        try:
            yield
        except BaseException:
            conn.rollback()
            raise
        conn.commit()


def _to_i64(block_number: int) -> int:
    if not 0 <= block_number <= _U64_MAX:
        raise ValueError(f"block number {block_number} is not an unsigned 64-bit value")
    if block_number > _I64_MAX:
        raise ValueError("block number overflows i64")
    return block_number


def _store_last_processed_block(conn: sqlite3.Connection, block: int) -> None:
    conn.execute(
        "INSERT OR REPLACE INTO sidecar_meta (key, value) VALUES ('last_processed_block', ?)",
        (str(block),),
    )


def configure_pragmas(conn: sqlite3.Connection) -> None:
    """Tune the connection for a write-heavy append log."""
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute(f"PRAGMA mmap_size = {256 * 1024 * 1024}")
    conn.execute("PRAGMA cache_size = -64000")
    conn.execute("PRAGMA temp_store = MEMORY")


def create_tables(conn: sqlite3.Connection) -> None:
    """Create the event and metadata tables if missing and record the schema version."""
    configure_pragmas(conn)
    conn.executescript(_CREATE_SQL)
    with _transaction(conn):
        conn.execute(
            "INSERT OR IGNORE INTO sidecar_meta (key, value) VALUES ('schema_version', ?)",
            (SCHEMA_VERSION,),
        )


def check_schema_version(conn: sqlite3.Connection) -> None:
    """Raise SchemaVersionError unless the stored version matches this code."""
    row = conn.execute(
        "SELECT value FROM sidecar_meta WHERE key = 'schema_version'"
    ).fetchone()
    if row is None:
        raise SchemaVersionError("schema_version missing from sidecar_meta")
    version = row[0]
    if version != SCHEMA_VERSION:
        raise SchemaVersionError(
            f"schema version mismatch: expected {SCHEMA_VERSION}, found {version}. "
            "Run `glint db rebuild` to recreate the database."
        )


def get_last_processed_block(conn: sqlite3.Connection) -> int | None:
    """Return the highest block written so far, or None if nothing was written."""
    row = conn.execute(
        "SELECT value FROM sidecar_meta WHERE key = 'last_processed_block'"
    ).fetchone()
    if row is None:
        return None
    text = row[0]
    digits = text[1:] if text.startswith("+") else text
    if not (digits.isascii() and digits.isdigit()):
        raise ValueError(f"parsing last_processed_block: invalid value {text!r}")
    block = int(digits)
    if block > _U64_MAX:
        raise ValueError(f"parsing last_processed_block: {text!r} overflows u64")
    return block


def set_last_processed_block(conn: sqlite3.Connection, block: int) -> None:
    """Record the highest block written so far."""
    if not 0 <= block <= _U64_MAX:
        raise ValueError(f"block number {block} is not an unsigned 64-bit value")
    with _transaction(conn):
        _store_last_processed_block(conn, block)


def drop_and_recreate(conn: sqlite3.Connection) -> None:
    """Discard all stored data and start again with empty tables."""
    conn.executescript(
        """
        DROP TABLE IF EXISTS entity_events;
        DROP TABLE IF EXISTS sidecar_meta;
        """
    )
    create_tables(conn)


def delete_events_from_block(conn: sqlite3.Connection, block_number: int) -> int:
    """Delete events at or after the given block; return how many were removed."""
    block = _to_i64(block_number)
    with _transaction(conn):
        cursor = conn.execute("DELETE FROM entity_events WHERE block_number >= ?", (block,))
    return cursor.rowcount


def prune_before_block(conn: sqlite3.Connection, block_number: int) -> int:
    """Delete events before the given block; return how many were removed."""
    block = _to_i64(block_number)
    with _transaction(conn):
        cursor = conn.execute("DELETE FROM entity_events WHERE block_number < ?", (block,))
    return cursor.rowcount


def event_count(conn: sqlite3.Connection) -> int:
    """Return the number of stored events."""
    (count,) = conn.execute("SELECT COUNT(*) FROM entity_events").fetchone()
    return int(count)