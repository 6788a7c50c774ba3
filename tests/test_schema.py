import sqlite3

import pytest

from glint_history import schema
from glint_history.schema import SchemaVersionError


def _insert_raw(conn, block, key):
    conn.execute(
        "INSERT INTO entity_events (block_number, block_hash, tx_index, tx_hash, "
        "log_index, event_type, entity_key) VALUES (?, X'00', 0, X'00', 0, 0, ?)",
        (block, key),
    )
    conn.commit()


@pytest.fixture
def conn():
    connection = sqlite3.connect(":memory:")
    schema.create_tables(connection)
    yield connection
    connection.close()


def test_create_tables_succeeds(conn):
    schema.check_schema_version(conn)
    (version,) = conn.execute(
        "SELECT value FROM sidecar_meta WHERE key = 'schema_version'"
    ).fetchone()
    assert version == "1"


def test_create_tables_is_idempotent(conn):
    schema.create_tables(conn)
    assert schema.event_count(conn) == 0
    rows = conn.execute("SELECT COUNT(*) FROM sidecar_meta").fetchone()
    assert rows == (1,)


def test_last_processed_block_roundtrip(conn):
    assert schema.get_last_processed_block(conn) is None
    schema.set_last_processed_block(conn, 42)
    assert schema.get_last_processed_block(conn) == 42


def test_last_processed_block_overwrites(conn):
    schema.set_last_processed_block(conn, 10)
    schema.set_last_processed_block(conn, 5)
    assert schema.get_last_processed_block(conn) == 5


def test_drop_and_recreate_resets(conn):
    schema.set_last_processed_block(conn, 100)
    _insert_raw(conn, 10, b"\x01")
    schema.drop_and_recreate(conn)
    assert schema.get_last_processed_block(conn) is None
    assert schema.event_count(conn) == 0
    schema.check_schema_version(conn)


def test_schema_version_mismatch_errors(conn):
    conn.execute("UPDATE sidecar_meta SET value = 'wrong' WHERE key = 'schema_version'")
    conn.commit()
    with pytest.raises(SchemaVersionError, match="expected 1, found wrong"):
        schema.check_schema_version(conn)


def test_schema_version_missing_errors(conn):
    conn.execute("DELETE FROM sidecar_meta WHERE key = 'schema_version'")
    conn.commit()
    with pytest.raises(SchemaVersionError):
        schema.check_schema_version(conn)


def test_delete_events_from_block_removes_correct_rows(conn):
    _insert_raw(conn, 10, b"\x01")
    _insert_raw(conn, 20, b"\x02")
    _insert_raw(conn, 30, b"\x03")

    assert schema.delete_events_from_block(conn, 20) == 2
    assert schema.event_count(conn) == 1
    (block,) = conn.execute("SELECT block_number FROM entity_events").fetchone()
    assert block == 10


def test_prune_before_block_removes_older_rows(conn):
    _insert_raw(conn, 10, b"\x01")
    _insert_raw(conn, 20, b"\x02")
    _insert_raw(conn, 30, b"\x03")

    assert schema.prune_before_block(conn, 20) == 1
    blocks = [b for (b,) in conn.execute("SELECT block_number FROM entity_events ORDER BY 1")]
    assert blocks == [20, 30]


def test_block_number_overflow_rejected(conn):
    with pytest.raises(ValueError, match="overflows i64"):
        schema.delete_events_from_block(conn, 2**63)
    with pytest.raises(ValueError, match="overflows i64"):
        schema.prune_before_block(conn, 2**64 - 1)


def test_negative_block_rejected(conn):
    with pytest.raises(ValueError):
        schema.set_last_processed_block(conn, -1)


def test_malformed_last_processed_block(conn):
    conn.execute(
        "INSERT INTO sidecar_meta (key, value) VALUES ('last_processed_block', 'abc')"
    )
    conn.commit()
    with pytest.raises(ValueError, match="last_processed_block"):
        schema.get_last_processed_block(conn)


def test_set_inside_open_transaction_rolls_back_with_it(conn):
    conn.execute("BEGIN")
    schema.set_last_processed_block(conn, 7)
    assert schema.get_last_processed_block(conn) == 7
    conn.rollback()
    assert schema.get_last_processed_block(conn) is None


def test_file_backed_database_persists(tmp_path):
    path = tmp_path / "history.db"
    first = sqlite3.connect(path)
    schema.create_tables(first)
    schema.set_last_processed_block(first, 20)
    first.close()

    second = sqlite3.connect(path)
    schema.check_schema_version(second)
    assert schema.get_last_processed_block(second) == 20
    (mode,) = second.execute("PRAGMA journal_mode").fetchone()
    assert mode.lower() == "wal"
    second.close()