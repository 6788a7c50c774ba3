"""Writing batches of entity events into the historical store."""

from __future__ import annotations

import enum
import json
import sqlite3
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from .schema import _store_last_processed_block, _transaction

_INSERT_SQL = """
INSERT INTO entity_events (
    block_number, block_hash, tx_index, tx_hash, log_index,
    event_type, entity_key, owner, expires_at_block, old_expires_at_block,
    content_type, payload, string_annotations, numeric_annotations,
    extend_policy, operator
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (entity_key, block_number, log_index) DO UPDATE SET
    block_hash = excluded.block_hash,
    tx_index = excluded.tx_index,
    tx_hash = excluded.tx_hash,
    event_type = excluded.event_type,
    owner = excluded.owner,
    expires_at_block = excluded.expires_at_block,
    old_expires_at_block = excluded.old_expires_at_block,
    content_type = excluded.content_type,
    payload = excluded.payload,
    string_annotations = excluded.string_annotations,
    numeric_annotations = excluded.numeric_annotations,
    extend_policy = excluded.extend_policy,
    operator = excluded.operator
"""

_HASH_LEN = 32
_ADDRESS_LEN = 20


class EventType(enum.IntEnum):
    """Kind of change an entity event records."""

    CREATED = 0
    UPDATED = 1
    DELETED = 2
    EXPIRED = 3
    EXTENDED = 4


@dataclass(frozen=True)
class EntityEvent:
    """One entity event as emitted by the chain; one row of entity_events."""

    block_number: int
    block_hash: bytes
    tx_index: int
    tx_hash: bytes
    log_index: int
    event_type: int
    entity_key: bytes
    owner: bytes | None = None
    expires_at_block: int | None = None
    old_expires_at_block: int | None = None
    content_type: str | None = None
    payload: bytes | None = None
    string_annotations: Sequence[tuple[str, str]] | None = None
    numeric_annotations: Sequence[tuple[str, int]] | None = None
    extend_policy: int | None = None
    operator: bytes | None = None


def _check_uint(value: int, bits: int, name: str) -> int:
    if not 0 <= value < 1 << bits:
        raise ValueError(f"{name} {value} does not fit in an unsigned {bits}-bit integer")
    return value


def _u64_as_i64(value: int | None, name: str) -> int | None:
    """Store a u64 in SQLite's signed column by two's-complement reinterpretation."""
    if value is None:
        return None
    _check_uint(value, 64, name)
    return value - (1 << 64) if value >= 1 << 63 else value


def _validate_blob_len(blob: bytes, expected: int, name: str) -> bytes:
    if len(blob) != expected:
        raise ValueError(f"{name} blob length {len(blob)}, expected {expected}")
    return bytes(blob)


def _nullable_blob(blob: bytes | None, expected: int, name: str) -> bytes | None:
    return None if blob is None else _validate_blob_len(blob, expected, name)


def _dumps(value: object) -> str:
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False)


def encode_string_map(pairs: Iterable[tuple[str, str]] | None) -> str | None:
    """Encode string annotations as a JSON array of [key, value] pairs."""
    if pairs is None:
        return None
    return _dumps([[key, value] for key, value in pairs])


def encode_numeric_map(pairs: Iterable[tuple[str, int]] | None) -> str | None:
    """Encode numeric annotations as a JSON array of [key, value] pairs."""
    if pairs is None:
        return None
    return _dumps(
        [[key, _check_uint(value, 64, "numeric annotation")] for key, value in pairs]
    )


def _row(event: EntityEvent) -> tuple:
    extend_policy = event.extend_policy
    if extend_policy is not None:
        _check_uint(extend_policy, 8, "extend_policy")
    return (
        _u64_as_i64(event.block_number, "block_number"),
        _validate_blob_len(event.block_hash, _HASH_LEN, "block_hash"),
        _check_uint(event.tx_index, 32, "tx_index"),
        _validate_blob_len(event.tx_hash, _HASH_LEN, "tx_hash"),
        _check_uint(event.log_index, 32, "log_index"),
        _check_uint(int(event.event_type), 8, "event_type"),
        _validate_blob_len(event.entity_key, _HASH_LEN, "entity_key"),
        _nullable_blob(event.owner, _ADDRESS_LEN, "owner"),
        _u64_as_i64(event.expires_at_block, "expires_at_block"),
        _u64_as_i64(event.old_expires_at_block, "old_expires_at_block"),
        event.content_type,
        None if event.payload is None else bytes(event.payload),
        encode_string_map(event.string_annotations),
        encode_numeric_map(event.numeric_annotations),
        extend_policy,
        _nullable_blob(event.operator, _ADDRESS_LEN, "operator"),
    )


def insert_batch(conn: sqlite3.Connection, events: Iterable[EntityEvent]) -> None:
    """Upsert the events atomically and advance the last processed block.

    An empty batch changes nothing. Any invalid event aborts the whole batch.
    """
    batch = list(events)
    if not batch:
        return
    with _transaction(conn):
        for event in batch:
            conn.execute(_INSERT_SQL, _row(event))
        _store_last_processed_block(conn, max(event.block_number for event in batch))