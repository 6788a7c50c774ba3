# glint-history

Historical storage for entity lifecycle events, kept in SQLite and read back
by block range.

Each event records a block number, the transaction and log it came from, its
type and the entity's key. It can also carry the entity's owner, expiry,
content type, payload, annotations, extend policy and operator. Events are
stored in an `entity_events` table. Bookkeeping values, such as the schema
version and the last processed block, are stored in a `sidecar_meta` table.

The package uses only the standard library (`sqlite3`).

## Installation

```
pip install .
```

To also install the test dependencies:

```
pip install .[test]
```

## Setting up a database (`glint_history.schema`)

```python
import sqlite3

from glint_history import schema

conn = sqlite3.connect("history.db")
schema.create_tables(conn)         # sets pragmas, creates tables and indexes
schema.check_schema_version(conn)  # raises schema.SchemaVersionError on mismatch
```

`create_tables` calls `configure_pragmas` first. That function switches the
database to WAL journaling with `synchronous = NORMAL`, a 256 MiB mmap, a
64 MB page cache and in-memory temp storage. The tables are created `STRICT`
when the SQLite library supports it (3.37 or newer).

`check_schema_version` raises `SchemaVersionError` when the stored version is
missing or differs from the current one. The package has no migrations.
`schema.drop_and_recreate(conn)` drops both tables and creates them again
empty.

## Writing events (`glint_history.writer`)

```python
from glint_history.writer import EntityEvent, EventType, insert_batch

event = EntityEvent(
    block_number=10,
    block_hash=b"\x00" * 32,
    tx_index=0,
    tx_hash=b"\x00" * 32,
    log_index=0,
    event_type=EventType.CREATED,
    entity_key=b"\x01" * 32,
    owner=b"\x01" * 20,
    expires_at_block=110,
    content_type="text/plain",
    payload=b"hello",
    string_annotations=[("color", "blue")],
    numeric_annotations=[("weight", 42)],
)
insert_batch(conn, [event])
```

`EventType` has the members `CREATED`, `UPDATED`, `DELETED`, `EXPIRED` and
`EXTENDED`, with the values 0 to 4.

`insert_batch` writes a batch in one transaction. Inside an open transaction
it uses a savepoint instead. Each event is an upsert on
`(entity_key, block_number, log_index)`, so writing the same event twice
leaves one row. After the write, the last processed block is set to the
highest block number in the batch:

```python
schema.get_last_processed_block(conn)  # -> 10
```

An empty batch changes nothing. If any event is invalid, `ValueError` is
raised and no event in the batch is written. An event is invalid when:

- a hash or key is not 32 bytes;
- an owner or operator is given and is not 20 bytes;
- an integer does not fit its unsigned width (u64 for blocks and numeric
  annotations, u32 for the transaction and log indexes, u8 for the event type
  and extend policy).

Annotations are stored as compact JSON lists of `[key, value]` pairs.
`encode_string_map` and `encode_numeric_map` produce that encoding. Both
return `None` for `None`:

```python
from glint_history.writer import encode_string_map

encode_string_map([("sk", "sv")])  # -> '[["sk","sv"]]'
```

## Reorgs and pruning

```python
schema.delete_events_from_block(conn, 20)  # removes block 20 and later, returns the count
schema.prune_before_block(conn, 20)        # removes blocks before 20, returns the count
schema.event_count(conn)
schema.set_last_processed_block(conn, 19)
```

## Reading by block range (`glint_history.provider`)

Filters are built from small expression classes:

- `Column` (or `col(name)`)
- `Literal` (or `lit(value)`)
- `BinaryExpr(left, Operator, right)`
- `Between(expr, low, high)`

```python
from glint_history.provider import (
    Between, BinaryExpr, HistoricalTableProvider, Operator, col, lit,
)

provider = HistoricalTableProvider(conn)
rows = provider.scan([Between(col("block_number"), lit(10), lit(20))])

bounded = BinaryExpr(
    BinaryExpr(col("block_number"), Operator.GT_EQ, lit(100)),
    Operator.AND,
    BinaryExpr(col("block_number"), Operator.LT_EQ, lit(500)),
)
rows = provider.scan([bounded], projection=[0, 1], limit=10)
```

`scan` returns a list of tuples ordered by block number, then by log index.
Each tuple holds the columns in `HistoricalTableProvider.schema` order:

- `block_number`, `event_type`, `entity_key`, `owner`
- `expires_at_block`, `content_type`, `payload`
- `string_annotations`, `numeric_annotations`
- `extend_policy`, `operator`

`projection` picks columns by index, and `limit` caps the number of rows.
Annotations come back as lists of `(key, value)` tuples, or `None`.

The filters are used only to find the block range. Every scan needs both a
lower and an upper bound on `block_number`. If either bound is missing,
`scan` raises `PlanError`. The bounds are found as follows:

- `=`, `<`, `<=`, `>`, `>=` and `BETWEEN` against non-negative integer
  literals count, on either side of the column.
- Conditions joined with `AND` are combined.
- Several filters in the list narrow the range together.

`extract_block_range(filters)` returns the inclusive `(lower, upper)` pair,
or `None`. `references_block_number(expr)` tells whether an expression
mentions the column. `supports_filters_pushdown` reports
`FilterPushDown.EXACT` for those filters and `FilterPushDown.UNSUPPORTED`
for the rest.

To read rows without a filter, use
`query_block_range(conn, from_block, to_block)`. It returns `HistoricalRow`
objects with the same fields as the columns above.

## What this package does not do

- It does not parse SQL. There is no query engine: filters are built
  directly from the expression classes, and filters that do not concern
  `block_number` are neither applied nor checked.
- It has no server and no command-line tool.
- It does not follow a chain or receive events by itself. The caller
  supplies `EntityEvent` batches and handles reorgs with the `schema`
  functions.