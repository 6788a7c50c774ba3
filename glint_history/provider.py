"""Block-range scans over the historical event store.

A small filter-expression model describes query predicates. The provider
derives a mandatory block range from them and reads matching events from
SQLite in block and log order.
"""

from __future__ import annotations

import enum
import json
import sqlite3
import threading
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, fields
from typing import Union

from .writer import _u64_as_i64

BLOCK_NUMBER = "block_number"

_U64_MAX = 2**64 - 1
_U8_MASK = 0xFF
_HASH_LEN = 32
_ADDRESS_LEN = 20

_SELECT_SQL = """
SELECT block_number, event_type, entity_key, owner, expires_at_block,
       content_type, payload, string_annotations, numeric_annotations,
       extend_policy, operator
FROM entity_events
WHERE block_number >= ? AND block_number <= ?
ORDER BY block_number, log_index
"""


class Operator(enum.Enum):
    """Binary operators that may appear in a filter."""

    EQ = "="
    NOT_EQ = "!="
    LT = "<"
    LT_EQ = "<="
    GT = ">"
    GT_EQ = ">="
    AND = "AND"
    OR = "OR"


_FLIPPED = {
    Operator.LT: Operator.GT,
    Operator.LT_EQ: Operator.GT_EQ,
    Operator.GT: Operator.LT,
    Operator.GT_EQ: Operator.LT_EQ,
}


@dataclass(frozen=True)
class Column:
    """A reference to a column by name."""

    name: str


@dataclass(frozen=True)
class Literal:
    """A constant value."""

    value: object


@dataclass(frozen=True)
class BinaryExpr:
    """A binary comparison or logical combination of two expressions."""

    left: Expr
    op: Operator
    right: Expr


@dataclass(frozen=True)
class Between:
    """`expr BETWEEN low AND high`, inclusive on both ends."""

    expr: Expr
    low: Expr
    high: Expr


Expr = Union[Column, Literal, BinaryExpr, Between]


class FilterPushDown(enum.Enum):
    """How far the provider itself honours a filter."""

    EXACT = "exact"
    UNSUPPORTED = "unsupported"


class PlanError(Exception):
    """A query cannot be planned against the historical store."""


@dataclass(frozen=True)
class HistoricalRow:
    """One event as returned by a historical scan."""

    block_number: int
    event_type: int
    entity_key: bytes
    owner: bytes | None
    expires_at_block: int | None
    content_type: str | None
    payload: bytes | None
    string_annotations: list[tuple[str, str]] | None
    numeric_annotations: list[tuple[str, int]] | None
    extend_policy: int | None
    operator: bytes | None


COLUMNS: tuple[str, ...] = tuple(f.name for f in fields(HistoricalRow))


def col(name: str) -> Column:
    """Build a column reference."""
    return Column(name)


def lit(value: object) -> Literal:
    """Build a literal."""
    return Literal(value)


def _is_block_number_col(expr: Expr) -> bool:
    return isinstance(expr, Column) and expr.name == BLOCK_NUMBER


def _u64_literal(expr: Expr) -> int | None:
    if not isinstance(expr, Literal):
        return None
    value = expr.value
    if type(value) is int and 0 <= value <= _U64_MAX:
        return value
    return None


def _raise_lower(current: int | None, value: int) -> int:
    return value if current is None else max(current, value)


def _drop_upper(current: int | None, value: int) -> int:
    return value if current is None else min(current, value)


def _normalize_comparison(expr: BinaryExpr) -> tuple[Operator, int] | None:
    """Rewrite the comparison so the block number column is on the left."""
    if _is_block_number_col(expr.left):
        value = _u64_literal(expr.right)
        return None if value is None else (expr.op, value)
    if _is_block_number_col(expr.right):
        value = _u64_literal(expr.left)
        return None if value is None else (_FLIPPED.get(expr.op, expr.op), value)
    return None


def _apply_bound(
    op: Operator, value: int, lower: int | None, upper: int | None
) -> tuple[int | None, int | None]:
    if op is Operator.EQ:
        return _raise_lower(lower, value), _drop_upper(upper, value)
    if op is Operator.GT_EQ:
        return _raise_lower(lower, value), upper
    if op is Operator.GT:
        return _raise_lower(lower, min(value + 1, _U64_MAX)), upper
    if op is Operator.LT_EQ:
        return lower, _drop_upper(upper, value)
    if op is Operator.LT:
        return lower, _drop_upper(upper, max(value - 1, 0))
    return lower, upper


def extract_block_range(filters: Iterable[Expr]) -> tuple[int, int] | None:
    """Return the inclusive (lower, upper) block range the filters imply.

    Returns None unless both a lower and an upper bound can be derived.
    """
    lower: int | None = None
    upper: int | None = None
    for expr in filters:
        if isinstance(expr, BinaryExpr):
            if expr.op is Operator.AND:
                inner = extract_block_range([expr.left, expr.right])
                if inner is not None:
                    lower = _raise_lower(lower, inner[0])
                    upper = _drop_upper(upper, inner[1])
            else:
                comparison = _normalize_comparison(expr)
                if comparison is not None:
                    lower, upper = _apply_bound(*comparison, lower, upper)
        elif isinstance(expr, Between) and _is_block_number_col(expr.expr):
            low = _u64_literal(expr.low)
            high = _u64_literal(expr.high)
            if low is not None and high is not None:
                lower = _raise_lower(lower, low)
                upper = _drop_upper(upper, high)
    if lower is None or upper is None:
        return None
    return lower, upper


def references_block_number(expr: Expr) -> bool:
    """Whether the expression mentions the block number column."""
    if isinstance(expr, Column):
        return expr.name == BLOCK_NUMBER
    if isinstance(expr, BinaryExpr):
        return references_block_number(expr.left) or references_block_number(expr.right)
    if isinstance(expr, Between):
        return references_block_number(expr.expr)
    return False


def _fixed_blob(value: object, size: int, name: str) -> bytes | None:
    if not isinstance(value, bytes):
        return None
    if len(value) != size:
        raise ValueError(f"{name} has length {len(value)}, expected {size}")
    return value


def _masked(value: int | None, mask: int) -> int | None:
    return None if value is None else value & mask


def _decode_string_annotations(value: object) -> list[tuple[str, str]] | None:
    if not isinstance(value, str):
        return None
    pairs = json.loads(value)
    if not isinstance(pairs, list):
        raise ValueError(f"string annotations in DB are not a JSON array: {value!r}")
    result = []
    for pair in pairs:
        if not isinstance(pair, list) or not all(isinstance(part, str) for part in pair):
            raise ValueError(f"string annotation pair in DB is not a list of strings: {pair!r}")
        if len(pair) != 2:
            raise ValueError(
                f"malformed string annotation pair in DB: expected [key, value], got {pair!r}"
            )
        result.append((pair[0], pair[1]))
    return result


def _decode_numeric_annotations(value: object) -> list[tuple[str, int]] | None:
    if not isinstance(value, str):
        return None
    pairs = json.loads(value)
    if not isinstance(pairs, list):
        raise ValueError(f"numeric annotations in DB are not a JSON array: {value!r}")
    result = []
    for pair in pairs:
        key = pair[0] if isinstance(pair, list) and len(pair) > 0 else None
        number = pair[1] if isinstance(pair, list) and len(pair) > 1 else None
        if not (
            isinstance(key, str) and type(number) is int and 0 <= number <= _U64_MAX
        ):
            raise ValueError(
                f"malformed numeric annotation pair in DB: expected [key, value], got {pair!r}"
            )
        result.append((key, number))
    return result


def _decode_row(row: Sequence[object]) -> HistoricalRow:
    (
        block_number,
        event_type,
        entity_key,
        owner,
        expires_at_block,
        content_type,
        payload,
        string_annotations,
        numeric_annotations,
        extend_policy,
        operator,
    ) = row
    if not isinstance(entity_key, bytes):
        raise ValueError(f"entity_key is not a blob: {entity_key!r}")
    return HistoricalRow(
        block_number=block_number & _U64_MAX,
        event_type=event_type & _U8_MASK,
        entity_key=_fixed_blob(entity_key, _HASH_LEN, "entity_key"),
        owner=_fixed_blob(owner, _ADDRESS_LEN, "owner"),
        expires_at_block=_masked(expires_at_block, _U64_MAX),
        content_type=content_type if isinstance(content_type, str) else None,
        payload=payload if isinstance(payload, bytes) else None,
        string_annotations=_decode_string_annotations(string_annotations),
        numeric_annotations=_decode_numeric_annotations(numeric_annotations),
        extend_policy=_masked(extend_policy, _U8_MASK),
        operator=_fixed_blob(operator, _ADDRESS_LEN, "operator"),
    )


def query_block_range(
    conn: sqlite3.Connection, from_block: int, to_block: int
) -> list[HistoricalRow]:
    """Read every event with from_block <= block_number <= to_block, in log order."""
    params = (
        _u64_as_i64(from_block, "from_block"),
        _u64_as_i64(to_block, "to_block"),
    )
    return [_decode_row(row) for row in conn.execute(_SELECT_SQL, params)]


class HistoricalTableProvider:
    """Serves block-range scans of the entity event table."""

    schema: tuple[str, ...] = COLUMNS

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return "HistoricalTableProvider()"

    def supports_filters_pushdown(self, filters: Iterable[Expr]) -> list[FilterPushDown]:
        """Report, per filter, whether the provider applies it itself."""
        return [
            FilterPushDown.EXACT if references_block_number(expr) else FilterPushDown.UNSUPPORTED
            for expr in filters
        ]

    def scan(
        self,
        filters: Iterable[Expr],
        projection: Sequence[int] | None = None,
        limit: int | None = None,
    ) -> list[tuple[object, ...]]:
        """Return rows in the block range the filters imply, as tuples.

        `projection` picks columns by their index in `schema`; `limit` caps
        the number of rows. Raises PlanError when the filters do not bound
        block_number from both sides.
        """
        block_range = extract_block_range(list(filters))
        if block_range is None:
            raise PlanError(
                "historical queries require both lower and upper block_number bounds "
                "(e.g., WHERE block_number BETWEEN 100 AND 500)"
            )
        names = self.schema if projection is None else tuple(self.schema[i] for i in projection)
        with self._lock:
            rows = query_block_range(self._conn, *block_range)
        if limit is not None:
            rows = rows[:limit]
        return [tuple(getattr(row, name) for name in names) for row in rows]