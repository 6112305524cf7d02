"""
Tag/Metadata Reconciler
=======================

Turns caller-supplied key/value pairs into rows scoped to one trace and
writes them with upsert semantics.

Row production is pure: ``reconcile_tags``/``reconcile_metadata`` dedupe keys
(last occurrence wins) and return plain row dicts. Nothing touches the
database until ``upsert_rows`` runs inside the caller's transaction.

Writes go out in batches of ``batch_size`` rows as dialect-native
``INSERT ... ON CONFLICT (request_id, key) DO UPDATE`` (PostgreSQL and
SQLite only). Keys are already unique per request_id when chunking happens,
so every batch applies the same conflict rule and chunking never changes the
result.
"""

import structlog
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

from sqlalchemy.ext.asyncio import AsyncSession

from tracestore.config import DEFAULT_BATCH_SIZE
from tracestore.entities import MAX_KEY_LENGTH, MAX_VALUE_LENGTH
from tracestore.exceptions import InvalidParameterError

log = structlog.get_logger()

Row = Dict[str, str]
KeyValuePairs = Union[Mapping[str, str], Iterable[Any]]


def _iter_pairs(pairs: Optional[KeyValuePairs]) -> Iterator[Tuple[str, str]]:
    """Yield (key, value) from a mapping, tuples, or key/value entities."""
    if not pairs:
        return
    if isinstance(pairs, Mapping):
        yield from pairs.items()
        return
    for pair in pairs:
        if hasattr(pair, "key") and hasattr(pair, "value"):
            yield pair.key, pair.value
        else:
            key, value = pair
            yield key, value


def _validate_pair(key: Any, value: Any, kind: str) -> Tuple[str, str]:
    if not isinstance(key, str) or not key:
        raise InvalidParameterError(f"Invalid {kind} key {key!r}: must be a non-empty string.")
    if len(key) > MAX_KEY_LENGTH:
        raise InvalidParameterError(
            f"{kind.capitalize()} key '{key[:32]}...' exceeds the maximum length of {MAX_KEY_LENGTH} characters."
        )
    if value is None:
        value = ""
    elif not isinstance(value, str):
        value = str(value)
    if len(value) > MAX_VALUE_LENGTH:
        raise InvalidParameterError(
            f"Value for {kind} '{key}' exceeds the maximum length of {MAX_VALUE_LENGTH} characters."
        )
    return key, value


def _reconcile(request_id: str, pairs: Optional[KeyValuePairs], kind: str) -> Dict[str, Row]:
    rows: Dict[str, Row] = {}
    for raw_key, raw_value in _iter_pairs(pairs):
        key, value = _validate_pair(raw_key, raw_value, kind)
        rows[key] = {"request_id": request_id, "key": key, "value": value}
    return rows


def reconcile_tags(
    request_id: str,
    pairs: Optional[KeyValuePairs],
    system_tags: Optional[KeyValuePairs] = None,
) -> List[Row]:
    """
    Produce tag rows for one trace.

    Args:
        request_id: Trace the rows belong to
        pairs: Caller-supplied tags
        system_tags: Store-synthesized tags, applied after caller tags so a
            caller can never overwrite them

    Returns:
        One row per distinct key
    """
    rows = _reconcile(request_id, pairs, "tag")
    rows.update(_reconcile(request_id, system_tags, "tag"))
    return list(rows.values())


def reconcile_metadata(request_id: str, pairs: Optional[KeyValuePairs]) -> List[Row]:
    """Produce request-metadata rows for one trace (same contract as tags)."""
    return list(_reconcile(request_id, pairs, "request metadata").values())


def chunked(rows: Sequence[Row], size: int) -> Iterator[Sequence[Row]]:
    """Split rows into consecutive batches of at most ``size``."""
    if size <= 0:
        raise ValueError(f"Batch size must be positive, received {size}")
    for start in range(0, len(rows), size):
        yield rows[start:start + size]


def _build_upsert(dialect_name: str, model, batch: Sequence[Row]):
    """Dialect-native INSERT ... ON CONFLICT DO UPDATE statement."""
    if dialect_name == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect_name == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise NotImplementedError(f"Upsert is not supported for dialect '{dialect_name}'")

    stmt = insert(model).values(list(batch))
    return stmt.on_conflict_do_update(
        index_elements=["request_id", "key"],
        set_={"value": stmt.excluded.value},
    )


async def upsert_rows(
    session: AsyncSession,
    model,
    rows: Sequence[Row],
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> int:
    """
    Write rows with upsert semantics inside the session's transaction.

    Args:
        session: Session with an open transaction
        model: SqlTraceTag or SqlTraceMetadata
        rows: Rows from reconcile_tags / reconcile_metadata
        batch_size: Rows per statement

    Returns:
        Number of rows written
    """
    if not rows:
        return 0

    dialect_name = session.get_bind().dialect.name
    batches = 0
    for batch in chunked(rows, batch_size):
        await session.execute(_build_upsert(dialect_name, model, batch))
        batches += 1

    log.debug(
        "Upserted trace rows",
        table=model.__tablename__,
        rows=len(rows),
        batches=batches,
    )
    return len(rows)
