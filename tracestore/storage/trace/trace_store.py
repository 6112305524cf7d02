"""
Trace Lifecycle Store
=====================

Creates, completes, looks up, tags and purges traces against the relational
backend.

Features:
- Request id generation with explicit override
- Atomic trace + tags + metadata writes (one transaction per operation)
- Upsert reconciliation of tags/metadata in fixed-size batches
- Forward-only status transitions with derived execution time
- Validated multi-criteria bulk delete

Pattern follows the TraceStorageService connection lifecycle
(connect / ensure_tables_exist / close).
"""

import structlog
from contextlib import asynccontextmanager
from dataclasses import replace
from typing import AsyncGenerator, Awaitable, Callable, Iterable, List, Optional, Sequence, Union

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased, selectinload

from tracestore.config import TraceStoreConfig
from tracestore.entities import (
    ARTIFACT_LOCATION_TAG_KEY,
    Experiment,
    TraceInfo,
    TraceStatus,
    TraceTag,
    generate_request_id,
    generate_trace_id_v3,
    truncate_preview,
    MAX_REQUEST_ID_LENGTH,
)
from tracestore.exceptions import (
    InvalidParameterError,
    InvalidTraceStateError,
    TraceInternalError,
    TraceNotFoundError,
    TraceTagDoesNotExistError,
)
from tracestore.storage import database
from tracestore.storage.experiments import (
    artifact_location_tag,
    check_experiment_is_active,
    create_experiment,
    get_experiment,
)
from tracestore.storage.models import SqlTraceInfo, SqlTraceMetadata, SqlTraceTag
from tracestore.storage.reconciler import (
    KeyValuePairs,
    Row,
    reconcile_metadata,
    reconcile_tags,
    upsert_rows,
)

log = structlog.get_logger()

ExperimentResolver = Callable[[str], Awaitable[Experiment]]
LocationTagFactory = Callable[[Experiment, str], TraceTag]


def validate_delete_criteria(
    max_timestamp_millis: Optional[int],
    max_traces: Optional[int],
    request_ids: Optional[Sequence[str]],
) -> None:
    """
    Check bulk-delete criteria before anything is deleted.

    Exactly one of max_timestamp_millis / request_ids must be given;
    max_traces only combines with max_timestamp_millis and must be positive.

    Raises:
        InvalidParameterError: on any contradictory or malformed combination
    """
    has_cutoff = max_timestamp_millis is not None
    has_ids = bool(request_ids)

    if not has_cutoff and not has_ids:
        raise InvalidParameterError(
            "Either `max_timestamp_millis` or `request_ids` must be specified."
        )
    if has_cutoff and has_ids:
        raise InvalidParameterError(
            "Only one of `max_timestamp_millis` and `request_ids` can be specified."
        )
    if has_ids and max_traces is not None:
        raise InvalidParameterError(
            "`max_traces` can't be specified if `request_ids` is specified."
        )
    if max_traces is not None and (
        isinstance(max_traces, bool) or not isinstance(max_traces, int) or max_traces <= 0
    ):
        raise InvalidParameterError(
            f"`max_traces` must be a positive integer, received {max_traces}."
        )


class TraceStore:
    """
    Persistence for trace lifecycle metadata.

    Example:
        store = TraceStore(TraceStoreConfig.from_env())
        await store.connect()
        await store.ensure_tables_exist()

        trace = await store.start_trace("1", timestamp_ms=1700000000000, tags={"k": "v"})
        trace = await store.end_trace(trace.request_id, 1700000000500, TraceStatus.OK)
        deleted = await store.delete_traces("1", max_timestamp_millis=1700000001000)

        await store.close()
    """

    def __init__(
        self,
        config: Optional[TraceStoreConfig] = None,
        experiment_resolver: Optional[ExperimentResolver] = None,
        location_tag_factory: Optional[LocationTagFactory] = None,
    ):
        self.config = config or TraceStoreConfig()
        self._experiment_resolver = experiment_resolver or self.get_experiment
        self._location_tag_factory = location_tag_factory or artifact_location_tag
        self._engine = None
        self._session_maker = None
        self._connected = False

        log.info("TraceStore initialized", url=self.config.safe_url)

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def connect(self):
        """Create the engine and session factory."""
        if self._connected:
            log.debug("Already connected")
            return

        self._engine = database.create_engine(self.config)
        self._session_maker = database.create_session_factory(self._engine)
        self._connected = True
        log.info("TraceStore connected", url=self.config.safe_url)

    async def ensure_tables_exist(self):
        """Create the trace tables if they don't exist."""
        if not self._connected:
            await self.connect()
        await database.create_tables(self._engine)

    async def close(self):
        """Dispose the connection pool."""
        if not self._connected:
            return

        await self._engine.dispose()
        self._engine = None
        self._session_maker = None
        self._connected = False
        log.info("TraceStore disconnected")

    async def health_check(self) -> bool:
        if not self._connected:
            return False
        return await database.check_db_health(self._engine)

    @asynccontextmanager
    async def _transaction(self, failure_message: str) -> AsyncGenerator[AsyncSession, None]:
        """
        One transaction per logical operation.

        Store errors raised in the block roll back and propagate as-is;
        engine errors roll back and surface as TraceInternalError.
        """
        if not self._connected:
            raise RuntimeError("Not connected. Call connect() first.")

        try:
            async with database.transaction_scope(self._session_maker) as session:
                yield session
        except SQLAlchemyError as e:
            log.error("Transaction rolled back", operation=failure_message, error=str(e))
            raise TraceInternalError(failure_message, original_error=e) from e

    # ------------------------------------------------------------------
    # Experiments
    # ------------------------------------------------------------------

    async def get_experiment(self, experiment_id: str) -> Experiment:
        """Default experiment resolver backed by the experiments table."""
        async with self._transaction(f"error getting experiment '{experiment_id}'") as session:
            return await get_experiment(session, experiment_id)

    async def create_experiment(
        self,
        name: str,
        artifact_location: Optional[str] = None,
        experiment_id: Optional[str] = None,
    ) -> Experiment:
        """Register an experiment that traces can be started under."""
        async with self._transaction(f"failed to create experiment '{name}'") as session:
            return await create_experiment(
                session, name, artifact_location=artifact_location, experiment_id=experiment_id
            )

    async def _resolve_active_experiment(self, experiment_id: str) -> Experiment:
        experiment = await self._experiment_resolver(experiment_id)
        check_experiment_is_active(experiment)
        return experiment

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    async def start_trace(
        self,
        experiment_id: str,
        timestamp_ms: int,
        request_metadata: Optional[KeyValuePairs] = None,
        tags: Optional[KeyValuePairs] = None,
        override_request_id: Optional[str] = None,
    ) -> TraceInfo:
        """
        Create a new in-progress trace.

        Args:
            experiment_id: Owning experiment (must exist and be active)
            timestamp_ms: Start time in milliseconds since epoch
            request_metadata: Metadata pairs
            tags: Tag pairs
            override_request_id: Use this request id instead of generating one

        Returns:
            The created TraceInfo, including the synthesized artifact-location tag

        Raises:
            TraceNotFoundError: experiment does not exist
            TraceInternalError: location synthesis or write failed
        """
        experiment = await self._resolve_active_experiment(experiment_id)
        request_id = self._choose_request_id(override_request_id, generate_request_id)

        trace = TraceInfo(
            request_id=request_id,
            experiment_id=str(experiment_id),
            timestamp_ms=timestamp_ms,
            status=TraceStatus.IN_PROGRESS,
        )
        return await self._create_trace(experiment, trace, request_metadata, tags)

    async def start_trace_v3(
        self,
        trace_info: TraceInfo,
        request_metadata: Optional[KeyValuePairs] = None,
        tags: Optional[KeyValuePairs] = None,
        override_request_id: Optional[str] = None,
    ) -> TraceInfo:
        """
        Create a trace from a v3 record, keeping its declared state.

        Unlike start_trace the initial status, execution time and previews come
        from the caller. Pairs embedded in ``trace_info`` are reconciled first;
        explicit ``request_metadata``/``tags`` override them key by key.
        """
        experiment = await self._resolve_active_experiment(trace_info.experiment_id)

        request_id = self._choose_request_id(
            override_request_id or trace_info.request_id, generate_trace_id_v3
        )

        trace = replace(
            trace_info,
            request_id=request_id,
            experiment_id=str(trace_info.experiment_id),
            status=TraceStatus.from_string(trace_info.status),
            request_preview=truncate_preview(trace_info.request_preview),
            response_preview=truncate_preview(trace_info.response_preview),
            tags={},
            request_metadata={},
        )
        all_tags = list(trace_info.tags.items()) + _pairs_list(tags)
        all_metadata = list(trace_info.request_metadata.items()) + _pairs_list(request_metadata)
        return await self._create_trace(experiment, trace, all_metadata, all_tags)

    @staticmethod
    def _choose_request_id(candidate: Optional[str], generate: Callable[[], str]) -> str:
        if not candidate:
            return generate()
        if len(candidate) > MAX_REQUEST_ID_LENGTH:
            raise InvalidParameterError(
                f"request_id '{candidate}' exceeds the maximum length of {MAX_REQUEST_ID_LENGTH} characters."
            )
        return candidate

    async def _create_trace(
        self,
        experiment: Experiment,
        trace: TraceInfo,
        request_metadata: Optional[KeyValuePairs],
        tags: Optional[KeyValuePairs],
    ) -> TraceInfo:
        failure_message = f"failed to create trace for experiment_id '{trace.experiment_id}'"

        try:
            location_tag = self._location_tag_factory(experiment, trace.request_id)
        except Exception as e:
            log.error(
                "Artifact location synthesis failed",
                experiment_id=trace.experiment_id,
                request_id=trace.request_id,
                error=str(e),
            )
            raise TraceInternalError(failure_message, original_error=e) from e

        tag_rows = reconcile_tags(trace.request_id, tags, system_tags=[location_tag])
        metadata_rows = reconcile_metadata(trace.request_id, request_metadata)

        async with self._transaction(failure_message) as session:
            session.add(SqlTraceInfo(
                request_id=trace.request_id,
                experiment_id=trace.experiment_id,
                timestamp_ms=trace.timestamp_ms,
                execution_time_ms=trace.execution_time_ms,
                status=trace.status.value,
                client_request_id=trace.client_request_id,
                request_preview=trace.request_preview,
                response_preview=trace.response_preview,
            ))
            # Trace row must exist before child rows reference it
            await session.flush()
            await self._write_collections(session, tag_rows, metadata_rows)

        log.info(
            "Trace started",
            request_id=trace.request_id,
            experiment_id=trace.experiment_id,
            status=trace.status.value,
            tags=len(tag_rows),
            metadata=len(metadata_rows),
        )
        return replace(
            trace,
            tags={row["key"]: row["value"] for row in tag_rows},
            request_metadata={row["key"]: row["value"] for row in metadata_rows},
        )

    async def _write_collections(
        self,
        session: AsyncSession,
        tag_rows: Sequence[Row],
        metadata_rows: Sequence[Row],
    ):
        await upsert_rows(session, SqlTraceTag, tag_rows, self.config.batch_size)
        await upsert_rows(session, SqlTraceMetadata, metadata_rows, self.config.batch_size)

    # ------------------------------------------------------------------
    # Complete
    # ------------------------------------------------------------------

    async def end_trace(
        self,
        request_id: str,
        timestamp_ms: int,
        status: Union[TraceStatus, str],
        request_metadata: Optional[KeyValuePairs] = None,
        tags: Optional[KeyValuePairs] = None,
    ) -> TraceInfo:
        """
        Move an in-progress trace to a terminal status.

        ``execution_time_ms`` is computed as ``timestamp_ms`` minus the
        trace's start timestamp. Extra tags/metadata are upserted in the same
        transaction.

        Raises:
            InvalidParameterError: status is not OK or ERROR, or tags include the
                reserved artifact-location key
            TraceNotFoundError: trace does not exist
            InvalidTraceStateError: trace is not in progress
            TraceInternalError: the update failed (nothing is applied)
        """
        end_status = TraceStatus.from_string(status)
        if not end_status.is_terminal:
            raise InvalidParameterError(
                f"Invalid trace status '{getattr(status, 'value', status)}'. "
                f"A trace can only be ended with one of: OK, ERROR."
            )

        tag_rows = reconcile_tags(request_id, tags)
        _check_not_reserved(row["key"] for row in tag_rows)
        metadata_rows = reconcile_metadata(request_id, request_metadata)

        async with self._transaction(f"failed to update trace with request_id '{request_id}'") as session:
            current = await session.scalar(
                select(SqlTraceInfo.status).where(SqlTraceInfo.request_id == request_id)
            )
            if current is None:
                raise TraceNotFoundError(f"Trace with request_id '{request_id}' not found.")
            if current != TraceStatus.IN_PROGRESS.value:
                log.warning("Rejected end of finished trace", request_id=request_id, status=current)
                raise InvalidTraceStateError(request_id, current)

            result = await session.execute(
                update(SqlTraceInfo)
                .where(SqlTraceInfo.request_id == request_id)
                .where(SqlTraceInfo.status == TraceStatus.IN_PROGRESS.value)
                .values(
                    status=end_status.value,
                    execution_time_ms=timestamp_ms - SqlTraceInfo.timestamp_ms,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                # Ended or deleted by a concurrent caller since the read above
                log.warning("Concurrent end detected", request_id=request_id)
                raise InvalidTraceStateError(request_id)

            await self._write_collections(session, tag_rows, metadata_rows)

        trace = await self.get_trace_info(request_id)
        log.info(
            "Trace ended",
            request_id=request_id,
            status=end_status.value,
            execution_time_ms=trace.execution_time_ms,
        )
        return trace

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get_trace_info(self, request_id: str) -> TraceInfo:
        """
        Fetch a trace with its tags and metadata.

        Raises:
            TraceNotFoundError: trace does not exist
        """
        async with self._transaction("error getting trace info") as session:
            sql_trace = await self._get_sql_trace_info(session, request_id)
            trace = sql_trace.to_entity()

        log.debug("Trace fetched", request_id=request_id)
        return trace

    async def _get_sql_trace_info(self, session: AsyncSession, request_id: str) -> SqlTraceInfo:
        result = await session.execute(
            select(SqlTraceInfo)
            .where(SqlTraceInfo.request_id == request_id)
            .options(
                selectinload(SqlTraceInfo.tags),
                selectinload(SqlTraceInfo.request_metadata),
            )
            .execution_options(populate_existing=True)
        )
        sql_trace = result.scalar_one_or_none()
        if sql_trace is None:
            raise TraceNotFoundError(f"Trace with request_id '{request_id}' not found.")
        return sql_trace

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    async def set_trace_tag(self, request_id: str, key: str, value: str):
        """Set a tag on a trace, replacing any existing value for the key."""
        rows = reconcile_tags(request_id, [(key, value)])
        _check_not_reserved([key])

        async with self._transaction("failed to create trace_tag") as session:
            exists = await session.scalar(
                select(SqlTraceInfo.request_id).where(SqlTraceInfo.request_id == request_id)
            )
            if exists is None:
                raise TraceNotFoundError(f"Trace with request_id '{request_id}' not found.")
            await upsert_rows(session, SqlTraceTag, rows, self.config.batch_size)

        log.debug("Trace tag set", request_id=request_id, key=key)

    async def get_trace_tag(self, request_id: str, key: str) -> TraceTag:
        """
        Fetch one tag.

        Raises:
            TraceTagDoesNotExistError: no tag with this key on the trace
        """
        async with self._transaction("error getting trace tag") as session:
            tag = await session.get(SqlTraceTag, {"request_id": request_id, "key": key})
            if tag is None:
                raise TraceTagDoesNotExistError(request_id, key)
            return tag.to_entity()

    async def delete_trace_tag(self, trace_id: str, key: str):
        """
        Delete one tag.

        Not idempotent: deleting a missing tag raises.

        Raises:
            InvalidParameterError: key is the reserved artifact-location tag
            TraceTagDoesNotExistError: no tag with this key on the trace
        """
        _check_not_reserved([key])

        async with self._transaction("error deleting trace tag") as session:
            tag = await session.get(SqlTraceTag, {"request_id": trace_id, "key": key})
            if tag is None:
                raise TraceTagDoesNotExistError(trace_id, key)
            await session.delete(tag)

        log.debug("Trace tag deleted", request_id=trace_id, key=key)

    # ------------------------------------------------------------------
    # Bulk delete
    # ------------------------------------------------------------------

    async def delete_traces(
        self,
        experiment_id: str,
        max_timestamp_millis: Optional[int] = None,
        max_traces: Optional[int] = None,
        request_ids: Optional[List[str]] = None,
    ) -> int:
        """
        Delete traces of one experiment.

        Args:
            experiment_id: Experiment whose traces are candidates
            max_timestamp_millis: Delete traces started at or before this time
            max_traces: With a cutoff, delete at most this many, oldest first
            request_ids: Delete exactly these traces

        Returns:
            Number of traces deleted (their tags and metadata go with them)

        Raises:
            InvalidParameterError: criteria are missing or contradictory
            TraceInternalError: the delete failed
        """
        validate_delete_criteria(max_timestamp_millis, max_traces, request_ids)

        def criteria(model):
            clauses = [model.experiment_id == str(experiment_id)]
            if max_timestamp_millis is not None:
                clauses.append(model.timestamp_ms <= max_timestamp_millis)
            if request_ids:
                clauses.append(model.request_id.in_(list(request_ids)))
            return clauses

        filters = criteria(SqlTraceInfo)
        if max_traces is not None:
            # Aliased so the subquery is not correlated to the DELETE target
            candidate = aliased(SqlTraceInfo)
            oldest = (
                select(candidate.request_id)
                .where(*criteria(candidate))
                .order_by(candidate.timestamp_ms.asc(), candidate.request_id.asc())
                .limit(max_traces)
            )
            filters.append(SqlTraceInfo.request_id.in_(oldest.scalar_subquery()))

        async with self._transaction("failed to delete traces") as session:
            result = await session.execute(
                delete(SqlTraceInfo)
                .where(*filters)
                .execution_options(synchronize_session=False)
            )
            deleted = result.rowcount

        log.info(
            "Traces deleted",
            experiment_id=experiment_id,
            deleted=deleted,
            max_timestamp_millis=max_timestamp_millis,
            max_traces=max_traces,
            request_ids=len(request_ids) if request_ids else 0,
        )
        return deleted


def _pairs_list(pairs: Optional[KeyValuePairs]) -> list:
    if not pairs:
        return []
    if hasattr(pairs, "items"):
        return list(pairs.items())
    return list(pairs)


def _check_not_reserved(keys: Iterable[str]) -> None:
    # The artifact-location tag is written once, at creation
    for key in keys:
        if key == ARTIFACT_LOCATION_TAG_KEY:
            raise InvalidParameterError(
                f"Tag '{ARTIFACT_LOCATION_TAG_KEY}' is reserved and cannot be set or deleted."
            )
