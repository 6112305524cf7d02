"""
Tests for TraceStore lifecycle operations against SQLite.

Run with:
    pytest tests/storage/test_trace_store.py -v
"""

import pytest

from tracestore.entities import (
    ARTIFACT_LOCATION_TAG_KEY,
    MAX_PREVIEW_LENGTH,
    Experiment,
    TraceInfo,
    TraceStatus,
)
from tracestore.exceptions import (
    InvalidParameterError,
    InvalidTraceStateError,
    TraceNotFoundError,
    TraceTagDoesNotExistError,
)
from tracestore.storage.models import SqlTraceInfo, SqlTraceMetadata, SqlTraceTag
from tracestore.storage.trace import TraceStore, validate_delete_criteria
from tests.conftest import ARTIFACT_ROOT, EXPERIMENT_ID, count_rows

T0 = 1_700_000_000_000


def _expected_location(request_id: str) -> str:
    return f"{ARTIFACT_ROOT}/traces/{request_id}/artifacts"


# =============================================================================
# CONNECTION
# =============================================================================


class TestConnection:

    @pytest.mark.asyncio
    async def test_health_check(self, store):
        assert await store.health_check() is True

    @pytest.mark.asyncio
    async def test_health_check_when_disconnected(self, store_config):
        assert await TraceStore(store_config).health_check() is False

    @pytest.mark.asyncio
    async def test_operations_require_connection(self, store_config):
        with pytest.raises(RuntimeError, match="Not connected"):
            await TraceStore(store_config).get_trace_info("r1")


# =============================================================================
# START
# =============================================================================


class TestStartTrace:

    @pytest.mark.asyncio
    async def test_start_is_in_progress_with_location_tag(self, store, experiment):
        trace = await store.start_trace(
            EXPERIMENT_ID, T0, request_metadata={"m": "1"}, tags={"k": "v"}
        )

        assert trace.status == TraceStatus.IN_PROGRESS
        assert trace.execution_time_ms is None
        assert trace.tags == {
            "k": "v",
            ARTIFACT_LOCATION_TAG_KEY: _expected_location(trace.request_id),
        }
        assert trace.request_metadata == {"m": "1"}

        stored = await store.get_trace_info(trace.request_id)
        assert stored == trace

    @pytest.mark.asyncio
    async def test_generated_ids_are_unique(self, store, experiment):
        first = await store.start_trace(EXPERIMENT_ID, T0)
        second = await store.start_trace(EXPERIMENT_ID, T0)
        assert first.request_id != second.request_id
        assert len(first.request_id) == 32

    @pytest.mark.asyncio
    async def test_override_request_id(self, store, experiment):
        trace = await store.start_trace(EXPERIMENT_ID, T0, override_request_id="fixed-id")
        assert trace.request_id == "fixed-id"
        assert (await store.get_trace_info("fixed-id")).request_id == "fixed-id"

    @pytest.mark.asyncio
    async def test_override_too_long_rejected(self, store, experiment):
        with pytest.raises(InvalidParameterError):
            await store.start_trace(EXPERIMENT_ID, T0, override_request_id="x" * 51)
        assert await count_rows(store, SqlTraceInfo) == 0

    @pytest.mark.asyncio
    async def test_caller_cannot_overwrite_location_tag(self, store, experiment):
        trace = await store.start_trace(
            EXPERIMENT_ID, T0, tags={ARTIFACT_LOCATION_TAG_KEY: "elsewhere"}
        )
        assert trace.tags[ARTIFACT_LOCATION_TAG_KEY] == _expected_location(trace.request_id)

    @pytest.mark.asyncio
    async def test_unknown_experiment(self, store):
        with pytest.raises(TraceNotFoundError, match="No Experiment with id=missing"):
            await store.start_trace("missing", T0)

    @pytest.mark.asyncio
    async def test_inactive_experiment_rejected(self, store_config):
        async def resolver(experiment_id):
            return Experiment(experiment_id, "old", "s3://b", lifecycle_stage="deleted")

        trace_store = TraceStore(store_config, experiment_resolver=resolver)
        await trace_store.connect()
        try:
            with pytest.raises(InvalidParameterError, match="active"):
                await trace_store.start_trace("1", T0)
        finally:
            await trace_store.close()

    @pytest.mark.asyncio
    async def test_invalid_tag_writes_nothing(self, store, experiment):
        with pytest.raises(InvalidParameterError):
            await store.start_trace(EXPERIMENT_ID, T0, tags={"": "v"})
        assert await count_rows(store, SqlTraceInfo) == 0

    @pytest.mark.asyncio
    async def test_many_tags_span_batches(self, store, experiment):
        tags = {f"key-{i}": str(i) for i in range(250)}
        trace = await store.start_trace(EXPERIMENT_ID, T0, tags=tags)

        stored = await store.get_trace_info(trace.request_id)
        assert len(stored.tags) == 251
        assert stored.tags["key-249"] == "249"


class TestStartTraceV3:

    @pytest.mark.asyncio
    async def test_keeps_declared_state(self, store, experiment):
        trace = await store.start_trace_v3(TraceInfo(
            request_id=None,
            experiment_id=EXPERIMENT_ID,
            timestamp_ms=T0,
            status=TraceStatus.OK,
            execution_time_ms=250,
            client_request_id="client-1",
            request_preview="q" * (MAX_PREVIEW_LENGTH + 10),
            response_preview="answer",
            tags={"k": "v"},
            request_metadata={"m": "1"},
        ))

        assert trace.request_id.startswith("tr-")
        stored = await store.get_trace_info(trace.request_id)
        assert stored.status == TraceStatus.OK
        assert stored.execution_time_ms == 250
        assert stored.client_request_id == "client-1"
        assert len(stored.request_preview) == MAX_PREVIEW_LENGTH
        assert stored.request_preview.endswith("...")
        assert stored.response_preview == "answer"
        assert stored.tags["k"] == "v"
        assert ARTIFACT_LOCATION_TAG_KEY in stored.tags
        assert stored.request_metadata == {"m": "1"}

    @pytest.mark.asyncio
    async def test_uses_supplied_trace_id(self, store, experiment):
        trace = await store.start_trace_v3(
            TraceInfo(request_id="tr-given", experiment_id=EXPERIMENT_ID, timestamp_ms=T0)
        )
        assert trace.request_id == "tr-given"

    @pytest.mark.asyncio
    async def test_explicit_pairs_override_embedded(self, store, experiment):
        trace = await store.start_trace_v3(
            TraceInfo(request_id=None, experiment_id=EXPERIMENT_ID, timestamp_ms=T0, tags={"k": "embedded"}),
            tags={"k": "explicit"},
        )
        assert trace.tags["k"] == "explicit"

    @pytest.mark.asyncio
    async def test_terminal_v3_trace_cannot_be_ended(self, store, experiment):
        trace = await store.start_trace_v3(TraceInfo(
            request_id=None, experiment_id=EXPERIMENT_ID, timestamp_ms=T0, status=TraceStatus.OK,
        ))
        with pytest.raises(InvalidTraceStateError, match="'OK'"):
            await store.end_trace(trace.request_id, T0 + 10, TraceStatus.ERROR)


# =============================================================================
# END
# =============================================================================


class TestEndTrace:

    @pytest.mark.asyncio
    async def test_end_computes_execution_time(self, store, experiment):
        trace = await store.start_trace(EXPERIMENT_ID, T0)
        ended = await store.end_trace(trace.request_id, T0 + 1234, TraceStatus.ERROR)

        assert ended.status == TraceStatus.ERROR
        assert ended.execution_time_ms == 1234

        stored = await store.get_trace_info(trace.request_id)
        assert stored.status == TraceStatus.ERROR
        assert stored.execution_time_ms == 1234

    @pytest.mark.asyncio
    async def test_end_accepts_status_string(self, store, experiment):
        trace = await store.start_trace(EXPERIMENT_ID, T0)
        ended = await store.end_trace(trace.request_id, T0 + 1, "OK")
        assert ended.status == TraceStatus.OK

    @pytest.mark.asyncio
    async def test_end_merges_tags_and_metadata(self, store, experiment):
        trace = await store.start_trace(
            EXPERIMENT_ID, T0, request_metadata={"m": "start"}, tags={"a": "1"}
        )
        ended = await store.end_trace(
            trace.request_id, T0 + 5, TraceStatus.OK,
            request_metadata={"m": "end", "n": "2"},
            tags={"a": "2", "b": "3"},
        )

        assert ended.request_metadata == {"m": "end", "n": "2"}
        assert ended.tags["a"] == "2"
        assert ended.tags["b"] == "3"
        assert ARTIFACT_LOCATION_TAG_KEY in ended.tags

    @pytest.mark.parametrize("status", [TraceStatus.IN_PROGRESS, "TRACE_STATUS_UNSPECIFIED", "DONE"])
    @pytest.mark.asyncio
    async def test_non_terminal_status_rejected(self, store, experiment, status):
        trace = await store.start_trace(EXPERIMENT_ID, T0)
        with pytest.raises(InvalidParameterError, match="OK, ERROR"):
            await store.end_trace(trace.request_id, T0 + 1, status)
        assert (await store.get_trace_info(trace.request_id)).status == TraceStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_end_twice_rejected(self, store, experiment):
        trace = await store.start_trace(EXPERIMENT_ID, T0)
        await store.end_trace(trace.request_id, T0 + 10, TraceStatus.OK)

        with pytest.raises(InvalidTraceStateError):
            await store.end_trace(trace.request_id, T0 + 99, TraceStatus.ERROR)

        stored = await store.get_trace_info(trace.request_id)
        assert stored.status == TraceStatus.OK
        assert stored.execution_time_ms == 10

    @pytest.mark.asyncio
    async def test_end_missing_trace(self, store, experiment):
        with pytest.raises(TraceNotFoundError, match="missing"):
            await store.end_trace("missing", T0, TraceStatus.OK)

    @pytest.mark.asyncio
    async def test_end_cannot_replace_location_tag(self, store, experiment):
        trace = await store.start_trace(EXPERIMENT_ID, T0)

        with pytest.raises(InvalidParameterError, match="reserved"):
            await store.end_trace(
                trace.request_id, T0 + 5, TraceStatus.OK,
                tags={ARTIFACT_LOCATION_TAG_KEY: "elsewhere", "k": "v"},
            )

        stored = await store.get_trace_info(trace.request_id)
        assert stored.status == TraceStatus.IN_PROGRESS
        assert stored.tags == {ARTIFACT_LOCATION_TAG_KEY: _expected_location(trace.request_id)}


# =============================================================================
# LOOKUP AND TAGS
# =============================================================================


class TestTags:

    @pytest.mark.asyncio
    async def test_get_missing_trace(self, store, experiment):
        with pytest.raises(TraceNotFoundError):
            await store.get_trace_info("missing")

    @pytest.mark.asyncio
    async def test_set_tag_twice_keeps_latest(self, store, experiment):
        trace = await store.start_trace(EXPERIMENT_ID, T0)
        await store.set_trace_tag(trace.request_id, "k", "first")
        await store.set_trace_tag(trace.request_id, "k", "second")

        # location tag + k
        assert await count_rows(store, SqlTraceTag) == 2
        assert (await store.get_trace_tag(trace.request_id, "k")).value == "second"

    @pytest.mark.asyncio
    async def test_set_tag_on_missing_trace(self, store, experiment):
        with pytest.raises(TraceNotFoundError):
            await store.set_trace_tag("missing", "k", "v")
        assert await count_rows(store, SqlTraceTag) == 0

    @pytest.mark.asyncio
    async def test_delete_tag_is_not_idempotent(self, store, experiment):
        trace = await store.start_trace(EXPERIMENT_ID, T0, tags={"k": "v"})

        with pytest.raises(TraceTagDoesNotExistError) as exc_info:
            await store.delete_trace_tag(trace.request_id, "never-set")
        assert "never-set" in str(exc_info.value)
        assert trace.request_id in str(exc_info.value)

        await store.delete_trace_tag(trace.request_id, "k")
        assert "k" not in (await store.get_trace_info(trace.request_id)).tags

        with pytest.raises(TraceTagDoesNotExistError):
            await store.delete_trace_tag(trace.request_id, "k")


    @pytest.mark.asyncio
    async def test_set_tag_cannot_replace_location_tag(self, store, experiment):
        trace = await store.start_trace(EXPERIMENT_ID, T0)

        with pytest.raises(InvalidParameterError, match="reserved"):
            await store.set_trace_tag(trace.request_id, ARTIFACT_LOCATION_TAG_KEY, "elsewhere")

        tag = await store.get_trace_tag(trace.request_id, ARTIFACT_LOCATION_TAG_KEY)
        assert tag.value == _expected_location(trace.request_id)

    @pytest.mark.asyncio
    async def test_location_tag_cannot_be_deleted(self, store, experiment):
        trace = await store.start_trace(EXPERIMENT_ID, T0)

        with pytest.raises(InvalidParameterError, match="reserved"):
            await store.delete_trace_tag(trace.request_id, ARTIFACT_LOCATION_TAG_KEY)

        stored = await store.get_trace_info(trace.request_id)
        assert stored.tags == {ARTIFACT_LOCATION_TAG_KEY: _expected_location(trace.request_id)}

# =============================================================================
# BULK DELETE
# =============================================================================


class TestValidateDeleteCriteria:

    def test_requires_one_criterion(self):
        with pytest.raises(InvalidParameterError, match="Either"):
            validate_delete_criteria(None, None, None)

    def test_empty_request_ids_counts_as_missing(self):
        with pytest.raises(InvalidParameterError, match="Either"):
            validate_delete_criteria(None, None, [])

    def test_both_criteria_rejected(self):
        with pytest.raises(InvalidParameterError, match="Only one"):
            validate_delete_criteria(T0, None, ["a"])

    def test_max_traces_with_ids_rejected(self):
        with pytest.raises(InvalidParameterError, match="can't be specified"):
            validate_delete_criteria(None, 3, ["a"])

    @pytest.mark.parametrize("max_traces", [0, -4, True])
    def test_max_traces_must_be_positive(self, max_traces):
        with pytest.raises(InvalidParameterError, match=f"received {max_traces}"):
            validate_delete_criteria(T0, max_traces, None)

    def test_zero_cutoff_is_valid(self):
        validate_delete_criteria(0, None, None)


class TestDeleteTraces:

    async def _start_five(self, store):
        traces = []
        for i in range(5):
            traces.append(await store.start_trace(EXPERIMENT_ID, T0 + i * 1000, tags={"i": str(i)}))
        return traces

    @pytest.mark.asyncio
    async def test_max_traces_deletes_oldest(self, store, experiment):
        traces = await self._start_five(store)

        deleted = await store.delete_traces(
            EXPERIMENT_ID, max_timestamp_millis=T0 + 10_000, max_traces=2
        )

        assert deleted == 2
        for trace in traces[:2]:
            with pytest.raises(TraceNotFoundError):
                await store.get_trace_info(trace.request_id)
        for trace in traces[2:]:
            assert (await store.get_trace_info(trace.request_id)).tags["i"] == trace.tags["i"]

    @pytest.mark.asyncio
    async def test_cutoff_is_inclusive(self, store, experiment):
        await self._start_five(store)
        deleted = await store.delete_traces(EXPERIMENT_ID, max_timestamp_millis=T0 + 2000)
        assert deleted == 3
        assert await count_rows(store, SqlTraceInfo) == 2

    @pytest.mark.asyncio
    async def test_delete_by_request_ids_cascades(self, store, experiment):
        traces = await self._start_five(store)
        trace = await store.start_trace(
            EXPERIMENT_ID, T0, request_metadata={"m": "1"}, tags={"k": "v"}
        )

        deleted = await store.delete_traces(
            EXPERIMENT_ID, request_ids=[trace.request_id, traces[0].request_id, "unknown"]
        )

        assert deleted == 2
        assert await count_rows(store, SqlTraceInfo) == 4
        assert await count_rows(store, SqlTraceMetadata) == 0
        # two tags (i + location) per remaining trace
        assert await count_rows(store, SqlTraceTag) == 8

    @pytest.mark.asyncio
    async def test_other_experiments_untouched(self, store, experiment):
        await store.create_experiment("other", artifact_location="/tmp/other", experiment_id="2")
        other = await store.start_trace("2", T0)
        await self._start_five(store)

        deleted = await store.delete_traces(EXPERIMENT_ID, max_timestamp_millis=T0 + 10_000)

        assert deleted == 5
        assert (await store.get_trace_info(other.request_id)).experiment_id == "2"

    @pytest.mark.asyncio
    async def test_invalid_criteria_delete_nothing(self, store, experiment):
        traces = await self._start_five(store)

        with pytest.raises(InvalidParameterError):
            await store.delete_traces(
                EXPERIMENT_ID, max_timestamp_millis=T0 + 10_000, request_ids=[traces[0].request_id]
            )
        with pytest.raises(InvalidParameterError, match="received 0"):
            await store.delete_traces(EXPERIMENT_ID, max_timestamp_millis=T0 + 10_000, max_traces=0)

        assert await count_rows(store, SqlTraceInfo) == 5


# =============================================================================
# END TO END
# =============================================================================


@pytest.mark.asyncio
async def test_start_end_get_flow(store, experiment):
    t0, t1 = T0, T0 + 4321

    trace = await store.start_trace(EXPERIMENT_ID, t0, [], [("k", "v")])
    await store.end_trace(trace.request_id, t1, "OK", [], [])
    stored = await store.get_trace_info(trace.request_id)

    assert stored.status == TraceStatus.OK
    assert stored.execution_time_ms == t1 - t0
    assert stored.tags == {
        "k": "v",
        ARTIFACT_LOCATION_TAG_KEY: _expected_location(trace.request_id),
    }
    assert stored.request_metadata == {}
