"""
Shared Test Fixtures
====================

Database tests run against a temporary SQLite file through aiosqlite;
each test gets a fresh schema.
"""

import pytest
import pytest_asyncio
from typing import AsyncGenerator

from sqlalchemy import func, select

from tracestore.config import TraceStoreConfig
from tracestore.entities import Experiment
from tracestore.storage.trace import TraceStore

EXPERIMENT_ID = "1"
ARTIFACT_ROOT = "s3://bucket/experiments/1"


@pytest.fixture
def store_config(tmp_path) -> TraceStoreConfig:
    return TraceStoreConfig(database_url=f"sqlite+aiosqlite:///{tmp_path / 'traces.db'}")


@pytest_asyncio.fixture(scope="function")
async def store(store_config) -> AsyncGenerator[TraceStore, None]:
    """Connected TraceStore with all tables created."""
    trace_store = TraceStore(store_config)
    await trace_store.connect()
    await trace_store.ensure_tables_exist()
    try:
        yield trace_store
    finally:
        await trace_store.close()


@pytest_asyncio.fixture(scope="function")
async def experiment(store) -> Experiment:
    return await store.create_experiment(
        "default", artifact_location=ARTIFACT_ROOT, experiment_id=EXPERIMENT_ID
    )


async def count_rows(store: TraceStore, model) -> int:
    """Row count of a table, read outside the store's own operations."""
    async with store._engine.connect() as conn:
        return await conn.scalar(select(func.count()).select_from(model))
