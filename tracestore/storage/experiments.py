"""
Experiment Collaborator
=======================

Default experiment lookup and artifact-location synthesis used by the
trace store. Both are swappable: TraceStore accepts any async resolver and
any tag factory with the same signatures.
"""

import posixpath
import time
import urllib.parse
from typing import Optional
from uuid import uuid4

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tracestore.entities import ARTIFACT_LOCATION_TAG_KEY, Experiment, TraceTag
from tracestore.exceptions import (
    ArtifactLocationError,
    InvalidParameterError,
    TraceNotFoundError,
)
from tracestore.storage.models import SqlExperiment

log = structlog.get_logger()

ACTIVE_LIFECYCLE_STAGE = "active"
TRACE_FOLDER_NAME = "traces"
ARTIFACTS_FOLDER_NAME = "artifacts"


async def get_experiment(session: AsyncSession, experiment_id: str) -> Experiment:
    """
    Fetch an experiment by id.

    Raises:
        TraceNotFoundError: if no experiment has this id
    """
    result = await session.execute(
        select(SqlExperiment).where(SqlExperiment.experiment_id == str(experiment_id))
    )
    experiment = result.scalar_one_or_none()
    if experiment is None:
        raise TraceNotFoundError(f"No Experiment with id={experiment_id} exists")
    return experiment.to_entity()


async def create_experiment(
    session: AsyncSession,
    name: str,
    artifact_location: Optional[str] = None,
    experiment_id: Optional[str] = None,
) -> Experiment:
    """Insert an experiment row (flushes, does not commit)."""
    experiment = SqlExperiment(
        experiment_id=experiment_id or uuid4().hex,
        name=name,
        artifact_location=artifact_location,
        lifecycle_stage=ACTIVE_LIFECYCLE_STAGE,
        creation_time=int(time.time() * 1000),
    )
    session.add(experiment)
    await session.flush()

    log.info("Experiment created", experiment_id=experiment.experiment_id, name=name)
    return experiment.to_entity()


def check_experiment_is_active(experiment: Experiment) -> None:
    if experiment.lifecycle_stage != ACTIVE_LIFECYCLE_STAGE:
        raise InvalidParameterError(
            f"The experiment {experiment.experiment_id} must be in the "
            f"'{ACTIVE_LIFECYCLE_STAGE}' state. Current state is {experiment.lifecycle_stage}."
        )


def append_to_uri_path(uri: str, *paths: str) -> str:
    """
    Append path segments to a URI or plain path.

    Example:
        >>> append_to_uri_path("s3://bucket/1", "traces", "abc", "artifacts")
        's3://bucket/1/traces/abc/artifacts'
    """
    parsed = urllib.parse.urlparse(uri)
    path = parsed.path
    for segment in paths:
        segment = segment.strip("/")
        path = posixpath.join(path, segment) if path else segment
    return urllib.parse.urlunparse(parsed._replace(path=path))


def artifact_location_tag(experiment: Experiment, request_id: str) -> TraceTag:
    """
    Build the reserved tag pointing at the trace's artifact directory.

    Trace payloads live under ``<experiment artifact location>/traces/<request_id>/artifacts``.

    Raises:
        ArtifactLocationError: if the experiment has no artifact location
    """
    if not experiment.artifact_location:
        raise ArtifactLocationError(
            f"Experiment {experiment.experiment_id} has no artifact location"
        )
    if not request_id:
        raise ArtifactLocationError("Cannot build an artifact location without a request_id")

    artifact_uri = append_to_uri_path(
        experiment.artifact_location,
        TRACE_FOLDER_NAME,
        request_id,
        ARTIFACTS_FOLDER_NAME,
    )
    return TraceTag(key=ARTIFACT_LOCATION_TAG_KEY, value=artifact_uri, request_id=request_id)
