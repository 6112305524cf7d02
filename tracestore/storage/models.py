"""
SQLAlchemy Models for Trace Storage
===================================

Tables:
- experiments: Experiments that own traces (resolved by the store, not managed by it)
- trace_info: One row per trace, keyed by request_id
- trace_tags: Tag key/value pairs, keyed by (request_id, key)
- trace_request_metadata: Request metadata key/value pairs, keyed by (request_id, key)

Deleting a trace_info row cascades to its tags and metadata at the database
level (ON DELETE CASCADE), so bulk deletes need no ORM-side cascade.

Usage:
    from tracestore.storage.models import SqlTraceInfo, SqlTraceTag

    async with session.begin():
        session.add(SqlTraceInfo(request_id="abc", experiment_id="1", timestamp_ms=0, status="IN_PROGRESS"))
"""

from sqlalchemy import (
    BigInteger,
    Column,
    ForeignKey,
    Index,
    PrimaryKeyConstraint,
    String,
)
from sqlalchemy.orm import declarative_base, relationship

from tracestore.entities import (
    Experiment,
    TraceInfo,
    TraceRequestMetadata,
    TraceStatus,
    TraceTag,
)

Base = declarative_base()


class SqlExperiment(Base):
    """Experiment owning a set of traces."""

    __tablename__ = "experiments"

    experiment_id = Column(String(32), primary_key=True)
    name = Column(String(256), nullable=False, unique=True)
    artifact_location = Column(String(256), nullable=True)
    lifecycle_stage = Column(String(32), nullable=False, default="active")
    creation_time = Column(BigInteger, nullable=True)

    traces = relationship("SqlTraceInfo", back_populates="experiment", passive_deletes=True)

    def to_entity(self) -> Experiment:
        return Experiment(
            experiment_id=self.experiment_id,
            name=self.name,
            artifact_location=self.artifact_location,
            lifecycle_stage=self.lifecycle_stage,
            creation_time=self.creation_time,
        )

    def __repr__(self) -> str:
        return f"<SqlExperiment(experiment_id={self.experiment_id}, name={self.name})>"


class SqlTraceInfo(Base):
    """
    Persisted trace record.

    Attributes:
        request_id: Trace identifier, primary key
        experiment_id: FK to experiments
        timestamp_ms: Start time in milliseconds
        execution_time_ms: Duration in milliseconds, NULL while in progress
        status: TraceStatus value (not constrained at DB level)
        client_request_id: Caller correlation id
        request_preview / response_preview: Truncated payload previews
    """

    __tablename__ = "trace_info"

    request_id = Column(String(50), nullable=False)
    experiment_id = Column(
        String(32),
        ForeignKey("experiments.experiment_id"),
        nullable=False,
    )
    timestamp_ms = Column(BigInteger, nullable=False)
    execution_time_ms = Column(BigInteger, nullable=True)
    status = Column(String(50), nullable=False)
    client_request_id = Column(String(50), nullable=True)
    request_preview = Column(String(1000), nullable=True)
    response_preview = Column(String(1000), nullable=True)

    experiment = relationship("SqlExperiment", back_populates="traces")
    tags = relationship(
        "SqlTraceTag",
        back_populates="trace_info",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    request_metadata = relationship(
        "SqlTraceMetadata",
        back_populates="trace_info",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        PrimaryKeyConstraint("request_id", name="trace_info_pk"),
        # Traces are listed and purged per experiment, oldest first
        Index("index_trace_info_experiment_id_timestamp_ms", "experiment_id", "timestamp_ms"),
    )

    def to_entity(self) -> TraceInfo:
        """Convert to TraceInfo. Tags and metadata must already be loaded."""
        return TraceInfo(
            request_id=self.request_id,
            experiment_id=self.experiment_id,
            timestamp_ms=self.timestamp_ms,
            status=TraceStatus.from_string(self.status),
            execution_time_ms=self.execution_time_ms,
            client_request_id=self.client_request_id,
            request_preview=self.request_preview,
            response_preview=self.response_preview,
            tags={tag.key: tag.value for tag in self.tags},
            request_metadata={m.key: m.value for m in self.request_metadata},
        )

    def __repr__(self) -> str:
        return f"<SqlTraceInfo(request_id={self.request_id}, status={self.status})>"


class SqlTraceTag(Base):
    """Tag on a trace. Key is unique within a request_id."""

    __tablename__ = "trace_tags"

    request_id = Column(
        String(50),
        ForeignKey("trace_info.request_id", ondelete="CASCADE"),
        nullable=False,
    )
    key = Column(String(250), nullable=False)
    value = Column(String(8000), nullable=True)

    trace_info = relationship("SqlTraceInfo", back_populates="tags")

    __table_args__ = (
        PrimaryKeyConstraint("request_id", "key", name="trace_tag_pk"),
        Index("index_trace_tags_request_id", "request_id"),
    )

    def to_entity(self) -> TraceTag:
        return TraceTag(key=self.key, value=self.value, request_id=self.request_id)


class SqlTraceMetadata(Base):
    """Request metadata entry on a trace. Key is unique within a request_id."""

    __tablename__ = "trace_request_metadata"

    request_id = Column(
        String(50),
        ForeignKey("trace_info.request_id", ondelete="CASCADE"),
        nullable=False,
    )
    key = Column(String(250), nullable=False)
    value = Column(String(8000), nullable=True)

    trace_info = relationship("SqlTraceInfo", back_populates="request_metadata")

    __table_args__ = (
        PrimaryKeyConstraint("request_id", "key", name="trace_request_metadata_pk"),
        Index("index_trace_request_metadata_request_id", "request_id"),
    )

    def to_entity(self) -> TraceRequestMetadata:
        return TraceRequestMetadata(key=self.key, value=self.value, request_id=self.request_id)
