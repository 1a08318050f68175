"""Database tables used by the cache warmer."""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    REAL,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Engine

metadata = MetaData()

_JSON = JSON().with_variant(JSONB(), "postgresql")

jobs = Table(
    "jobs",
    metadata,
    Column("id", Text, primary_key=True),
    Column("domain", Text, nullable=False),
    Column("status", Text, nullable=False),
    Column("progress", REAL, nullable=False),
    Column("total_tasks", Integer, nullable=False),
    Column("completed_tasks", Integer, nullable=False),
    Column("failed_tasks", Integer, nullable=False),
    Column("created_at", DateTime, nullable=False),
    Column("started_at", DateTime),
    Column("completed_at", DateTime),
    Column("concurrency", Integer, nullable=False),
    Column("find_links", Boolean, nullable=False),
    Column("include_paths", _JSON),
    Column("exclude_paths", _JSON),
    Column("required_workers", Integer, server_default="0"),
    Column("error_message", Text),
    Column("max_depth", Integer, server_default="1"),
)

tasks = Table(
    "tasks",
    metadata,
    Column("id", Text, primary_key=True),
    Column("job_id", Text, ForeignKey("jobs.id"), nullable=False),
    Column("url", Text, nullable=False),
    Column("status", Text, nullable=False),
    Column("depth", Integer, nullable=False),
    Column("created_at", DateTime, nullable=False),
    Column("started_at", DateTime),
    Column("completed_at", DateTime),
    Column("retry_count", Integer, nullable=False),
    Column("error", Text),
    Column("source_type", Text, nullable=False),
    Column("source_url", Text),
    Column("status_code", Integer),
    Column("response_time", BigInteger),
    Column("cache_status", Text),
    Column("content_type", Text),
    Index("idx_tasks_job_id", "job_id"),
    Index("idx_tasks_status", "status"),
    Index("idx_tasks_status_created", "status", "created_at"),
)

crawl_results = Table(
    "crawl_results",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("job_id", Text),
    Column("task_id", Text),
    Column("url", Text, nullable=False),
    Column("response_time", BigInteger, nullable=False),
    Column("status_code", Integer),
    Column("error", Text),
    Column("cache_status", Text),
    Column("content_type", Text),
    Column("created_at", DateTime, server_default=func.current_timestamp()),
)


def setup_schema(engine: Engine) -> None:
    """Create the jobs, tasks and crawl_results tables and their indexes if missing."""
    metadata.create_all(engine, checkfirst=True)


def drop_schema(engine: Engine) -> None:
    """Drop all tables, dependants first."""
    metadata.drop_all(engine, checkfirst=True)